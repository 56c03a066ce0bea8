from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from panelshop.models import DAY_SECONDS, AccountStatus, RemoteAccount
from panelshop.panels.base import coerce_status, extend_expiry, gb_to_bytes, parse_json_field
from panelshop.panels.marzban import MarzbanAdapter


class MarzneshinAdapter(MarzbanAdapter):
    """Marzneshin: plural ``/api/users``, short-lived tokens and expiry strategies."""

    vendor = "Marzneshin"
    session_ttl = 10 * 60
    token_path = "/api/admins/token"
    user_path = "/api/users"
    stats_path = "/api/system/stats/users"

    def _expire_strategy(
        self,
        duration_days: int,
        current_expire: int = 0,
        *,
        on_hold: bool | None = None,
    ) -> dict[str, Any]:
        if duration_days <= 0:
            return {"expire_strategy": "never", "expire_date": None}
        if on_hold is None:
            on_hold = self.on_hold_enabled
        if on_hold:
            return {
                "expire_strategy": "start_on_first_use",
                "expire_date": None,
                "usage_duration": duration_days * DAY_SECONDS,
            }
        expire = extend_expiry(current_expire, duration_days)
        return {
            "expire_strategy": "fixed_date",
            "expire_date": datetime.fromtimestamp(expire, tz=timezone.utc).isoformat(),
        }

    def _service_ids(self, inbound: str | None) -> list[int]:
        parsed = parse_json_field(inbound)
        if isinstance(parsed, list):
            return [int(x) for x in parsed if str(x).strip().lstrip("-").isdigit()]
        if isinstance(parsed, int):
            return [parsed]
        return []

    async def create_user(
        self,
        username: str,
        volume_gb: int,
        duration_days: int,
        inbound: str | None = None,
    ) -> RemoteAccount:
        payload: dict[str, Any] = {
            "username": username,
            "data_limit": gb_to_bytes(volume_gb),
            "data_limit_reset_strategy": "no_reset",
            "service_ids": self._service_ids(inbound or self.inbound),
            **self._expire_strategy(duration_days),
        }
        response = await self._request("POST", self.user_path, json=payload)
        return self._to_account(self._expect_dict(self._parse_json(response), "user"))

    async def modify_user(
        self,
        username: str,
        *,
        volume_gb: int | None = None,
        duration_days: int | None = None,
    ) -> None:
        current = await self.get_user(username)
        if current is None:
            raise self._error(f"User {username} not found")

        payload: dict[str, Any] = {"username": username}
        if volume_gb is not None:
            payload["data_limit"] = gb_to_bytes(volume_gb)
        if duration_days is not None:
            # No partial patch for expiry: the whole strategy is sent again.
            payload.update(
                self._expire_strategy(
                    duration_days,
                    current.expire,
                    on_hold=current.status == AccountStatus.ON_HOLD,
                )
            )
        await self._request("PUT", self._user_url(username), json=payload)

    def _to_account(self, data: dict[str, Any]) -> RemoteAccount:
        used = int(data.get("used_traffic") or 0)
        limit = int(data.get("data_limit") or 0)
        expire = self._parse_expire_date(data.get("expire_date"))

        if data.get("enabled") is False:
            status = AccountStatus.DISABLED
        elif data.get("expire_strategy") == "start_on_first_use" and not data.get("activated"):
            status = AccountStatus.ON_HOLD
        elif data.get("expired"):
            status = AccountStatus.EXPIRED
        elif data.get("data_limit_reached") or (limit > 0 and used >= limit):
            status = AccountStatus.LIMITED
        else:
            enabled = data.get("is_active", data.get("enabled"))
            status = coerce_status(None, used=used, limit=limit, expire=expire, enabled=enabled)

        return RemoteAccount(
            username=str(data.get("username") or ""),
            status=status,
            used_traffic=used,
            data_limit=limit,
            expire=expire,
            subscription_url=self._absolute_url(data.get("subscription_url")),
        )

    @staticmethod
    def _parse_expire_date(value: Any) -> int:
        if not value:
            return 0
        text = str(value).strip().replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return 0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp())
