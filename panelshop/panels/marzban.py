from __future__ import annotations

from typing import Any

from panelshop.models import DAY_SECONDS, AccountStatus, RemoteAccount
from panelshop.panels.base import (
    PanelAdapter,
    coerce_status,
    expiry_from_days,
    extend_expiry,
    gb_to_bytes,
    parse_json_field,
)


class MarzbanAdapter(PanelAdapter):
    """Marzban REST API: bearer token, singular ``/api/user`` resource."""

    vendor = "Marzban"
    session_ttl = 50 * 60
    token_path = "/api/admin/token"
    user_path = "/api/user"
    stats_path = "/api/system"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._token: str | None = None

    async def _login(self) -> None:
        response = await self._send(
            "POST",
            self.token_path,
            data={"username": self.username, "password": self.password},
        )
        if response.status_code != 200:
            raise self._error(
                f"Authentication failed with status {response.status_code}: {self._error_detail(response)}"
            )
        payload = self._expect_dict(self._parse_json(response), "token response")
        token = payload.get("access_token")
        if not token:
            raise self._error("Authentication failed: no access token in response")
        self._token = str(token)

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}", "Accept": "application/json"}

    def _user_url(self, username: str) -> str:
        return f"{self.user_path}/{username}"

    def _proxies_payload(self, inbound: str | None) -> dict[str, Any]:
        inbounds = parse_json_field(inbound)
        if isinstance(inbounds, dict) and inbounds:
            return {
                "proxies": {str(protocol): {} for protocol in inbounds},
                "inbounds": inbounds,
            }
        return {"proxies": {"vmess": {}, "vless": {}}}

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
            **self._proxies_payload(inbound or self.inbound),
        }
        if self.on_hold_enabled and duration_days > 0:
            payload["status"] = AccountStatus.ON_HOLD.value
            payload["expire"] = 0
            payload["on_hold_expire_duration"] = duration_days * DAY_SECONDS
        else:
            payload["status"] = AccountStatus.ACTIVE.value
            payload["expire"] = expiry_from_days(duration_days)

        response = await self._request("POST", self.user_path, json=payload)
        return self._to_account(self._expect_dict(self._parse_json(response), "user"))

    async def get_user(self, username: str) -> RemoteAccount | None:
        response = await self._request("GET", self._user_url(username), allow_not_found=True)
        if response is None:
            return None
        return self._to_account(self._expect_dict(self._parse_json(response), "user"))

    async def remove_user(self, username: str) -> None:
        await self._request("DELETE", self._user_url(username))

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

        payload: dict[str, Any] = {}
        if volume_gb is not None:
            payload["data_limit"] = gb_to_bytes(volume_gb)
        if duration_days is not None:
            if current.status == AccountStatus.ON_HOLD:
                payload["on_hold_expire_duration"] = duration_days * DAY_SECONDS
            else:
                payload["expire"] = extend_expiry(current.expire, duration_days)
        if not payload:
            return
        await self._request("PUT", self._user_url(username), json=payload)

    async def revoke_subscription(self, username: str) -> str:
        response = await self._request("POST", f"{self._user_url(username)}/revoke_sub")
        payload = self._expect_dict(self._parse_json(response), "user")
        return self._absolute_url(payload.get("subscription_url")) or ""

    async def reset_data_usage(self, username: str) -> None:
        await self._request("POST", f"{self._user_url(username)}/reset")

    async def get_system_stats(self) -> dict[str, Any]:
        response = await self._request("GET", self.stats_path)
        return self._expect_dict(self._parse_json(response), "system stats")

    def _to_account(self, data: dict[str, Any]) -> RemoteAccount:
        used = int(data.get("used_traffic") or 0)
        limit = int(data.get("data_limit") or 0)
        expire = int(data.get("expire") or 0)
        return RemoteAccount(
            username=str(data.get("username") or ""),
            status=coerce_status(data.get("status"), used=used, limit=limit, expire=expire),
            used_traffic=used,
            data_limit=limit,
            expire=expire,
            subscription_url=self._absolute_url(data.get("subscription_url")),
        )
