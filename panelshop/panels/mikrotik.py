from __future__ import annotations

import re
import secrets
import string
from typing import Any

from panelshop.models import AccountStatus, RemoteAccount
from panelshop.panels.base import PanelAdapter, expiry_from_days, extend_expiry, gb_to_bytes


_PASSWORD_ALPHABET = string.ascii_letters + string.digits
_COMMENT_RE = re.compile(r"quota=(?P<quota>\d+)\s+expire=(?P<expire>\d+)")


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"true", "yes", "1"}


class MikrotikAdapter(PanelAdapter):
    """RouterOS User Manager over the REST API with HTTP basic auth.

    User Manager has no per-user quota or expiry; both are kept as
    bookkeeping in the user comment and reported with ``enforced=False``.
    """

    vendor = "MikroTik"
    session_ttl = None
    users_path = "/rest/user-manager/user"

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.profile = self.inbound or "default"

    def _client_auth(self) -> tuple[str, str]:
        return (self.username, self.password)

    def _default_headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _login(self) -> None:
        await self._request("GET", "/rest/system/resource")

    # -- contract -------------------------------------------------------

    async def create_user(
        self,
        username: str,
        volume_gb: int,
        duration_days: int,
        inbound: str | None = None,
    ) -> RemoteAccount:
        quota = gb_to_bytes(volume_gb)
        expire = expiry_from_days(duration_days)
        await self._request(
            "POST",
            f"{self.users_path}/add",
            json={
                "name": username,
                "password": self._generate_password(),
                "comment": self._comment(quota, expire),
            },
        )
        await self._request(
            "POST",
            "/rest/user-manager/user-profile/add",
            json={"user": username, "profile": inbound or self.profile},
        )
        return RemoteAccount(
            username=username,
            status=AccountStatus.ACTIVE,
            used_traffic=0,
            data_limit=quota,
            expire=expire,
            subscription_url=None,
            enforced=False,
        )

    async def get_user(self, username: str) -> RemoteAccount | None:
        user = await self._find_user(username)
        if user is None:
            return None

        monitor = await self._monitor(str(user[".id"]))
        used = int(monitor.get("total-upload", monitor.get("upload-bytes", 0)) or 0) + int(
            monitor.get("total-download", monitor.get("download-bytes", 0)) or 0
        )
        quota, expire = self._parse_comment(user.get("comment"))
        return RemoteAccount(
            username=str(user.get("name") or username),
            status=AccountStatus.DISABLED if _truthy(user.get("disabled", False)) else AccountStatus.ACTIVE,
            used_traffic=used,
            data_limit=quota,
            expire=expire,
            subscription_url=None,
            enforced=False,
        )

    async def remove_user(self, username: str) -> None:
        user = await self._require_user(username)
        await self._request("POST", f"{self.users_path}/remove", json={".id": user[".id"]})

    async def modify_user(
        self,
        username: str,
        *,
        volume_gb: int | None = None,
        duration_days: int | None = None,
    ) -> None:
        user = await self._require_user(username)
        quota, expire = self._parse_comment(user.get("comment"))
        if volume_gb is not None:
            quota = gb_to_bytes(volume_gb)
        if duration_days is not None:
            expire = extend_expiry(expire, duration_days)
        await self._request(
            "POST",
            f"{self.users_path}/set",
            json={".id": user[".id"], "comment": self._comment(quota, expire)},
        )

    async def revoke_subscription(self, username: str) -> str:
        # No subscription links here; rotating the password is the revocation.
        user = await self._require_user(username)
        await self._request(
            "POST",
            f"{self.users_path}/set",
            json={".id": user[".id"], "password": self._generate_password()},
        )
        return f"Password for {username} has been reset"

    async def reset_data_usage(self, username: str) -> None:
        raise self._error("Resetting data usage is not supported by User Manager")

    async def get_system_stats(self) -> dict[str, Any]:
        response = await self._request("GET", "/rest/system/resource")
        return self._expect_dict(self._parse_json(response), "system resource")

    # -- helpers --------------------------------------------------------

    async def _find_user(self, username: str) -> dict[str, Any] | None:
        response = await self._request("GET", self.users_path, params={"name": username}, allow_not_found=True)
        if response is None:
            return None
        users = self._parse_json(response)
        if not isinstance(users, list):
            raise self._error("Unexpected user list format")
        return next((u for u in users if isinstance(u, dict) and u.get("name") == username), None)

    async def _require_user(self, username: str) -> dict[str, Any]:
        user = await self._find_user(username)
        if user is None:
            raise self._error(f"User {username} not found")
        return user

    async def _monitor(self, user_id: str) -> dict[str, Any]:
        response = await self._request("POST", f"{self.users_path}/monitor", json={".id": user_id, "once": True})
        data = self._parse_json(response)
        if isinstance(data, list):
            return data[0] if data and isinstance(data[0], dict) else {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _comment(quota: int, expire: int) -> str:
        return f"panelshop quota={quota} expire={expire}"

    @staticmethod
    def _parse_comment(comment: Any) -> tuple[int, int]:
        match = _COMMENT_RE.search(str(comment or ""))
        if match is None:
            return 0, 0
        return int(match.group("quota")), int(match.group("expire"))

    @staticmethod
    def _generate_password(length: int = 12) -> str:
        return "".join(secrets.choice(_PASSWORD_ALPHABET) for _ in range(length))
