from __future__ import annotations

import asyncio
import json
import logging
import secrets
import string
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from panelshop.errors import PanelError
from panelshop.models import DAY_SECONDS, GIB, AccountStatus, RemoteAccount


logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_letters + string.digits


def gb_to_bytes(volume_gb: float) -> int:
    return int(volume_gb * GIB)


def expiry_from_days(duration_days: int, now: int | None = None) -> int:
    """Absolute expiry in unix seconds; 0 means the account never expires."""
    if duration_days <= 0:
        return 0
    base = int(time.time()) if now is None else now
    return base + duration_days * DAY_SECONDS


def extend_expiry(current: int, duration_days: int, now: int | None = None) -> int:
    """Push ``current`` forward by ``duration_days``, counting from now if it already passed."""
    if duration_days <= 0:
        return 0
    base = int(time.time()) if now is None else now
    return max(current, base) + duration_days * DAY_SECONDS


def random_token(length: int = 16) -> str:
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))


def coerce_status(
    raw: str | None,
    *,
    used: int,
    limit: int,
    expire: int,
    enabled: bool | None = None,
    now: int | None = None,
) -> AccountStatus:
    """Map a vendor status onto the canonical set.

    Unknown values only become ``active`` when the vendor explicitly says the
    account is enabled; otherwise the closest restrictive status wins.
    """
    if raw:
        try:
            return AccountStatus(raw.strip().lower())
        except ValueError:
            pass

    current = int(time.time()) if now is None else now
    if limit > 0 and used >= limit:
        return AccountStatus.LIMITED
    if 0 < expire <= current:
        return AccountStatus.EXPIRED
    if enabled is True:
        return AccountStatus.ACTIVE
    return AccountStatus.DISABLED


def parse_json_field(value: Any) -> Any:
    """Decode a JSON document that a panel embeds as a string inside another resource."""
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return None


class PanelAdapter(ABC):
    """Uniform create/inspect/modify/revoke/remove contract over one panel.

    Subclasses that log in set ``session_ttl`` (seconds); the session is then
    reused until it is about to expire and refreshed under a lock so that
    concurrent requests trigger a single login.
    """

    vendor = "Unknown"
    session_ttl: int | None = None

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        password: str,
        inbound: str | None = None,
        on_hold_enabled: bool = False,
        verify_tls: bool = False,
        timeout_seconds: float = 30,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = self._normalize_base_url(base_url)
        self.username = username
        self.password = password
        self.inbound = (inbound or "").strip() or None
        self.on_hold_enabled = on_hold_enabled
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            verify=verify_tls,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": "panelshop/1.0", **self._default_headers()},
            auth=self._client_auth(),
        )
        self._auth_lock = asyncio.Lock()
        self._session_expires_at = 0.0

    # -- contract -------------------------------------------------------

    async def authenticate(self) -> None:
        if self.session_ttl is None:
            await self._checked_login()
            return
        if self._session_valid():
            return
        async with self._auth_lock:
            if self._session_valid():
                return
            await self._checked_login()
            self._session_expires_at = time.monotonic() + self.session_ttl
            logger.info("%s: new session for %s", self.vendor, self.base_url)

    async def _checked_login(self) -> None:
        try:
            await self._login()
        except PanelError as exc:
            logger.warning("%s: login to %s as %r failed: %s", self.vendor, self.base_url, self.username, exc.detail)
            raise

    @abstractmethod
    async def create_user(
        self,
        username: str,
        volume_gb: int,
        duration_days: int,
        inbound: str | None = None,
    ) -> RemoteAccount: ...

    @abstractmethod
    async def get_user(self, username: str) -> RemoteAccount | None: ...

    @abstractmethod
    async def remove_user(self, username: str) -> None: ...

    @abstractmethod
    async def modify_user(
        self,
        username: str,
        *,
        volume_gb: int | None = None,
        duration_days: int | None = None,
    ) -> None: ...

    @abstractmethod
    async def revoke_subscription(self, username: str) -> str: ...

    @abstractmethod
    async def reset_data_usage(self, username: str) -> None: ...

    async def get_system_stats(self) -> dict[str, Any]:
        raise self._error("System stats are not available for this panel")

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # -- hooks ----------------------------------------------------------

    async def _login(self) -> None:
        """Establish a session (or probe credentials for sessionless panels)."""

    def _auth_headers(self) -> dict[str, str]:
        return {}

    def _default_headers(self) -> dict[str, str]:
        return {}

    def _client_auth(self) -> httpx.Auth | tuple[str, str] | None:
        return None

    # -- helpers --------------------------------------------------------

    def _error(self, message: str) -> PanelError:
        return PanelError(message, self.vendor)

    def _session_valid(self) -> bool:
        return time.monotonic() < self._session_expires_at

    def invalidate_session(self) -> None:
        self._session_expires_at = 0.0

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Raw request without session handling; transport failures become PanelError."""
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise self._error(f"{method} {path} timed out") from exc
        except httpx.HTTPError as exc:
            raise self._error(f"{method} {path} failed: {exc}") from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        allow_not_found: bool = False,
        retry: bool = True,
    ) -> httpx.Response | None:
        if self.session_ttl is not None:
            await self.authenticate()

        response = await self._send(
            method,
            path,
            json=json,
            data=data,
            params=params,
            headers=self._auth_headers(),
        )

        # Sessions can be dropped server side (panel restart) before our TTL.
        if response.status_code == 401 and retry and self.session_ttl is not None:
            self.invalidate_session()
            return await self._request(
                method,
                path,
                json=json,
                data=data,
                params=params,
                allow_not_found=allow_not_found,
                retry=False,
            )

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code >= 400:
            raise self._error(
                f"{method} {path} failed with status {response.status_code}: {self._error_detail(response)}"
            )
        return response

    def _parse_json(self, response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError as exc:
            raise self._error("Panel returned non-JSON response") from exc

    def _expect_dict(self, value: Any, what: str) -> dict[str, Any]:
        if not isinstance(value, dict):
            raise self._error(f"Unexpected {what} format")
        return value

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text.strip()[:200] or "empty response"
        if isinstance(payload, dict):
            for key in ("detail", "msg", "message", "error"):
                value = payload.get(key)
                if value:
                    return str(value)
        return str(payload)[:200]

    def _absolute_url(self, url: str | None) -> str | None:
        if not url:
            return None
        if url.startswith("http://") or url.startswith("https://"):
            return url
        if not url.startswith("/"):
            url = "/" + url
        return f"{self.base_url}{url}"

    @staticmethod
    def _normalize_base_url(value: str) -> str:
        url = (value or "").strip()
        if not url:
            raise PanelError("Empty panel URL")
        if not url.startswith("http://") and not url.startswith("https://"):
            url = "https://" + url
        return url.rstrip("/")
