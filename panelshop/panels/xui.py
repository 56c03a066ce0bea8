from __future__ import annotations

import json
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse

from panelshop.models import AccountStatus, RemoteAccount
from panelshop.panels.base import (
    PanelAdapter,
    coerce_status,
    extend_expiry,
    gb_to_bytes,
    parse_json_field,
    random_token,
)


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class XUISettings:
    sub_enable: bool
    sub_uri: str
    sub_path: str
    sub_port: int


@dataclass(slots=True)
class _ClientRef:
    inbound_id: int
    protocol: str
    client: dict[str, Any]
    stat: dict[str, Any] | None


class XUIAdapter(PanelAdapter):
    """3x-ui panel.

    Clients are stored as a JSON string inside their inbound's ``settings``;
    every change is a read-modify-write of that embedded document.
    """

    vendor = "X-UI"
    session_ttl = 50 * 60
    login_path = "/login"
    inbounds_path = "/panel/api/inbounds"
    list_path = "/panel/api/inbounds/list"
    settings_path = "/panel/setting/all"
    status_path = "/server/status"
    form_encoded = True

    def _default_headers(self) -> dict[str, str]:
        return {"X-Requested-With": "XMLHttpRequest", "Accept": "application/json"}

    async def _login(self) -> None:
        response = await self._send(
            "POST",
            self.login_path,
            data={"username": self.username, "password": self.password},
        )
        if response.status_code != 200:
            raise self._error(f"Login failed with status {response.status_code}")

        data = self._expect_dict(self._parse_json(response), "login response")
        if not data.get("success"):
            raise self._error(str(data.get("msg") or "Panel login failed"))
        # The session cookie stays in the client's cookie jar.
        if not response.cookies and not self._client.cookies:
            raise self._error("No session cookie received")

    async def _panel_json(
        self,
        method: str,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        if self.form_encoded:
            response = await self._request(method, path, data=body)
        else:
            response = await self._request(method, path, json=body)

        payload = self._expect_dict(self._parse_json(response), "panel response")
        if payload.get("success") is False:
            msg = str(payload.get("msg") or "Panel API rejected request")
            if retry and "login" in msg.lower():
                self.invalidate_session()
                return await self._panel_json(method, path, body=body, retry=False)
            raise self._error(msg)
        return payload

    async def list_inbounds(self) -> list[dict[str, Any]]:
        msg = await self._panel_json("GET", self.list_path)
        obj = msg.get("obj")
        if not isinstance(obj, list):
            raise self._error("Invalid inbounds response")
        return obj

    async def get_settings(self) -> XUISettings:
        msg = await self._panel_json("POST", self.settings_path, body={})
        obj = self._expect_dict(msg.get("obj"), "panel settings")
        try:
            sub_port = int(obj.get("subPort"))
        except (TypeError, ValueError):
            sub_port = 0
        return XUISettings(
            sub_enable=bool(obj.get("subEnable", True)),
            sub_uri=str(obj.get("subURI") or "").strip(),
            sub_path=str(obj.get("subPath") or "/sub/").strip() or "/sub/",
            sub_port=sub_port,
        )

    # -- contract -------------------------------------------------------

    async def create_user(
        self,
        username: str,
        volume_gb: int,
        duration_days: int,
        inbound: str | None = None,
    ) -> RemoteAccount:
        inbound_id = self._inbound_id(inbound)
        inbounds = await self.list_inbounds()
        target = next((i for i in inbounds if self._as_int(i.get("id")) == inbound_id), None)
        if target is None:
            raise self._error(f"Inbound {inbound_id} not found on panel")

        protocol = str(target.get("protocol") or "").lower()
        client = self._build_client_payload(
            protocol=protocol,
            email=username,
            total_bytes=gb_to_bytes(volume_gb),
            expiry_ms=self._expiry_ms(duration_days),
        )
        await self._panel_json(
            "POST",
            f"{self.inbounds_path}/addClient",
            body={"id": inbound_id, "settings": json.dumps({"clients": [client]}, ensure_ascii=False)},
        )

        expiry_ms = int(client["expiryTime"])
        return RemoteAccount(
            username=username,
            status=AccountStatus.ON_HOLD if expiry_ms < 0 else AccountStatus.ACTIVE,
            used_traffic=0,
            data_limit=int(client["totalGB"]),
            expire=max(0, expiry_ms // 1000),
            subscription_url=await self._subscription_url(str(client["subId"])),
        )

    async def get_user(self, username: str) -> RemoteAccount | None:
        ref = await self._find_client(username)
        if ref is None:
            return None
        return await self._to_account(username, ref)

    async def remove_user(self, username: str) -> None:
        ref = await self._require_client(username)
        await self._panel_json("POST", f"{self.inbounds_path}/{ref.inbound_id}/delClient/{self._delete_key(ref)}")

    async def modify_user(
        self,
        username: str,
        *,
        volume_gb: int | None = None,
        duration_days: int | None = None,
    ) -> None:
        ref = await self._require_client(username)
        client = dict(ref.client)
        if volume_gb is not None:
            client["totalGB"] = gb_to_bytes(volume_gb)
        if duration_days is not None:
            current_ms = self._as_int(client.get("expiryTime"))
            if current_ms < 0 or (self.on_hold_enabled and current_ms == 0 and duration_days > 0):
                client["expiryTime"] = -duration_days * 86400 * 1000 if duration_days > 0 else 0
            else:
                client["expiryTime"] = extend_expiry(current_ms // 1000, duration_days) * 1000
        await self._update_client(ref, client)

    async def revoke_subscription(self, username: str) -> str:
        # Links are derived from the client id, so the only way to cut access is to disable it.
        ref = await self._require_client(username)
        client = dict(ref.client)
        client["enable"] = False
        await self._update_client(ref, client)
        return f"User {username} has been disabled"

    async def reset_data_usage(self, username: str) -> None:
        ref = await self._require_client(username)
        await self._panel_json("POST", f"{self.inbounds_path}/{ref.inbound_id}/resetClientTraffic/{username}")

    async def get_system_stats(self) -> dict[str, Any]:
        msg = await self._panel_json("POST", self.status_path, body={})
        obj = msg.get("obj")
        return obj if isinstance(obj, dict) else {"inbounds": len(await self.list_inbounds())}

    # -- helpers --------------------------------------------------------

    async def _find_client(self, username: str) -> _ClientRef | None:
        for inbound in await self.list_inbounds():
            settings = parse_json_field(inbound.get("settings"))
            if not isinstance(settings, dict):
                continue
            for client in settings.get("clients") or []:
                if isinstance(client, dict) and client.get("email") == username:
                    stat = next(
                        (s for s in inbound.get("clientStats") or [] if s.get("email") == username),
                        None,
                    )
                    return _ClientRef(
                        inbound_id=self._as_int(inbound.get("id")),
                        protocol=str(inbound.get("protocol") or "").lower(),
                        client=client,
                        stat=stat,
                    )
        return None

    async def _require_client(self, username: str) -> _ClientRef:
        ref = await self._find_client(username)
        if ref is None:
            raise self._error(f"User {username} not found")
        return ref

    async def _update_client(self, ref: _ClientRef, client: dict[str, Any]) -> None:
        client_key = self._client_key(ref.protocol, ref.client)
        await self._panel_json(
            "POST",
            f"{self.inbounds_path}/updateClient/{client_key}",
            body={"id": ref.inbound_id, "settings": json.dumps({"clients": [client]}, ensure_ascii=False)},
        )

    async def _to_account(self, username: str, ref: _ClientRef) -> RemoteAccount:
        client = ref.client
        stat = ref.stat or {}
        used = self._as_int(stat.get("up")) + self._as_int(stat.get("down"))
        limit = self._as_int(client.get("totalGB"))
        expiry_ms = self._as_int(client.get("expiryTime"))
        enabled = bool(client.get("enable", True)) and stat.get("enable", True) is not False

        if expiry_ms < 0 and enabled and (limit == 0 or used < limit):
            status = AccountStatus.ON_HOLD
        else:
            status = coerce_status(None, used=used, limit=limit, expire=max(0, expiry_ms // 1000), enabled=enabled)

        return RemoteAccount(
            username=username,
            status=status,
            used_traffic=used,
            data_limit=limit,
            expire=max(0, expiry_ms // 1000),
            subscription_url=await self._subscription_url(str(client.get("subId") or username)),
        )

    def _expiry_ms(self, duration_days: int) -> int:
        if duration_days <= 0:
            return 0
        if self.on_hold_enabled:
            # Negative expiry is the panel's "start counting on first use".
            return -duration_days * 86400 * 1000
        return int(time.time() * 1000) + duration_days * 86400 * 1000

    def _inbound_id(self, inbound: str | None) -> int:
        raw = (inbound or self.inbound or "1").strip()
        try:
            return int(raw)
        except ValueError as exc:
            raise self._error(f"Inbound id must be an integer, got {raw!r}") from exc

    def _build_client_payload(
        self,
        *,
        protocol: str,
        email: str,
        total_bytes: int,
        expiry_ms: int,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "email": email,
            "limitIp": 0,
            "totalGB": total_bytes,
            "expiryTime": expiry_ms,
            "enable": True,
            "subId": self._sub_id(email),
            "comment": "",
            "tgId": 0,
            "reset": 0,
        }

        if protocol == "trojan":
            payload["password"] = uuid.uuid4().hex
        elif protocol == "shadowsocks":
            payload["password"] = secrets.token_urlsafe(16)
        elif protocol in {"vmess", "vless"}:
            payload["id"] = str(uuid.uuid4())
            payload["security"] = "auto"
            payload["flow"] = ""
        else:
            raise self._error(f"Unsupported inbound protocol for client creation: {protocol}")

        return payload

    def _sub_id(self, email: str) -> str:
        return random_token(16)

    def _delete_key(self, ref: _ClientRef) -> str:
        return self._client_key(ref.protocol, ref.client)

    @staticmethod
    def _client_key(protocol: str, client: dict[str, Any]) -> str:
        if protocol == "trojan":
            return str(client.get("password") or "")
        if protocol == "shadowsocks":
            return str(client.get("email") or "")
        return str(client.get("id") or client.get("email") or "")

    async def _subscription_url(self, sub_id: str) -> str:
        try:
            settings = await self.get_settings()
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s: cannot read subscription settings, using default path: %s", self.vendor, exc)
            return f"{self.base_url}/sub/{sub_id}"
        return self._build_subscription_url(settings, sub_id)

    def _build_subscription_url(self, settings: XUISettings, sub_id: str) -> str:
        if settings.sub_uri:
            if settings.sub_uri.startswith("http://") or settings.sub_uri.startswith("https://"):
                if "{subid}" in settings.sub_uri:
                    return settings.sub_uri.replace("{subid}", sub_id)
                return settings.sub_uri.rstrip("/") + "/" + sub_id

            parsed_base = urlparse(self.base_url)
            scheme = parsed_base.scheme or "https"
            relative = settings.sub_uri
            if not relative.startswith("/"):
                relative = "/" + relative
            if "{subid}" in relative:
                return f"{scheme}://{parsed_base.netloc}{relative.replace('{subid}', sub_id)}"
            return f"{scheme}://{parsed_base.netloc}{relative.rstrip('/')}/{sub_id}"

        parsed = urlparse(self.base_url)
        scheme = parsed.scheme or "https"
        host = parsed.hostname or ""

        if settings.sub_port > 0:
            netloc = f"{host}:{settings.sub_port}"
        elif parsed.port:
            netloc = f"{host}:{parsed.port}"
        else:
            netloc = host

        sub_path = settings.sub_path or "/sub/"
        if not sub_path.startswith("/"):
            sub_path = "/" + sub_path
        if not sub_path.endswith("/"):
            sub_path += "/"

        return f"{scheme}://{netloc}{sub_path}{sub_id}"

    @staticmethod
    def _as_int(value: Any) -> int:
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0
