from __future__ import annotations

from typing import Any

from panelshop.panels.xui import XUIAdapter, _ClientRef


class AlirezaAdapter(XUIAdapter):
    """Alireza's x-ui fork.

    Same inbound/client document model as 3x-ui, but the API lives under
    ``/xui/API``, bodies are JSON and the subscription id is the username.
    """

    vendor = "Alireza"
    session_ttl = 55 * 60
    inbounds_path = "/xui/API/inbounds"
    list_path = "/xui/API/inbounds"
    settings_path = "/xui/setting/all"
    form_encoded = False

    def _sub_id(self, email: str) -> str:
        return email

    def _delete_key(self, ref: _ClientRef) -> str:
        return str(ref.client.get("email") or "")

    async def _subscription_url(self, sub_id: str) -> str:
        return f"{self.base_url}/sub/{sub_id}"

    async def revoke_subscription(self, username: str) -> str:
        # Subscription links are keyed by username and cannot be rotated here.
        await self._require_client(username)
        return f"{self.base_url}/sub/{username}"

    async def get_system_stats(self) -> dict[str, Any]:
        inbounds = await self.list_inbounds()
        clients = 0
        for inbound in inbounds:
            clients += len(inbound.get("clientStats") or [])
        return {"inbounds": len(inbounds), "clients": clients}
