from __future__ import annotations

import hashlib
import logging

import httpx

from panelshop.errors import ValidationError
from panelshop.models import PanelConfig, PanelKind
from panelshop.panels.alireza import AlirezaAdapter
from panelshop.panels.base import PanelAdapter
from panelshop.panels.marzban import MarzbanAdapter
from panelshop.panels.marzneshin import MarzneshinAdapter
from panelshop.panels.mikrotik import MikrotikAdapter
from panelshop.panels.wgdashboard import WGDashboardAdapter
from panelshop.panels.xui import XUIAdapter
from panelshop.services.crypto import CryptoService


logger = logging.getLogger(__name__)

ADAPTERS: dict[PanelKind, type[PanelAdapter]] = {
    PanelKind.MARZBAN: MarzbanAdapter,
    PanelKind.MARZNESHIN: MarzneshinAdapter,
    PanelKind.X_UI: XUIAdapter,
    PanelKind.ALIREZA: AlirezaAdapter,
    PanelKind.WGDASHBOARD: WGDashboardAdapter,
    PanelKind.MIKROTIK: MikrotikAdapter,
}


def create_adapter(
    panel: PanelConfig,
    password: str,
    *,
    timeout_seconds: float = 30,
    verify_tls: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PanelAdapter:
    adapter_cls = ADAPTERS.get(panel.kind)
    if adapter_cls is None:
        raise ValidationError(f"Unsupported panel type: {panel.kind}")
    return adapter_cls(
        base_url=panel.base_url,
        username=panel.username,
        password=password,
        inbound=panel.inbound,
        on_hold_enabled=panel.on_hold_enabled,
        verify_tls=verify_tls,
        timeout_seconds=timeout_seconds,
        transport=transport,
    )


class AdapterFactory:
    """Builds adapters from stored panel rows.

    With ``cache=True`` one adapter (and so one login session) is kept per
    panel until the panel's stored config changes.
    """

    def __init__(
        self,
        crypto: CryptoService,
        *,
        timeout_seconds: float = 30,
        verify_tls: bool = False,
        cache: bool = False,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.crypto = crypto
        self.timeout_seconds = timeout_seconds
        self.verify_tls = verify_tls
        self.cache = cache
        self.transport = transport
        self._adapters: dict[int, tuple[str, PanelAdapter]] = {}

    def get(self, panel: PanelConfig) -> PanelAdapter:
        if not self.cache:
            return self._build(panel)

        fingerprint = self._fingerprint(panel)
        cached = self._adapters.get(panel.id)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        adapter = self._build(panel)
        self._adapters[panel.id] = (fingerprint, adapter)
        if cached is not None:
            logger.info("Panel %s config changed, replacing cached adapter", panel.name)
        return adapter

    async def release(self, adapter: PanelAdapter) -> None:
        """Close an adapter handed out by ``get`` unless the cache owns it."""
        if self.cache:
            return
        await adapter.close()

    async def aclose(self) -> None:
        adapters = [adapter for _, adapter in self._adapters.values()]
        self._adapters.clear()
        for adapter in adapters:
            await adapter.close()

    def _build(self, panel: PanelConfig) -> PanelAdapter:
        return create_adapter(
            panel,
            self.crypto.decrypt(panel.password_enc),
            timeout_seconds=self.timeout_seconds,
            verify_tls=self.verify_tls,
            transport=self.transport,
        )

    @staticmethod
    def _fingerprint(panel: PanelConfig) -> str:
        raw = "|".join(
            [
                panel.kind.value,
                panel.base_url,
                panel.username,
                panel.password_enc,
                panel.inbound or "",
                "1" if panel.on_hold_enabled else "0",
            ]
        )
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()
