import dataclasses

import pytest

from panelshop.errors import ValidationError
from panelshop.models import PanelConfig, PanelKind
from panelshop.panels.alireza import AlirezaAdapter
from panelshop.panels.factory import ADAPTERS, AdapterFactory, create_adapter
from panelshop.panels.marzneshin import MarzneshinAdapter
from panelshop.panels.mikrotik import MikrotikAdapter
from panelshop.panels.wgdashboard import WGDashboardAdapter
from panelshop.services.crypto import CryptoService


def panel(kind=PanelKind.MARZNESHIN, **overrides):
    values = {
        "id": 1,
        "name": "nl-1",
        "kind": kind,
        "base_url": "https://nl.panel.test",
        "username": "admin",
        "password_enc": "",
        "inbound": None,
        "on_hold_enabled": False,
        "active": True,
    }
    values.update(overrides)
    return PanelConfig(**values)


def test_every_kind_has_an_adapter():
    assert set(ADAPTERS) == set(PanelKind)


@pytest.mark.asyncio
async def test_create_adapter_binds_config():
    adapter = create_adapter(panel(inbound="[2]", on_hold_enabled=True), "s3cret", timeout_seconds=5)
    try:
        assert isinstance(adapter, MarzneshinAdapter)
        assert adapter.password == "s3cret"
        assert adapter.inbound == "[2]"
        assert adapter.on_hold_enabled is True
    finally:
        await adapter.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind, cls",
    [
        (PanelKind.ALIREZA, AlirezaAdapter),
        (PanelKind.WGDASHBOARD, WGDashboardAdapter),
        (PanelKind.MIKROTIK, MikrotikAdapter),
    ],
)
async def test_dispatch(kind, cls):
    adapter = create_adapter(panel(kind=kind), "pw")
    try:
        assert type(adapter) is cls
    finally:
        await adapter.close()


def test_unknown_kind_is_rejected():
    with pytest.raises(ValidationError):
        create_adapter(panel(kind="s_ui"), "pw")


@pytest.mark.asyncio
async def test_cache_keeps_adapter_until_config_changes():
    crypto = CryptoService("app-secret")
    stored = panel(password_enc=crypto.encrypt("pw-1"))
    factory = AdapterFactory(crypto, cache=True)
    try:
        first = factory.get(stored)
        again = factory.get(stored)
        edited = factory.get(dataclasses.replace(stored, password_enc=crypto.encrypt("pw-2")))

        assert first is again
        assert edited is not first
        assert first.password == "pw-1"
        assert edited.password == "pw-2"
    finally:
        await factory.aclose()
        await first.close()


@pytest.mark.asyncio
async def test_undecryptable_credential_is_a_validation_error():
    stored = panel(password_enc=CryptoService("old-secret").encrypt("pw"))
    factory = AdapterFactory(CryptoService("new-secret"))

    with pytest.raises(ValidationError):
        factory.get(stored)
