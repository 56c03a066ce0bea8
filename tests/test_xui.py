import json
import time
from urllib.parse import parse_qs

import httpx
import pytest

from panelshop.errors import PanelError
from panelshop.models import GIB, AccountStatus
from panelshop.panels.alireza import AlirezaAdapter
from panelshop.panels.xui import XUIAdapter, XUISettings

CLIENT_UUID = "5f1e9c44-6a3b-4d0c-9a77-0e1d2c3b4a59"


def inbound(inbound_id, protocol, clients, stats=()):
    return {
        "id": inbound_id,
        "protocol": protocol,
        "settings": json.dumps({"clients": clients}),
        "clientStats": list(stats),
    }


def default_inbounds(expiry_ms=None):
    expiry = int(time.time() * 1000) + 10 * 86400 * 1000 if expiry_ms is None else expiry_ms
    return [
        inbound(1, "vmess", [{"id": "other-id", "email": "someone", "totalGB": 0, "expiryTime": 0, "enable": True}]),
        inbound(
            2,
            "vless",
            [
                {
                    "id": CLIENT_UUID,
                    "email": "alice",
                    "totalGB": 20 * GIB,
                    "expiryTime": expiry,
                    "enable": True,
                    "subId": "abcdEFGH12345678",
                    "limitIp": 2,
                }
            ],
            [{"email": "alice", "up": GIB, "down": 2 * GIB, "enable": True}],
        ),
    ]


class FakeXUI:
    def __init__(self, inbounds, *, set_cookie=True, prefix="/panel/api/inbounds", list_path=None):
        self.inbounds = inbounds
        self.set_cookie = set_cookie
        self.prefix = prefix
        self.list_path = list_path or f"{prefix}/list"
        self.logins = 0
        self.posts = []

    def __call__(self, request):
        path = request.url.path
        if path == "/login":
            self.logins += 1
            headers = {"Set-Cookie": "3x-ui=session-token; Path=/"} if self.set_cookie else {}
            return httpx.Response(200, json={"success": True, "msg": ""}, headers=headers)

        assert "3x-ui=session-token" in request.headers.get("cookie", "")
        if path == self.list_path:
            return httpx.Response(200, json={"success": True, "obj": self.inbounds})
        if path.endswith("/setting/all"):
            return httpx.Response(
                200,
                json={"success": True, "obj": {"subEnable": True, "subURI": "", "subPath": "/sub/", "subPort": 2096}},
            )
        self.posts.append((path, request))
        return httpx.Response(200, json={"success": True, "msg": "ok"})


def make_adapter(cls, handler, **kwargs):
    return cls(
        base_url="https://panel.test",
        username="admin",
        password="secret",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def form(request):
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


@pytest.mark.asyncio
async def test_get_user_searches_all_inbounds_and_reuses_session():
    panel = FakeXUI(default_inbounds())
    adapter = make_adapter(XUIAdapter, panel)
    try:
        account = await adapter.get_user("alice")
        missing = await adapter.get_user("nobody")
    finally:
        await adapter.close()

    assert panel.logins == 1
    assert missing is None
    assert account.status == AccountStatus.ACTIVE
    assert account.used_traffic == 3 * GIB
    assert account.data_limit == 20 * GIB
    assert account.subscription_url == "https://panel.test:2096/sub/abcdEFGH12345678"


@pytest.mark.asyncio
async def test_negative_expiry_means_on_hold():
    panel = FakeXUI(default_inbounds(expiry_ms=-7 * 86400 * 1000))
    adapter = make_adapter(XUIAdapter, panel)
    try:
        account = await adapter.get_user("alice")
    finally:
        await adapter.close()

    assert account.status == AccountStatus.ON_HOLD
    assert account.expire == 0


@pytest.mark.asyncio
async def test_login_without_cookie_fails():
    adapter = make_adapter(XUIAdapter, FakeXUI([], set_cookie=False))
    try:
        with pytest.raises(PanelError, match="No session cookie"):
            await adapter.authenticate()
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_modify_rewrites_whole_client_document():
    panel = FakeXUI(default_inbounds())
    adapter = make_adapter(XUIAdapter, panel)
    try:
        await adapter.modify_user("alice", volume_gb=100)
    finally:
        await adapter.close()

    assert len(panel.posts) == 1
    path, request = panel.posts[0]
    assert path == f"/panel/api/inbounds/updateClient/{CLIENT_UUID}"
    body = form(request)
    assert body["id"] == "2"
    client = json.loads(body["settings"])["clients"][0]
    assert client["totalGB"] == 100 * GIB
    assert client["id"] == CLIENT_UUID
    assert client["subId"] == "abcdEFGH12345678"
    assert client["limitIp"] == 2


@pytest.mark.asyncio
async def test_modify_unknown_user_raises():
    adapter = make_adapter(XUIAdapter, FakeXUI(default_inbounds()))
    try:
        with pytest.raises(PanelError, match="not found"):
            await adapter.modify_user("ghost", volume_gb=1)
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_create_user_adds_client_to_configured_inbound():
    panel = FakeXUI(default_inbounds())
    adapter = make_adapter(XUIAdapter, panel, inbound="2")
    before_ms = int(time.time() * 1000)
    try:
        account = await adapter.create_user("user_ab12cd34_1234", 30, 30)
    finally:
        await adapter.close()

    path, request = panel.posts[0]
    assert path == "/panel/api/inbounds/addClient"
    body = form(request)
    assert body["id"] == "2"
    client = json.loads(body["settings"])["clients"][0]
    assert client["email"] == "user_ab12cd34_1234"
    assert len(client["id"]) == 36
    assert len(client["subId"]) == 16
    assert client["totalGB"] == 30 * GIB
    assert client["expiryTime"] >= before_ms + 30 * 86400 * 1000
    assert account.subscription_url == f"https://panel.test:2096/sub/{client['subId']}"
    assert account.status == AccountStatus.ACTIVE


@pytest.mark.asyncio
async def test_create_user_on_missing_inbound_fails():
    adapter = make_adapter(XUIAdapter, FakeXUI(default_inbounds()), inbound="9")
    try:
        with pytest.raises(PanelError, match="Inbound 9"):
            await adapter.create_user("user_ab12cd34_1234", 30, 30)
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_remove_trojan_client_by_password():
    panel = FakeXUI([inbound(4, "trojan", [{"password": "pw-123", "email": "dave", "enable": True}])])
    adapter = make_adapter(XUIAdapter, panel)
    try:
        await adapter.remove_user("dave")
    finally:
        await adapter.close()

    assert panel.posts[0][0] == "/panel/api/inbounds/4/delClient/pw-123"


@pytest.mark.asyncio
async def test_revoke_disables_client_and_returns_status_text():
    panel = FakeXUI(default_inbounds())
    adapter = make_adapter(XUIAdapter, panel)
    try:
        result = await adapter.revoke_subscription("alice")
    finally:
        await adapter.close()

    client = json.loads(form(panel.posts[0][1])["settings"])["clients"][0]
    assert client["enable"] is False
    assert not result.startswith("http")


@pytest.mark.asyncio
async def test_expired_session_message_triggers_one_relogin():
    calls = {"list": 0}
    panel = FakeXUI(default_inbounds())

    def handler(request):
        if request.url.path == "/panel/api/inbounds/list" and calls["list"] == 0:
            calls["list"] += 1
            return httpx.Response(200, json={"success": False, "msg": "Please login first"})
        return panel(request)

    adapter = make_adapter(XUIAdapter, handler)
    try:
        account = await adapter.get_user("alice")
    finally:
        await adapter.close()

    assert account is not None
    assert panel.logins == 2


def test_subscription_url_from_panel_settings():
    adapter = XUIAdapter(base_url="https://panel.test:2053", username="a", password="b")
    custom = XUISettings(sub_enable=True, sub_uri="https://sub.example.com/s/", sub_path="/sub/", sub_port=0)
    templated = XUISettings(sub_enable=True, sub_uri="/feed/{subid}/raw", sub_path="/sub/", sub_port=0)
    default = XUISettings(sub_enable=True, sub_uri="", sub_path="links", sub_port=0)

    assert adapter._build_subscription_url(custom, "abc") == "https://sub.example.com/s/abc"
    assert adapter._build_subscription_url(templated, "abc") == "https://panel.test:2053/feed/abc/raw"
    assert adapter._build_subscription_url(default, "abc") == "https://panel.test:2053/links/abc"


@pytest.mark.asyncio
async def test_alireza_uses_json_bodies_and_username_subscription():
    panel = FakeXUI(default_inbounds(), prefix="/xui/API/inbounds", list_path="/xui/API/inbounds")
    adapter = make_adapter(AlirezaAdapter, panel, inbound="2")
    try:
        account = await adapter.create_user("user_ab12cd34_1234", 5, 3)
        revoked = await adapter.revoke_subscription("alice")
        await adapter.remove_user("alice")
    finally:
        await adapter.close()

    add_path, add_request = panel.posts[0]
    assert add_path == "/xui/API/inbounds/addClient"
    body = json.loads(add_request.content)
    assert body["id"] == 2
    client = json.loads(body["settings"])["clients"][0]
    assert client["subId"] == "user_ab12cd34_1234"
    assert account.subscription_url == "https://panel.test/sub/user_ab12cd34_1234"
    assert revoked == "https://panel.test/sub/alice"
    assert panel.posts[-1][0] == "/xui/API/inbounds/2/delClient/alice"
