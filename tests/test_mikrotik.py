import base64
import json

import httpx
import pytest

from panelshop.errors import PanelError
from panelshop.models import GIB, AccountStatus
from panelshop.panels.mikrotik import MikrotikAdapter


class FakeRouter:
    def __init__(self):
        self.users = {}
        self.profiles = []
        self.requests = []

    def __call__(self, request):
        expected = "Basic " + base64.b64encode(b"admin:secret").decode()
        assert request.headers["Authorization"] == expected
        self.requests.append(request)
        path = request.url.path
        body = json.loads(request.content) if request.content else {}

        if path == "/rest/user-manager/user/add":
            self.users[body["name"]] = {".id": f"*{len(self.users) + 1}", "disabled": "false", **body}
            return httpx.Response(200, json={"ret": self.users[body["name"]][".id"]})
        if path == "/rest/user-manager/user-profile/add":
            self.profiles.append(body)
            return httpx.Response(200, json={})
        if path == "/rest/user-manager/user" and request.method == "GET":
            name = request.url.params["name"]
            return httpx.Response(200, json=[self.users[name]] if name in self.users else [])
        if path == "/rest/user-manager/user/monitor":
            return httpx.Response(200, json=[{"total-upload": "1024", "total-download": "2048"}])
        if path == "/rest/user-manager/user/set":
            user = next(u for u in self.users.values() if u[".id"] == body[".id"])
            user.update({k: v for k, v in body.items() if k != ".id"})
            return httpx.Response(200, json=[])
        raise AssertionError(path)


def make_adapter(router):
    return MikrotikAdapter(
        base_url="http://10.0.0.1",
        username="admin",
        password="secret",
        inbound="vpn-users",
        transport=httpx.MockTransport(router),
    )


@pytest.mark.asyncio
async def test_limits_are_bookkeeping_only():
    router = FakeRouter()
    adapter = make_adapter(router)
    try:
        created = await adapter.create_user("user_ab12cd34_1234", 10, 30)
        fetched = await adapter.get_user("user_ab12cd34_1234")
    finally:
        await adapter.close()

    assert router.profiles == [{"user": "user_ab12cd34_1234", "profile": "vpn-users"}]
    assert created.enforced is False
    assert fetched.enforced is False
    assert fetched.status == AccountStatus.ACTIVE
    assert fetched.data_limit == 10 * GIB
    assert fetched.expire == created.expire
    assert fetched.used_traffic == 3072


@pytest.mark.asyncio
async def test_modify_updates_comment_bookkeeping():
    router = FakeRouter()
    adapter = make_adapter(router)
    try:
        await adapter.create_user("carol", 10, 0)
        await adapter.modify_user("carol", volume_gb=25)
        account = await adapter.get_user("carol")
    finally:
        await adapter.close()

    assert account.data_limit == 25 * GIB
    assert account.expire == 0


@pytest.mark.asyncio
async def test_reset_usage_is_not_supported():
    adapter = make_adapter(FakeRouter())
    try:
        with pytest.raises(PanelError, match="not supported"):
            await adapter.reset_data_usage("anyone")
    finally:
        await adapter.close()


@pytest.mark.asyncio
async def test_missing_user():
    adapter = make_adapter(FakeRouter())
    try:
        assert await adapter.get_user("ghost") is None
        with pytest.raises(PanelError, match="not found"):
            await adapter.remove_user("ghost")
    finally:
        await adapter.close()
