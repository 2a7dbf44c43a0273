import httpx
import pytest

from hue_mirror.actions import ActionDispatcher
from hue_mirror.hue_client import HueClient
from hue_mirror.security import AuthContext
from hue_mirror.tree import MirrorObject


AUTH = AuthContext(credential="dev", scheme="bearer")


def _dispatcher(tree, config, handler):
    def factory(**kwargs):
        return HueClient(transport=httpx.MockTransport(handler), **kwargs)

    hue = HueClient(bridge_host=None, username=None, transport=httpx.MockTransport(handler))
    return ActionDispatcher(tree=tree, hue=hue, config=config, hue_factory=factory)


async def _unused(request: httpx.Request) -> httpx.Response:
    raise AssertionError(f"unexpected request {request.url}")


@pytest.mark.asyncio
async def test_create_user_requires_button_press(tree, config):
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api"
        return httpx.Response(200, json=[{"error": {"type": 101, "description": "link button not pressed"}}])

    dispatcher = _dispatcher(tree, config, handler)
    resp = await dispatcher.dispatch(
        payload={"requestId": "r1", "action": "bridge.create_user", "args": {"address": "192.168.1.2"}},
        auth=AUTH,
    )
    assert resp.status_code == 409
    assert resp.body["ok"] is False
    assert resp.body["requestId"] == "r1"
    assert resp.body["error"]["code"] == "link_button_not_pressed"
    assert await tree.get_setting("bridge_user") is None


@pytest.mark.asyncio
async def test_create_user_stores_credentials(tree, config):
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "192.168.1.2"
        return httpx.Response(200, json=[{"success": {"username": "new-user"}}])

    dispatcher = _dispatcher(tree, config, handler)
    resp = await dispatcher.dispatch(
        payload={"action": "bridge.create_user", "args": {"address": "192.168.1.2", "devicetype": "x#y"}},
        auth=AUTH,
    )
    assert resp.status_code == 200
    assert resp.body["result"] == {"username": "new-user", "address": "192.168.1.2", "stored": True}
    assert await tree.get_setting("bridge_host") == "192.168.1.2"
    assert await tree.get_setting("bridge_user") == "new-user"


@pytest.mark.asyncio
async def test_create_user_rejects_urls(tree, config):
    dispatcher = _dispatcher(tree, config, _unused)
    resp = await dispatcher.dispatch(
        payload={"action": "bridge.create_user", "args": {"address": "http://192.168.1.2/"}},
        auth=AUTH,
    )
    assert resp.status_code == 400
    assert resp.body["error"]["code"] == "invalid_address"


@pytest.mark.asyncio
async def test_create_user_unreachable_bridge(tree, config):
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    dispatcher = _dispatcher(tree, config, handler)
    resp = await dispatcher.dispatch(
        payload={"action": "bridge.create_user", "args": {"address": "192.168.1.2"}},
        auth=AUTH,
    )
    assert resp.status_code == 424
    assert resp.body["error"]["code"] == "bridge_unreachable"


@pytest.mark.asyncio
async def test_unknown_action(tree, config):
    dispatcher = _dispatcher(tree, config, _unused)
    resp = await dispatcher.dispatch(payload={"action": "light.set", "args": {}}, auth=AUTH)
    assert resp.status_code == 400
    assert resp.body["error"]["code"] == "unknown_action"


@pytest.mark.asyncio
async def test_state_get(tree, config):
    dispatcher = _dispatcher(tree, config, _unused)
    await tree.set_state("Lamp.bri", 200, ack=True)

    resp = await dispatcher.dispatch(payload={"action": "state.get", "args": {"id": "Lamp.bri"}}, auth=AUTH)
    assert resp.status_code == 200
    assert resp.body["result"]["val"] == 200
    assert resp.body["result"]["ack"] is True

    missing = await dispatcher.dispatch(payload={"action": "state.get", "args": {"id": "Nope.bri"}}, auth=AUTH)
    assert missing.status_code == 404
    assert missing.body["error"]["code"] == "not_found"


@pytest.mark.asyncio
async def test_state_set_writes_unconfirmed_value(tree, config):
    seen = []

    async def listener(state_id, state):
        seen.append((state_id, state.val))

    tree.subscribe(listener)
    await tree.set_object(MirrorObject(id="Lamp.on", type="state", common={"write": True}))
    dispatcher = _dispatcher(tree, config, _unused)

    resp = await dispatcher.dispatch(payload={"action": "state.set", "args": {"id": "Lamp.on", "val": True}}, auth=AUTH)
    assert resp.status_code == 200
    assert resp.body["result"]["ack"] is False
    assert seen == [("Lamp.on", True)]


@pytest.mark.asyncio
async def test_state_set_rejects_read_only_and_unknown(tree, config):
    await tree.set_object(MirrorObject(id="Lamp.colormode", type="state", common={"write": False}))
    await tree.set_object(MirrorObject(id="Lamp", type="channel"))
    dispatcher = _dispatcher(tree, config, _unused)

    read_only = await dispatcher.dispatch(
        payload={"action": "state.set", "args": {"id": "Lamp.colormode", "val": "xy"}}, auth=AUTH
    )
    assert read_only.status_code == 400
    assert read_only.body["error"]["code"] == "read_only"

    channel = await dispatcher.dispatch(payload={"action": "state.set", "args": {"id": "Lamp", "val": 1}}, auth=AUTH)
    assert channel.status_code == 404

    no_val = await dispatcher.dispatch(payload={"action": "state.set", "args": {"id": "Lamp.colormode"}}, auth=AUTH)
    assert no_val.status_code == 400
    assert no_val.body["error"]["code"] == "invalid_val"
