import httpx
import pytest

from hue_mirror.hue_client import HueApiError, HueClient, HueTransportError, HueUpstreamError


@pytest.mark.asyncio
async def test_hue_client_returns_json_body_on_success():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/abc/lights/1"
        return httpx.Response(200, json={"name": "Lamp"})

    client = HueClient(
        bridge_host="bridge.test",
        username="abc",
        transport=httpx.MockTransport(handler),
    )
    try:
        assert await client.get_light("1") == {"name": "Lamp"}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_raises_upstream_error_and_exposes_body():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"errors": [{"description": "nope"}]})

    client = HueClient(
        bridge_host="bridge.test",
        username="abc",
        transport=httpx.MockTransport(handler),
    )
    try:
        with pytest.raises(HueUpstreamError) as exc:
            await client.request_jsonish(method="GET", path="/api/abc/lights")
        assert exc.value.status_code == 404
        assert exc.value.body == {"errors": [{"description": "nope"}]}
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_retries_on_429_for_safe_methods():
    calls = {"n": 0}

    async def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(429, json={"error": "rate_limited"})
        return httpx.Response(200, json={"ok": True})

    client = HueClient(
        bridge_host="bridge.test",
        username="abc",
        transport=httpx.MockTransport(handler),
    )
    try:
        result = await client.request_jsonish(
            method="GET", path="/api/abc/lights", retry=True, max_attempts=3, base_delay_ms=1
        )
        assert result.body == {"ok": True}
        assert calls["n"] == 3
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_raises_transport_error_on_connect_failure():
    async def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("no route", request=request)

    client = HueClient(
        bridge_host="bridge.test",
        username="abc",
        transport=httpx.MockTransport(handler),
        retry_max_attempts=2,
        retry_base_delay_ms=1,
    )
    try:
        with pytest.raises(HueTransportError):
            await client.get_full_snapshot()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_raises_api_error_from_error_list():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json=[{"error": {"type": 7, "address": "/lights/1/state/bri", "description": "invalid value"}}]
        )

    client = HueClient(bridge_host="bridge.test", username="abc", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(HueApiError) as exc:
            await client.set_light_state("1", {"bri": 999})
        assert exc.value.type == 7
        assert exc.value.address == "/lights/1/state/bri"
        assert not exc.value.link_button_not_pressed
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_hue_client_requires_configured_bridge():
    client = HueClient(bridge_host=None, username=None)
    with pytest.raises(HueTransportError):
        await client.get_full_snapshot()


@pytest.mark.asyncio
async def test_create_user_returns_username():
    async def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        assert request.url.path == "/api"
        return httpx.Response(200, json=[{"success": {"username": "new-user"}}])

    client = HueClient(bridge_host="bridge.test", username=None, transport=httpx.MockTransport(handler))
    try:
        assert await client.create_user("hue-mirror#test") == "new-user"
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_create_user_without_button_press():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"error": {"type": 101, "description": "link button not pressed"}}])

    client = HueClient(bridge_host="bridge.test", username=None, transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(HueApiError) as exc:
            await client.create_user("hue-mirror#test")
        assert exc.value.link_button_not_pressed
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_write_paths():
    seen = []

    async def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path, request.content))
        return httpx.Response(200, json=[{"success": {}}])

    client = HueClient(bridge_host="bridge.test", username="abc", port=8080, transport=httpx.MockTransport(handler))
    try:
        await client.set_group_state("0", {"scene": "abc"})
        await client.enable_streaming("4")
        await client.update_sensor_config("5", {"on": False})
        await client.update_sensor_state("6", {"flag": True})
    finally:
        await client.close()
    assert [path for _, path, _ in seen] == [
        "/api/abc/groups/0/action",
        "/api/abc/groups/4",
        "/api/abc/sensors/5/config",
        "/api/abc/sensors/6/state",
    ]
    assert all(method == "PUT" for method, _, _ in seen)


@pytest.mark.asyncio
async def test_configure_switches_bridge():
    hosts = []

    async def handler(request: httpx.Request) -> httpx.Response:
        hosts.append(request.url.host)
        return httpx.Response(200, json={"config": {}})

    client = HueClient(bridge_host="old.test", username="abc", transport=httpx.MockTransport(handler))
    try:
        await client.get_full_snapshot()
        await client.configure(bridge_host="new.test", username="abc")
        await client.get_full_snapshot()
    finally:
        await client.close()
    assert hosts == ["old.test", "new.test"]
    assert client.bridge_host == "new.test"
