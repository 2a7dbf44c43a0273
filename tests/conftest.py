import copy
import json
from typing import Any

import httpx
import pytest
import pytest_asyncio

from hue_mirror.config import AppConfig
from hue_mirror.hue_client import HueClient
from hue_mirror.tree import ObjectTree


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        port=8000,
        bridge_host="bridge.test",
        bridge_port=80,
        bridge_user="user",
        bridge_ssl=False,
        polling=True,
        polling_interval=5,
        ignore_groups=False,
        ignore_scenes=False,
        ignore_osram=False,
        use_legacy_structure=False,
        native_turn_off_behaviour=False,
        turn_on_with_others=False,
        sync_software_sensors=False,
        push_enabled=False,
        push_reconnect_delay_seconds=0.0,
        reconnect_delay_seconds=0.0,
        write_lease_timeout_seconds=10.0,
        auth_tokens=["dev-token"],
        api_keys=["dev-key"],
        retry_max_attempts=3,
        retry_base_delay_ms=1,
        db_path=":memory:",
    )


@pytest_asyncio.fixture
async def tree():
    tree = ObjectTree(":memory:")
    await tree.connect()
    try:
        yield tree
    finally:
        await tree.close()


def sample_snapshot() -> dict[str, Any]:
    return {
        "config": {"name": "Philips hue", "bridgeid": "001788FFFE000000", "apiversion": "1.50.0"},
        "lights": {
            "1": {
                "name": "Lamp",
                "type": "Extended color light",
                "modelid": "LCT015",
                "swversion": "1.50.2",
                "state": {
                    "on": True,
                    "bri": 200,
                    "hue": 1000,
                    "sat": 100,
                    "xy": [0.3, 0.3],
                    "ct": 366,
                    "alert": "none",
                    "effect": "none",
                    "colormode": "xy",
                    "reachable": True,
                },
                "capabilities": {"control": {"ct": {"min": 153, "max": 500}}},
            },
            "2": {
                "name": "Desk",
                "type": "Dimmable light",
                "modelid": "LWB010",
                "state": {"on": False, "bri": 120, "alert": "none", "reachable": True},
            },
        },
        "groups": {
            "1": {
                "name": "Living",
                "type": "Room",
                "class": "Living room",
                "lights": ["1", "2"],
                "action": {"on": True, "bri": 200, "hue": 1000, "sat": 100, "xy": [0.3, 0.3], "ct": 366},
                "state": {"any_on": True, "all_on": False},
            },
        },
        "sensors": {
            "5": {
                "name": "Hall motion",
                "type": "ZLLPresence",
                "modelid": "SML001",
                "state": {"presence": False, "lastupdated": "2024-01-01T10:00:00"},
                "config": {"on": True, "reachable": True, "battery": 90},
            },
            "6": {
                "name": "Daylight",
                "type": "Daylight",
                "state": {"daylight": True, "lastupdated": "2024-01-01T10:00:00"},
                "config": {"on": True},
            },
            "7": {
                "name": "Rule helper",
                "type": "CLIPGenericStatus",
                "state": {"status": 0},
                "config": {"on": True},
            },
        },
        "scenes": {
            "abc": {"name": "Relax", "type": "GroupScene", "group": "1"},
            "def": {"name": "Bright light", "type": "LightScene"},
        },
    }


class FakeBridge:
    """In-memory v1 bridge behind an httpx.MockTransport."""

    def __init__(self, snapshot: dict[str, Any] | None = None, username: str = "user") -> None:
        self.snapshot = snapshot if snapshot is not None else sample_snapshot()
        self.username = username
        self.calls: list[tuple[str, str, Any]] = []
        self.fail = False

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _group(self, gid: str) -> dict[str, Any] | None:
        if gid == "0":
            lights = self.snapshot.get("lights") or {}
            on = [bool(light["state"].get("on")) for light in lights.values()]
            return {
                "name": "Group 0",
                "type": "LightGroup",
                "lights": sorted(lights),
                "action": {"on": False, "bri": 0, "ct": 454, "xy": [0, 0]},
                "state": {"any_on": any(on), "all_on": bool(on) and all(on)},
            }
        return (self.snapshot.get("groups") or {}).get(gid)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        path = request.url.path
        self.calls.append((request.method, path, body))
        if self.fail:
            raise httpx.ConnectError("no route", request=request)

        prefix = f"/api/{self.username}"
        if not path.startswith(prefix):
            return httpx.Response(404, json={"error": "unknown path"})
        parts = [p for p in path[len(prefix) :].split("/") if p]

        if request.method == "GET":
            if not parts:
                return httpx.Response(200, json=copy.deepcopy(self.snapshot))
            if len(parts) == 2:
                kind, rid = parts
                record = self._group(rid) if kind == "groups" else (self.snapshot.get(kind) or {}).get(rid)
                if record is None:
                    return httpx.Response(
                        200, json=[{"error": {"type": 3, "address": path, "description": "resource not available"}}]
                    )
                return httpx.Response(200, json=copy.deepcopy(record))

        if request.method == "PUT" and len(parts) == 3:
            kind, rid, section = parts
            if kind == "lights":
                self.snapshot["lights"][rid]["state"].update(body)
            elif kind == "groups" and rid != "0":
                self.snapshot["groups"][rid]["action"].update(body)
            elif kind == "sensors":
                self.snapshot["sensors"][rid][section].update(body)
            return httpx.Response(
                200, json=[{"success": {f"/{kind}/{rid}/{section}/{key}": val}} for key, val in body.items()]
            )

        if request.method == "PUT" and len(parts) == 2:
            return httpx.Response(200, json=[{"success": {f"/{parts[0]}/{parts[1]}/stream/active": True}}])

        return httpx.Response(404, json={"error": "unsupported"})

    def requests(self, method: str) -> list[tuple[str, Any]]:
        return [(path, body) for m, path, body in self.calls if m == method]


@pytest.fixture
def bridge() -> FakeBridge:
    return FakeBridge()


@pytest_asyncio.fixture
async def hue(bridge: FakeBridge):
    client = HueClient(
        bridge_host="bridge.test",
        username=bridge.username,
        transport=bridge.transport(),
        retry_max_attempts=1,
        retry_base_delay_ms=1,
    )
    try:
        yield client
    finally:
        await client.close()
