from __future__ import annotations

import asyncio
import enum
import logging
import re
from typing import Any, Awaitable, Callable, Coroutine, Mapping

import aiosqlite

from hue_mirror.colors import kelvin_range
from hue_mirror.config import AppConfig
from hue_mirror.hue_client import HUE_ERRORS, HueClient
from hue_mirror.leases import WriteLeases
from hue_mirror.merger import DEFAULT_KELVIN_RANGE, EntityInfo, MergeError, MergeOptions, merge_command
from hue_mirror.naming import NameRegistry, PollEntry, TranslationTables, bridge_path, scene_slug
from hue_mirror.properties import (
    GROUP_KELVIN_RANGE,
    GROUP_PROPERTIES,
    LIGHT_PROPERTIES,
    SENSOR_PROPERTIES,
    SOFTWARE_SENSORS,
    SUPPORTED_SENSORS,
    PropertySpec,
    normalize_states,
    state_value,
    surface,
)
from hue_mirror.push import PushConnection, PushTranslator
from hue_mirror.tree import MirrorObject, ObjectTree, State


logger = logging.getLogger(__name__)

DEVICE_ID = "bridge"
CONNECTION_STATE = "info.connection"
COLOR_ENUM = "enum.functions.color"

GROUP_TYPES = ("Entertainment", "LightGroup", "Room", "Zone")
COLOR_LIGHT_TYPES = ("Extended color light", "Color light")
DIMMER_LIGHT_TYPES = ("Dimmable light", "Dimmable plug-in unit")

# Delay between a group command and its confirmation read.
GROUP_UPDATE_DELAY_SECONDS = 0.15

SENSOR_WRITES = {
    "on": ("config", bool),
    "status": ("state", int),
    "flag": ("state", bool),
}


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCED = "synced"
    POLLING = "polling"


def _all_group() -> dict[str, Any]:
    # The hub reports no action for group 0; ct 454 keeps the Kelvin value finite.
    return {
        "name": "All",
        "type": "LightGroup",
        "action": {
            "alert": "select",
            "bri": 0,
            "colormode": "",
            "ct": 454,
            "effect": "none",
            "hue": 0,
            "on": False,
            "sat": 0,
            "xy": "0,0",
        },
        "state": {},
    }


def _records(snapshot: Mapping[str, Any], key: str) -> dict[str, dict[str, Any]]:
    records = snapshot.get(key)
    if not isinstance(records, dict):
        return {}
    return {str(k): v for k, v in records.items() if isinstance(v, dict)}


def _sensor_values(sensor: Mapping[str, Any]) -> dict[str, Any]:
    # config wins over state for keys reported in both
    return {**(sensor.get("state") or {}), **(sensor.get("config") or {})}


def _ct_capabilities(record: Mapping[str, Any]) -> dict[str, Any] | None:
    caps = ((record.get("capabilities") or {}).get("control") or {}).get("ct")
    return caps if isinstance(caps, dict) else None


class Reconciler:
    """
    Keeps the object tree in line with one hub.

    `connect` builds the full object set from one snapshot, `poll` refreshes
    states on a timer, and unconfirmed writes to the tree are turned into hub
    commands. Translation tables, write leases and the expected device count
    are per instance and rebuilt on every (re)connect.
    """

    def __init__(
        self,
        *,
        config: AppConfig,
        hue: HueClient,
        tree: ObjectTree,
        tables: TranslationTables | None = None,
        leases: WriteLeases | None = None,
        on_restart: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.config = config
        self.hue = hue
        self.tree = tree
        self.tables = tables if tables is not None else TranslationTables()
        self.leases = leases if leases is not None else WriteLeases(timeout_seconds=config.write_lease_timeout_seconds)
        self.state = ConnectionState.DISCONNECTED
        self.expected_devices = 0
        self.use_legacy_structure = config.use_legacy_structure
        self.bridge_name: str | None = None
        self.translator = PushTranslator(tree=tree, tables=self.tables)
        self.push = PushConnection(
            hue=hue, translator=self.translator, reconnect_delay_seconds=config.push_reconnect_delay_seconds
        )
        self.supported_sensors: tuple[str, ...] = SUPPORTED_SENSORS
        if config.sync_software_sensors:
            self.supported_sensors += SOFTWARE_SENSORS
        self._merge_options = MergeOptions(
            native_turn_off_behaviour=config.native_turn_off_behaviour,
            turn_on_with_others=config.turn_on_with_others,
        )
        self._on_restart = on_restart
        self._running = False
        self._poll_handle: asyncio.TimerHandle | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[Any]] = set()
        tree.subscribe(self.handle_state_change)

    @property
    def connected(self) -> bool:
        return self.state in (ConnectionState.SYNCED, ConnectionState.POLLING)

    @property
    def prefix(self) -> str:
        if self.use_legacy_structure and self.bridge_name:
            return f"{bridge_path(self.bridge_name)}."
        return ""

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _cancel_timers(self) -> None:
        if self._poll_handle:
            self._poll_handle.cancel()
            self._poll_handle = None
        if self._reconnect_handle:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _schedule_reconnect(self, delay: float | None = None) -> None:
        if not self._running:
            return
        if delay is None:
            delay = self.config.reconnect_delay_seconds
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, lambda: self._spawn(self.connect()))

    def _schedule_poll(self) -> None:
        if not self._running or not self.config.polling:
            return
        loop = asyncio.get_running_loop()
        self._poll_handle = loop.call_later(self.config.polling_interval, lambda: self._spawn(self.poll()))

    async def start(self) -> None:
        self._running = True
        await self.tree.upsert_object(MirrorObject(id="info", type="channel", common={"name": "Information"}))
        created = await self.tree.upsert_object(
            MirrorObject(
                id=CONNECTION_STATE,
                type="state",
                common={
                    "name": "Device or service connected",
                    "type": "boolean",
                    "role": "indicator.connected",
                    "read": True,
                    "write": False,
                    "def": False,
                },
            )
        )
        if created:
            await self.tree.set_state(CONNECTION_STATE, False, ack=True)

        if not self.hue.bridge_host:
            logger.warning("No bridge configured yet - please configure the bridge first")
            return
        await self.connect()

    async def stop(self) -> None:
        self._running = False
        self._cancel_timers()
        self.push.stop()
        for task in list(self._tasks):
            task.cancel()
        self.state = ConnectionState.DISCONNECTED
        try:
            await self.tree.set_state_changed(CONNECTION_STATE, False, ack=True)
        except (aiosqlite.Error, RuntimeError) as exc:
            logger.warning("Could not reset %s: %s", CONNECTION_STATE, exc)
        logger.info("cleaned everything up...")

    async def restart(self) -> None:
        logger.info("Restarting connection to %s", self.hue.bridge_host)
        self._cancel_timers()
        self.push.stop()
        self.tables.clear()
        self.leases.clear()
        self.state = ConnectionState.DISCONNECTED
        if self._on_restart is not None:
            await self._on_restart()
        else:
            self._schedule_reconnect(0)

    async def connect(self) -> bool:
        self._reconnect_handle = None
        self.state = ConnectionState.CONNECTING
        scheme = "https" if self.config.bridge_ssl else "insecure http"
        logger.debug("Using %s to connect to %s:%s", scheme, self.hue.bridge_host, self.hue.port)

        snapshot: dict[str, Any] | None = None
        try:
            snapshot = await self.hue.get_full_snapshot()
        except HUE_ERRORS as exc:
            logger.error("Could not get snapshot: %s", exc)

        if not snapshot or not isinstance(snapshot.get("config"), dict):
            logger.warning(
                "Could not get configuration from HUE bridge (%s:%s)", self.hue.bridge_host, self.hue.port
            )
            self._schedule_reconnect()
            return False

        self.bridge_name = str(snapshot["config"].get("name") or DEVICE_ID)
        legacy_id = bridge_path(self.bridge_name)
        if not self.use_legacy_structure and legacy_id != DEVICE_ID:
            legacy = await self.tree.get_object(legacy_id)
            if legacy is not None and legacy.type == "device":
                self.use_legacy_structure = True
                logger.info("Use legacy structure, because existing")

        await self.tree.set_state_changed(CONNECTION_STATE, True, ack=True)

        objs = await self.build_objects(snapshot)
        if objs is None:
            await self.restart()
            return False
        await self.sync_objects(objs)
        self.state = ConnectionState.SYNCED

        if self.config.push_enabled:
            self.push.start()
        if self.config.polling and self._running:
            self._spawn(self.poll())
        return True

    async def _existing_role(self, path: str) -> str | None:
        try:
            existing = await self.tree.get_object(path)
        except aiosqlite.Error as exc:
            logger.warning("Could not check channel existence: %s", exc)
            return None
        if existing is None:
            return None
        role = existing.common.get("role")
        return role if isinstance(role, str) and role else None

    @staticmethod
    def _state_objects(
        path: str,
        states: Mapping[str, Any],
        table: Mapping[str, PropertySpec],
        *,
        native: dict[str, Any],
        kind: str,
        overrides: Mapping[str, dict[str, Any]] | None = None,
    ) -> list[MirrorObject]:
        objs = []
        for name, value in states.items():
            meta = table.get(name)
            if meta is None:
                logger.info("skip %s: %s.%s", kind, path, name)
                continue
            extra = (overrides or {}).get(name, {})
            objs.append(
                MirrorObject(
                    id=f"{path}.{name}",
                    type="state",
                    common=meta.common(f"{path}.{name}", default=value, **extra),
                    native=dict(native),
                )
            )
        return objs

    async def build_objects(self, snapshot: Mapping[str, Any]) -> list[MirrorObject] | None:
        """
        Builds every device, channel and state object for one snapshot.

        Rebuilds the translation tables and the expected device count as a side
        effect. Returns None when the snapshot lacks the groups map.
        """
        self.tables.clear()
        registry = NameRegistry(self.prefix)
        sensors = _records(snapshot, "sensors")
        lights = _records(snapshot, "lights")
        self.expected_devices = len(sensors) + len(lights)

        objs = await self._sensor_objects(sensors, registry)
        objs += await self._light_objects(lights, registry)

        group_objs = await self._group_objects(snapshot, registry)
        if group_objs is None:
            return None
        objs += group_objs
        objs += self._scene_objects(_records(snapshot, "scenes"))

        logger.info("creating/updating bridge device")
        config = snapshot.get("config") or {}
        device_id = bridge_path(self.bridge_name or DEVICE_ID) if self.use_legacy_structure else DEVICE_ID
        objs.append(MirrorObject(id=device_id, type="device", common={"name": self.bridge_name}, native=dict(config)))
        return objs

    async def _sensor_objects(self, sensors: dict[str, dict[str, Any]], registry: NameRegistry) -> list[MirrorObject]:
        objs: list[MirrorObject] = []
        for sid, sensor in sensors.items():
            sensor_type = sensor.get("type")
            if sensor_type not in self.supported_sensors:
                continue
            name = str(sensor.get("name") or sid)
            role = await self._existing_role(registry.candidate(name))
            path = registry.claim(
                name, sensor_type, role_conflict=role is not None and role != sensor_type, label=f"sensor {sid}"
            )
            if path is None:
                continue

            self.tables.poll_sensors.append(PollEntry(id=sid, name=path, sname=re.sub(r"[\s.]", "", name)))
            states = normalize_states(
                _sensor_values(sensor),
                reachability_implies_off=False,
                label=path,
            )
            objs += self._state_objects(path, states, SENSOR_PROPERTIES, native={"id": sid}, kind="sensor")
            objs.append(
                MirrorObject(
                    id=path,
                    type="channel",
                    common={"name": name, "role": sensor_type},
                    native={
                        "id": sid,
                        "type": sensor_type,
                        "name": name,
                        "modelid": sensor.get("modelid"),
                        "swversion": sensor.get("swversion"),
                    },
                )
            )
        logger.info("created/updated %d sensor channels", len(self.tables.poll_sensors))
        return objs

    async def _light_kelvin_range(self, lid: str, light: Mapping[str, Any]) -> tuple[int, int]:
        caps = _ct_capabilities(light)
        if caps is None:
            try:
                caps = _ct_capabilities(await self.hue.get_light(lid))
            except HUE_ERRORS as exc:
                logger.debug("Could not get capabilities of light %s: %s", lid, exc)
        return kelvin_range(caps)

    async def _light_objects(self, lights: dict[str, dict[str, Any]], registry: NameRegistry) -> list[MirrorObject]:
        objs: list[MirrorObject] = []
        for lid, light in lights.items():
            light_type = str(light.get("type") or "")
            name = str(light.get("name") or lid)
            role = await self._existing_role(registry.candidate(name))
            conflict = role is not None and not role.startswith("light") and role != "switch"
            path = registry.claim(name, light_type, role_conflict=conflict, label=f"light {lid}")
            if path is None:
                continue

            self.tables.channel_ids[path] = lid
            self.tables.poll_lights.append(PollEntry(id=lid, name=path))

            raw = dict(light.get("state") or {})
            if light_type in COLOR_LIGHT_TYPES:
                raw.update(r=0, g=0, b=0)
            if not light_type.startswith("On/Off"):
                raw["command"] = "{}"
                raw["level"] = 0

            overrides: dict[str, dict[str, Any]] = {}
            ct_fallback = None
            if "ct" in raw:
                low, high = await self._light_kelvin_range(lid, light)
                overrides["ct"] = {"min": low, "max": high}
                ct_fallback = high

            states = normalize_states(
                raw, reachability_implies_off=not self.config.ignore_osram, ct_fallback=ct_fallback, label=path
            )
            update_state = (light.get("swupdate") or {}).get("state")
            if update_state:
                states["updateable"] = update_state
            objs += self._state_objects(
                path, states, LIGHT_PROPERTIES, native={"id": lid}, kind="light", overrides=overrides
            )

            channel_role = "light.color"
            if light_type in DIMMER_LIGHT_TYPES:
                channel_role = "light.dimmer"
            elif light_type.startswith("On/Off"):
                channel_role = "switch"
            objs.append(
                MirrorObject(
                    id=path,
                    type="channel",
                    common={"name": name, "role": channel_role},
                    native={
                        "id": lid,
                        "type": light_type,
                        "name": name,
                        "modelid": light.get("modelid"),
                        "swversion": light.get("swversion"),
                        "pointsymbol": light.get("pointsymbol"),
                    },
                )
            )
        logger.info("created/updated %d light channels", len(self.tables.poll_lights))
        return objs

    async def _group_objects(self, snapshot: Mapping[str, Any], registry: NameRegistry) -> list[MirrorObject] | None:
        if self.config.ignore_groups:
            return []
        if not isinstance(snapshot.get("groups"), dict):
            logger.error("Could not get groups from API: %s", sorted(snapshot))
            return None

        groups = _records(snapshot, "groups")
        self.expected_devices += len(groups)
        all_groups = {"0": _all_group()}
        all_groups.update((gid, group) for gid, group in groups.items() if gid != "0")

        objs: list[MirrorObject] = []
        for gid, group in all_groups.items():
            group_type = str(group.get("type") or "")
            name = str(group.get("name") or gid)
            role = await self._existing_role(registry.candidate(name))
            path = registry.claim(
                name, group_type, role_conflict=role is not None and role not in GROUP_TYPES, label=f"group {gid}"
            )
            if path is None:
                continue

            self.tables.group_ids[path] = gid
            self.tables.poll_groups.append(PollEntry(id=gid, name=path))

            raw = dict(group.get("action") or {})
            raw.update(r=0, g=0, b=0, command="{}", level=0)
            group_state = group.get("state") or {}
            raw["anyOn"] = bool(group_state.get("any_on", False)) if gid != "0" else False
            raw["allOn"] = bool(group_state.get("all_on", False)) if gid != "0" else False
            raw.update(self._entertainment_states(group))

            states = normalize_states(raw, ct_fallback=GROUP_KELVIN_RANGE[1], label=path)
            objs += self._state_objects(path, states, GROUP_PROPERTIES, native={"id": gid}, kind="group")
            objs.append(
                MirrorObject(
                    id=path,
                    type="channel",
                    common={"name": name, "role": group_type},
                    native={"id": gid, "type": group_type, "name": name, "lights": group.get("lights")},
                )
            )
        logger.info("created/updated %d groups channels", len(self.tables.poll_groups))
        return objs

    @staticmethod
    def _entertainment_states(group: Mapping[str, Any]) -> dict[str, Any]:
        states: dict[str, Any] = {}
        if group.get("class"):
            states["class"] = group["class"]
        stream = group.get("stream")
        if isinstance(stream, dict) and stream.get("active") is not None:
            states["activeStream"] = stream["active"]
        return states

    def _scene_objects(self, scenes: dict[str, dict[str, Any]]) -> list[MirrorObject]:
        if self.config.ignore_scenes:
            return []

        group_channels = {gid: path for path, gid in self.tables.group_ids.items()}
        scene_root = f"{self.prefix}lightScenes"
        objs: list[MirrorObject] = []
        root_created = False
        count = 0
        for scene_id, scene in scenes.items():
            name = str(scene.get("name") or scene_id)
            common = {"name": f"Scene {name}", "role": "button", "type": "boolean", "read": False, "write": True}
            if scene.get("type") == "GroupScene":
                if self.config.ignore_groups:
                    continue
                channel = group_channels.get(str(scene.get("group")))
                if channel is None:
                    logger.debug("Skip scene %s, group %s has no channel", name, scene.get("group"))
                    continue
                logger.debug("Create %s in %s", name, channel)
                objs.append(
                    MirrorObject(
                        id=f"{channel}.scene_{scene_slug(name)}",
                        type="state",
                        common=common,
                        native={"id": scene_id, "group": scene.get("group")},
                    )
                )
            else:
                if not root_created:
                    objs.append(MirrorObject(id=scene_root, type="channel", common={"name": "Light scenes"}))
                    root_created = True
                logger.debug("Create %s", name)
                objs.append(
                    MirrorObject(
                        id=f"{scene_root}.scene_{scene_slug(name)}", type="state", common=common, native={"id": scene_id}
                    )
                )
            count += 1
        logger.info("created/updated %d scenes", count)
        return objs

    async def sync_objects(self, objs: list[MirrorObject]) -> None:
        for obj in objs:
            try:
                if obj.common.get("role") == "level.color.saturation":
                    await self.tree.add_enum_member(COLOR_ENUM, obj.id)
                created = await self.tree.upsert_object(obj)
                if obj.type == "state" and "def" in obj.common:
                    if created or await self.tree.get_state(obj.id) is None:
                        await self.tree.set_state(obj.id, obj.common["def"], ack=True)
            except aiosqlite.Error as exc:
                logger.error("Could not sync object %s: %s", obj.id, exc)

    async def sync_states(self, values: list[tuple[str, Any]]) -> None:
        for state_id, val in values:
            channel = state_id.rpartition(".")[0]
            if self.leases.is_blocked(channel):
                logger.debug("Syncing state of %s blocked", channel)
                continue
            try:
                await self.tree.set_state_changed(state_id, val, ack=True)
            except aiosqlite.Error as exc:
                logger.warning("Error on syncing state of %s: %s", state_id, exc)

    async def poll(self) -> None:
        if self._poll_handle:
            self._poll_handle.cancel()
            self._poll_handle = None
        self.state = ConnectionState.POLLING
        logger.debug("Poll all states")

        restart = False
        try:
            snapshot = await self.hue.get_full_snapshot()
            await self.tree.set_state_changed(CONNECTION_STATE, True, ack=True)
            restart = await self._apply_snapshot(snapshot)
        except (*HUE_ERRORS, aiosqlite.Error) as exc:
            await self._mark_disconnected()
            logger.error("Could not poll all: %s", exc)
        except Exception:
            await self._mark_disconnected()
            logger.exception("Could not poll all")

        if restart:
            logger.info("New devices detected - initializing restart")
            await self.restart()
            return
        self._schedule_poll()

    async def _mark_disconnected(self) -> None:
        try:
            await self.tree.set_state_changed(CONNECTION_STATE, False, ack=True)
        except aiosqlite.Error as exc:
            logger.warning("Could not update %s: %s", CONNECTION_STATE, exc)

    async def _remove(self, kind: str, entry: PollEntry) -> None:
        logger.info("%s %s has been removed from bridge", kind, entry.name)
        self.expected_devices -= 1
        self.leases.release(entry.name)
        if self.tree.supports_recursive_delete:
            logger.info("Deleting %s", entry.name)
            await self.tree.delete_recursive(entry.name)
        else:
            logger.info("Recursive deletion not supported by the object tree, please delete %s manually", entry.name)

    def _light_values(self, channel: str, light: Mapping[str, Any]) -> list[tuple[str, Any]]:
        values: list[tuple[str, Any]] = []
        update_state = (light.get("swupdate") or {}).get("state")
        if update_state:
            values.append((f"{channel}.updateable", update_state))
        states = normalize_states(
            light.get("state") or {}, reachability_implies_off=not self.config.ignore_osram, label=channel
        )
        return values + surface(channel, states, LIGHT_PROPERTIES)

    def _group_values(
        self, channel: str, group: Mapping[str, Any], *, ct_fallback: float | None = None
    ) -> list[tuple[str, Any]]:
        raw = dict(group.get("action") or {})
        raw.update(self._entertainment_states(group))
        group_state = group.get("state") or {}
        if "any_on" in group_state:
            raw["anyOn"] = group_state["any_on"]
        if "all_on" in group_state:
            raw["allOn"] = group_state["all_on"]
        states = normalize_states(raw, ct_fallback=ct_fallback, label=channel)
        return surface(channel, states, GROUP_PROPERTIES)

    async def _apply_snapshot(self, snapshot: Mapping[str, Any]) -> bool:
        """Stages one polled snapshot; returns True when the hub gained devices."""
        sensors = _records(snapshot, "sensors")
        lights = _records(snapshot, "lights")
        current = len(sensors) + len(lights)
        values: list[tuple[str, Any]] = []

        for entry in list(self.tables.poll_sensors):
            sensor = sensors.get(entry.id)
            if sensor is None:
                self.tables.remove_sensor(entry.id)
                await self._remove("Sensor", entry)
                continue
            states = normalize_states(
                _sensor_values(sensor),
                reachability_implies_off=False,
                label=entry.name,
            )
            values += surface(entry.name, states, SENSOR_PROPERTIES)

        for entry in list(self.tables.poll_lights):
            light = lights.get(entry.id)
            if light is None:
                self.tables.remove_light(entry.id)
                await self._remove("Light", entry)
                continue
            values += self._light_values(entry.name, light)

        if not self.config.ignore_groups:
            groups = _records(snapshot, "groups")
            current += len(groups)
            for entry in list(self.tables.poll_groups):
                if entry.id == "0":
                    values += await self._read_group_values(entry)
                    continue
                group = groups.get(entry.id)
                if group is None:
                    self.tables.remove_group(entry.id)
                    await self._remove("Group", entry)
                    continue
                values += self._group_values(entry.name, group)

        await self.sync_states(values)

        if current > self.expected_devices:
            return True
        self.expected_devices = current
        return False

    async def _read_light_values(self, entry: PollEntry) -> list[tuple[str, Any]]:
        logger.debug("polling light %s (%s)", entry.name, entry.id)
        try:
            return self._light_values(entry.name, await self.hue.get_light(entry.id))
        except HUE_ERRORS as exc:
            logger.error("Cannot update light state %s (%s): %s", entry.name, entry.id, exc)
            return []

    async def _read_group_values(self, entry: PollEntry) -> list[tuple[str, Any]]:
        logger.debug("polling group %s (%s)", entry.name, entry.id)
        try:
            group = await self.hue.get_group(entry.id)
            return self._group_values(entry.name, group, ct_fallback=GROUP_KELVIN_RANGE[1])
        except HUE_ERRORS as exc:
            logger.error("Cannot update group state of %s (%s): %s", entry.name, entry.id, exc)
            return []

    async def handle_state_change(self, state_id: str, state: State) -> None:
        if state.ack:
            return
        logger.debug("stateChange %s %r", state_id, state.val)
        channel, _, prop = state_id.rpartition(".")

        if prop.startswith("scene_"):
            await self._start_scene(state_id)
            return

        channel_obj = await self.tree.get_object(channel)
        role = channel_obj.common.get("role") if channel_obj else None
        if channel_obj is not None and role in self.supported_sensors:
            await self._write_sensor(channel_obj, prop, state.val)
            return

        if prop == "activeStream":
            await self._set_streaming(channel, bool(state.val))
            return

        light_id = self.tables.channel_ids.get(channel)
        group_id = None if self.config.ignore_groups else self.tables.group_ids.get(channel)
        if channel_obj is None or (light_id is None and group_id is None):
            logger.warning("Ignoring write to %s, no light or group is mapped to %s", state_id, channel)
            return

        states = {
            sid[len(channel) + 1 :]: st for sid, st in (await self.tree.get_states(channel)).items()
        }
        entity = EntityInfo(
            role=role or "",
            model_id=channel_obj.native.get("modelid"),
            kelvin_range=await self._entity_kelvin_range(channel, is_group=group_id is not None),
        )
        try:
            merged = merge_command(states, prop, state.val, entity=entity, options=self._merge_options)
        except MergeError as exc:
            logger.error("Could not apply %s to %s: %s", prop, channel, exc)
            return

        command = dict(merged.command)
        if merged.scene is not None:
            scene_obj = await self.tree.get_object(f"{channel}.scene_{scene_slug(merged.scene)}")
            if group_id is not None and scene_obj is not None:
                command["scene"] = scene_obj.native.get("id")
            else:
                logger.warning('Scene "%s" not found in %s', merged.scene, channel)

        if not command:
            logger.debug("Nothing to send for %s", state_id)
            return

        logger.debug("final lightState for %s: %s", channel, command)
        self.leases.acquire(channel)
        try:
            if group_id is not None:
                await self.hue.set_group_state(group_id, command)
            else:
                await self.hue.set_light_state(light_id, command)
        except HUE_ERRORS as exc:
            self.leases.release(channel)
            kind = "GroupState" if group_id is not None else "LightState"
            logger.error("Could not set %s of %s: %s", kind, channel, exc)
            return
        self.leases.mark_sent(channel)

        # unconfirmed until the confirmation read or the next poll acks them
        for name, val in merged.mirror.items():
            if name in states:
                await self.tree.set_state(f"{channel}.{name}", state_value(val), ack=False, notify=False)

        if group_id is not None:
            await asyncio.sleep(GROUP_UPDATE_DELAY_SECONDS)
            values = await self._read_group_values(PollEntry(id=group_id, name=channel))
        else:
            values = await self._read_light_values(PollEntry(id=light_id, name=channel))
        self.leases.release(channel)
        await self.sync_states(values)

    async def _entity_kelvin_range(self, channel: str, *, is_group: bool) -> tuple[int, int]:
        fallback = GROUP_KELVIN_RANGE if is_group else DEFAULT_KELVIN_RANGE
        ct_obj = await self.tree.get_object(f"{channel}.ct")
        if ct_obj is None:
            return fallback
        low, high = ct_obj.common.get("min"), ct_obj.common.get("max")
        if isinstance(low, (int, float)) and isinstance(high, (int, float)):
            return int(low), int(high)
        return fallback

    async def _start_scene(self, state_id: str) -> None:
        obj = await self.tree.get_object(state_id)
        if obj is None:
            logger.error('Could not start scene: Object "%s" is not existing', state_id)
            return
        try:
            await self.hue.set_group_state("0", {"scene": obj.native.get("id")})
        except HUE_ERRORS as exc:
            logger.error("Could not start scene: %s", exc)
            return
        logger.info("Started scene: %s", obj.common.get("name"))

    async def _write_sensor(self, channel_obj: MirrorObject, prop: str, val: Any) -> None:
        sensor_id = channel_obj.native.get("id")
        target = SENSOR_WRITES.get(prop)
        if target is None:
            logger.warning("Changed %s of sensor %s to %r - currently not supported", prop, sensor_id, val)
            return
        section, cast = target
        try:
            payload = {prop: cast(val)}
            if section == "config":
                await self.hue.update_sensor_config(sensor_id, payload)
            else:
                await self.hue.update_sensor_state(sensor_id, payload)
        except (*HUE_ERRORS, TypeError, ValueError) as exc:
            logger.error("Cannot update sensor %s: %s", sensor_id, exc)
            return
        logger.debug("Changed %s of sensor %s to %r", prop, sensor_id, val)

    async def _set_streaming(self, channel: str, active: bool) -> None:
        group_id = self.tables.group_ids.get(channel)
        if group_id is None:
            logger.warning("Cannot change streaming of %s, no group is mapped to it", channel)
            return
        try:
            if active:
                logger.debug("Enable streaming of %s (%s)", channel, group_id)
                await self.hue.enable_streaming(group_id)
            else:
                logger.debug("Disable streaming of %s (%s)", channel, group_id)
                await self.hue.disable_streaming(group_id)
        except HUE_ERRORS as exc:
            logger.error("Could not change streaming of %s: %s", channel, exc)
