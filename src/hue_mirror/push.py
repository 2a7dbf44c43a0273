from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from hue_mirror.colors import format_xy, level_to_brightness, mired_to_kelvin, round_half_up, xy_brightness_to_rgb
from hue_mirror.hue_client import HUE_ERRORS, HueClient
from hue_mirror.naming import TranslationTables
from hue_mirror.tree import ObjectTree


logger = logging.getLogger(__name__)

BUTTON_EVENT_CODES = {"repeat": 1, "short_release": 2, "long_release": 3}

# Resource types whose updates carry no mirrored state.
IGNORED_TYPES = ("zigbee_connectivity", "scene")

# Fallback channel state per type when the resource has no legacy id.
OWNER_STATES = {"contact": "contact", "tamper": "tamper", "device_power": "battery"}


def legacy_id(update: dict[str, Any]) -> str | None:
    """`/lights/3` -> `3`."""
    id_v1 = update.get("id_v1")
    if not isinstance(id_v1, str):
        return None
    parts = id_v1.split("/")
    if len(parts) < 3 or not parts[2]:
        return None
    return parts[2]


def _owner_rid(update: dict[str, Any]) -> str | None:
    owner = update.get("owner")
    if isinstance(owner, dict) and isinstance(owner.get("rid"), str):
        return owner["rid"]
    return None


class PushTranslator:
    """Maps event-stream resource updates onto mirrored state paths."""

    def __init__(
        self,
        *,
        tree: ObjectTree,
        tables: TranslationTables,
        uuids: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self._tree = tree
        self._tables = tables
        self.uuids: dict[str, dict[str, Any]] = uuids if uuids is not None else {}
        self._handlers: dict[str, Callable[[str, dict[str, Any]], Awaitable[None]]] = {
            "light": self._handle_light,
            "grouped_light": self._handle_group,
            "entertainment_configuration": self._handle_group,
            "motion": self._handle_sensor,
            "temperature": self._handle_sensor,
            "light_level": self._handle_sensor,
            "device_power": self._handle_sensor,
            "button": self._handle_sensor,
            "relative_rotary": self._handle_sensor,
            "contact": self._handle_sensor,
            "tamper": self._handle_sensor,
        }

    async def handle_message(self, msg: Any) -> None:
        logger.debug("Received on push connection: %r", msg)
        events = msg if isinstance(msg, list) else [msg]
        for event in events:
            if not isinstance(event, dict) or not isinstance(event.get("data"), list):
                continue
            for update in event["data"]:
                if isinstance(update, dict):
                    await self.handle_update(update)

    async def handle_update(self, update: dict[str, Any]) -> None:
        rtype = update.get("type")
        if rtype in IGNORED_TYPES:
            return

        handler = self._handlers.get(rtype) if isinstance(rtype, str) else None
        if handler is None:
            logger.warning('Unknown update for type "%s": %r', rtype, update)
            return

        rid = legacy_id(update)
        if rid is None:
            owner = _owner_rid(update)
            if rtype in OWNER_STATES and owner:
                await self._set(f"{owner}.{OWNER_STATES[rtype]}", self._owner_value(rtype, update))
                return
            logger.debug('Ignore push connection update, because property "id_v1" is missing')
            return

        await handler(rid, update)

    async def _set(self, state_id: str, value: Any) -> None:
        if value is None:
            return
        await self._tree.set_state(state_id, value, ack=True)

    @staticmethod
    def _owner_value(rtype: str, update: dict[str, Any]) -> Any:
        if rtype == "contact":
            report = (update.get("contact_report") or {}).get("state")
            return None if report is None else report == "contact"
        if rtype == "tamper":
            reports = update.get("tamper_reports") or []
            return any(r.get("state") == "tampered" for r in reports if isinstance(r, dict))
        return (update.get("power_state") or {}).get("battery_level")

    async def _handle_light(self, rid: str, update: dict[str, Any]) -> None:
        channel = self._tables.light_channel(rid)
        if channel is None:
            logger.debug('Could not handle update of light "%s", because no matching channel found', rid)
            return

        if isinstance(update.get("on"), dict):
            await self._set(f"{channel}.on", update["on"].get("on"))

        dimming = update.get("dimming")
        if isinstance(dimming, dict) and isinstance(dimming.get("brightness"), (int, float)):
            level = round_half_up(dimming["brightness"])
            await self._set(f"{channel}.level", level)
            await self._set(f"{channel}.bri", level_to_brightness(level))

        ct = update.get("color_temperature")
        if isinstance(ct, dict) and ct.get("mirek_valid") and ct.get("mirek"):
            await self._set(f"{channel}.ct", mired_to_kelvin(ct["mirek"]))

        xy = (update.get("color") or {}).get("xy")
        if isinstance(xy, dict) and "x" in xy and "y" in xy:
            await self._set(f"{channel}.xy", format_xy(xy["x"], xy["y"]))
            await self._update_rgb(channel, xy["x"], xy["y"])

    async def _update_rgb(self, channel: str, x: float, y: float) -> None:
        state = await self._tree.get_state(f"{channel}.bri")
        if state is None or isinstance(state.val, bool) or not isinstance(state.val, (int, float)):
            return
        rgb = xy_brightness_to_rgb(x, y, state.val / 254)
        await self._set(f"{channel}.r", round_half_up(rgb.r * 255))
        await self._set(f"{channel}.g", round_half_up(rgb.g * 255))
        await self._set(f"{channel}.b", round_half_up(rgb.b * 255))

    async def _handle_group(self, rid: str, update: dict[str, Any]) -> None:
        channel = self._tables.group_channel(rid)
        if channel is None:
            logger.debug('Could not handle update of group "%s", because no matching channel found', rid)
            return

        if isinstance(update.get("on"), dict):
            await self._set(f"{channel}.on", update["on"].get("on"))
        if update.get("type") == "entertainment_configuration" and "status" in update:
            await self._set(f"{channel}.activeStream", update["status"] == "active")

    async def _handle_sensor(self, rid: str, update: dict[str, Any]) -> None:
        channel = self._tables.sensor_channel(rid)
        if channel is None:
            logger.debug('Could not handle update of sensor "%s", because no matching channel found', rid)
            return

        temperature = update.get("temperature")
        if isinstance(temperature, dict) and temperature.get("temperature_valid"):
            await self._set(f"{channel}.temperature", temperature.get("temperature"))

        motion = update.get("motion")
        if isinstance(motion, dict) and motion.get("motion_valid"):
            await self._set(f"{channel}.presence", motion.get("motion"))

        light = update.get("light")
        if isinstance(light, dict) and light.get("light_level_valid"):
            await self._set(f"{channel}.lightlevel", light.get("light_level"))

        power_state = update.get("power_state")
        if isinstance(power_state, dict):
            await self._set(f"{channel}.battery", power_state.get("battery_level"))

        if update.get("type") in ("contact", "tamper"):
            await self._set(f"{channel}.{update['type']}", self._owner_value(update["type"], update))

        report = (update.get("button") or {}).get("button_report")
        if isinstance(report, dict):
            await self._set(f"{channel}.lastupdated", report.get("updated"))
            await self._set(f"{channel}.buttonevent", self.button_event(update.get("id"), report.get("event")))

        rotary = (update.get("relative_rotary") or {}).get("rotary_report")
        if isinstance(rotary, dict):
            await self._set(f"{channel}.lastupdated", rotary.get("updated"))
            await self._set(f"{channel}.rotaryevent", 1 if rotary.get("action") == "start" else 2)

    def button_event(self, uuid: Any, event: Any) -> int:
        """Push button event -> poll style `buttonevent` code."""
        metadata = (self.uuids.get(uuid) or {}).get("metadata") if isinstance(uuid, str) else None
        control_id = metadata.get("control_id") if isinstance(metadata, dict) else None
        if not isinstance(control_id, int):
            control_id = 0
        return control_id * 1000 + BUTTON_EVENT_CODES.get(event, 0)


class PushConnection:
    """
    Keeps one event stream open and feeds it into a PushTranslator.

    The resource metadata cache is reloaded every time the stream opens. A
    closed or failed stream is reopened after `reconnect_delay_seconds`.
    """

    def __init__(self, *, hue: HueClient, translator: PushTranslator, reconnect_delay_seconds: float = 1.0) -> None:
        self._hue = hue
        self._translator = translator
        self._reconnect_delay = reconnect_delay_seconds
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while True:
            try:
                self._translator.uuids = await self._hue.get_resource_uuids()
                logger.info("Push connection established")
                async for msg in self._hue.stream_sse_json():
                    try:
                        await self._translator.handle_message(msg)
                    except Exception:
                        logger.exception("Could not handle data from push connection")
                logger.warning("Push connection closed")
            except HUE_ERRORS as exc:
                logger.info("Push connection error: %s", exc)
            except Exception:
                logger.exception("Push connection failed")
            await asyncio.sleep(self._reconnect_delay)
