from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping

from hue_mirror.colors import (
    brightness_to_level,
    degrees_to_hue,
    format_xy,
    gamut_correct,
    hue_to_degrees,
    kelvin_to_mired,
    level_to_brightness,
    mired_to_kelvin,
    parse_xy,
    rgb_to_xy_brightness,
    round_half_up,
    xy_brightness_to_rgb,
)
from hue_mirror.tree import State


logger = logging.getLogger(__name__)


GROUP_ROLE = re.compile(r"LightGroup|Room|Zone|Entertainment")

ALERTS = ("select", "lselect")

# Mired span used by relative color temperature steps.
CT_INC_MIN = 153
CT_INC_MAX = 500

DEFAULT_KELVIN_RANGE = (2000, 6536)


class MergeError(Exception):
    pass


@dataclass(frozen=True)
class EntityInfo:
    role: str
    model_id: str | None = None
    kelvin_range: tuple[int, int] = DEFAULT_KELVIN_RANGE

    @property
    def is_group(self) -> bool:
        return bool(GROUP_ROLE.search(self.role))

    @property
    def is_switch(self) -> bool:
        return self.role == "switch"


@dataclass(frozen=True)
class MergeOptions:
    native_turn_off_behaviour: bool = False
    turn_on_with_others: bool = False


@dataclass
class MergedCommand:
    command: dict[str, Any] = field(default_factory=dict)
    mirror: dict[str, Any] = field(default_factory=dict)
    scene: str | None = None


def _number(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MergeError(f'Invalid "{name}" value {value!r} ({type(value).__name__})')
    return value


def _parse_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise MergeError(f'Invalid "{name}" value {value!r}') from exc


def _parse_commands(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return dict(value)
    try:
        commands = json.loads(value)
    except (TypeError, ValueError) as exc:
        raise MergeError(f"Invalid command payload {value!r}: {exc}") from exc
    if not isinstance(commands, dict):
        raise MergeError(f"Command payload must be an object, got {value!r}")
    return commands


class _Merge:
    def __init__(self, entity: EntityInfo, options: MergeOptions) -> None:
        self.entity = entity
        self.options = options
        self.confirmed: dict[str, Any] = {}
        self.pending: dict[str, Any] = {}
        self.explicit: set[str] = set()
        self.lamp_on = False
        self.native_on: bool | None = None
        self.scene: str | None = None
        self.command: dict[str, Any] = {}
        self.mirror: dict[str, Any] = {}

    def seed(self, states: Mapping[str, State], changed: str) -> None:
        for name, state in states.items():
            if state.ack and state.val is not None:
                self.confirmed[name] = state.val

        is_on = self.confirmed.get("on", True) is not False
        if "on" in self.confirmed:
            self.pending["bri"] = 254 if is_on else 0
            self.lamp_on = is_on
        if "bri" in self.confirmed:
            self.pending["bri"] = self.confirmed["bri"] if is_on else 0
            self.lamp_on = is_on and _positive(self.confirmed["bri"])

        if changed in ("r", "g", "b"):
            families = ("r", "g", "b")
        elif changed in ("hue", "sat"):
            families = ("hue", "sat")
        else:
            families = ()
        for name in families:
            if name in self.confirmed:
                self.pending[name] = self.confirmed[name]

    def overlay(self, changed: str, value: Any) -> None:
        if changed in ("anyOn", "allOn"):
            changed = "on"
        self.explicit.add(changed)

        if changed == "on":
            self.pending["bri"] = self._on_brightness(bool(value))
            if self.options.native_turn_off_behaviour:
                self.native_on = bool(value)
        elif changed == "level":
            self.pending["bri"] = level_to_brightness(_number("level", value))
        elif changed == "command":
            self._overlay_commands(_parse_commands(value))
        else:
            self.pending[changed] = value

    def _on_brightness(self, on: bool) -> int:
        if not on:
            return 0
        confirmed = self.confirmed.get("bri")
        if self.lamp_on and _positive(confirmed):
            return min(254, int(confirmed))
        return 254

    def _overlay_commands(self, commands: dict[str, Any]) -> None:
        if isinstance(commands.get("scene"), str):
            self.scene = commands["scene"]

        for key, value in commands.items():
            if key in ("scene", "on", "level"):
                continue
            self.pending[key] = value
            self.explicit.add(key)

        if "level" in commands and "bri" not in commands:
            self.pending["bri"] = level_to_brightness(_parse_int("level", commands["level"]))
            self.explicit.add("bri")

        if "on" in commands:
            if len(commands) == 1 and self.options.native_turn_off_behaviour:
                self.native_on = bool(commands["on"])
            elif not commands["on"]:
                self.pending["bri"] = 0
            elif "bri" not in commands and "level" not in commands:
                self.pending["bri"] = self._on_brightness(True)
            self.explicit.add("on")

    def _turn_on(self) -> None:
        self.command["on"] = True
        self.command["bri"] = 254
        self.mirror["on"] = True
        self.mirror["bri"] = 254

    def _lamp_off_without_brightness(self) -> bool:
        return not self.lamp_on and ("bri" not in self.pending or self.pending["bri"] == 0)

    def _maybe_turn_on(self) -> None:
        if self._lamp_off_without_brightness() and self.options.turn_on_with_others:
            self._turn_on()

    def resolve(self) -> None:
        model_id = self.entity.model_id
        pending = self.pending

        if "r" in pending or "g" in pending or "b" in pending:
            channels = []
            for name in ("r", "g", "b"):
                value = _number(name, pending.get(name, 0))
                channels.append(max(0.0, min(255.0, float(value))) / 255)
            xyb = rgb_to_xy_brightness(*channels, model_id=model_id)
            pending["bri"] = xyb.brightness
            pending["xy"] = format_xy(xyb.x, xyb.y)

        if "bri" in pending:
            bri = _number("bri", pending["bri"])
            if bri > 0:
                bri = min(254, round_half_up(bri))
                self.command["bri"] = bri
                self.mirror["bri"] = bri
                if not self.options.native_turn_off_behaviour or not self.confirmed.get("anyOn"):
                    self.command["on"] = True
                    self.mirror["on"] = True
            else:
                self.command["on"] = False
                self.mirror["bri"] = 0
                self.mirror["on"] = False

        if "xy" in pending:
            try:
                x, y = parse_xy(pending["xy"])
            except ValueError as exc:
                raise MergeError(f'Invalid "xy" value {pending["xy"]!r}') from exc
            x, y = gamut_correct(x, y, model_id)
            self.command["xy"] = [x, y]
            self.mirror["xy"] = format_xy(x, y)
            if self._lamp_off_without_brightness():
                self._turn_on()
            rgb = xy_brightness_to_rgb(x, y, self.mirror.get("bri", 254) / 254)
            self.mirror["r"] = round_half_up(rgb.r * 255)
            self.mirror["g"] = round_half_up(rgb.g * 255)
            self.mirror["b"] = round_half_up(rgb.b * 255)

        if "ct" in pending:
            low, high = self.entity.kelvin_range
            kelvin = max(low, min(high, _number("ct", pending["ct"])))
            self.command["ct"] = kelvin_to_mired(kelvin)
            self.mirror["ct"] = round_half_up(kelvin)
            self._maybe_turn_on()

        if "hue" in pending:
            degrees = min(_number("hue", pending["hue"]), 360)
            if degrees < 0:
                degrees = 360
            self.command["hue"] = degrees_to_hue(degrees)
            self.mirror["hue"] = degrees
            self._maybe_turn_on()

        if "sat" in pending:
            sat = int(max(0, min(254, _number("sat", pending["sat"]))))
            self.command["sat"] = sat
            self.mirror["sat"] = sat
            self._maybe_turn_on()

        if "alert" in pending:
            alert = pending["alert"] if pending["alert"] in ALERTS else "none"
            self.command["alert"] = alert
            self.mirror["alert"] = alert

        if "effect" in pending:
            effect = pending["effect"]
            effect = "none" if not effect or effect == "none" else "colorloop"
            self.command["effect"] = effect
            self.mirror["effect"] = effect
            if (
                not self.lamp_on
                and ((effect != "none" and "bri" not in pending) or pending.get("bri") == 0)
                and self.options.turn_on_with_others
            ):
                self._turn_on()

        if "transitiontime" in pending:
            try:
                transitiontime = max(0, min(65535, int(pending["transitiontime"])))
            except (TypeError, ValueError):
                logger.debug("Ignoring transitiontime %r", pending["transitiontime"])
            else:
                self.command["transitiontime"] = transitiontime
                self.mirror["transitiontime"] = transitiontime

        self._resolve_increments()

    def _resolve_increments(self) -> None:
        pending, confirmed = self.pending, self.confirmed

        if "sat_inc" in pending and "sat" not in self.command and "sat" in confirmed:
            inc = _parse_int("sat_inc", pending["sat_inc"])
            sat = (inc + int(_number("sat", confirmed["sat"]))) % 255
            self._maybe_turn_on()
            self.command["sat"] = sat
            self.mirror["sat"] = sat

        if "hue_inc" in pending and "hue" not in self.command and "hue" in confirmed:
            inc = _parse_int("hue_inc", pending["hue_inc"])
            base = min(65535.0, (_number("hue", confirmed["hue"]) % 360) / 360 * 65535)
            hue = min(65535, round_half_up((inc + base) % 65536))
            self._maybe_turn_on()
            self.command["hue"] = hue
            self.mirror["hue"] = hue_to_degrees(hue)

        if "ct_inc" in pending and "ct" not in self.command and "ct" in confirmed:
            inc = _parse_int("ct_inc", pending["ct_inc"])
            kelvin = _number("ct", confirmed["ct"])
            span = CT_INC_MAX - CT_INC_MIN
            mired = CT_INC_MAX - ((kelvin - 2200) / (6500 - 2200)) * span
            ct = round_half_up((mired - CT_INC_MIN + inc) % (span + 1) + CT_INC_MIN)
            self._maybe_turn_on()
            self.command["ct"] = ct
            self.mirror["ct"] = mired_to_kelvin(ct)

        if "bri_inc" in pending and "bri" not in self.explicit:
            inc = _parse_int("bri_inc", pending["bri_inc"])
            base = int(_number("bri", confirmed.get("bri", 0)))
            bri = (base + inc) % 255
            self.command.pop("bri", None)
            if bri == 0:
                self.command["on"] = False
                self.mirror["on"] = False
                self.mirror["bri"] = 0
            else:
                self.command["on"] = True
                self.command["bri"] = bri
                self.mirror["on"] = True
                self.mirror["bri"] = bri

    def finish(self) -> MergedCommand:
        if "xy" in self.mirror:
            self.mirror["colormode"] = "xy"
        elif "ct" in self.mirror:
            self.mirror["colormode"] = "ct"
        elif "hue" in self.mirror or "sat" in self.mirror:
            self.mirror["colormode"] = "hs"

        if "bri" in self.mirror:
            self.mirror["level"] = brightness_to_level(self.mirror["bri"])

        if self.native_on is not None:
            self.command = {"on": self.native_on}
            self.mirror = {"on": self.native_on}

        if self.entity.is_switch:
            if "on" not in self.command:
                raise MergeError("invalid switch operation")
            self.command = {"on": self.command["on"]}
            self.mirror = {"on": self.command["on"]}

        return MergedCommand(command=self.command, mirror=self.mirror, scene=self.scene)


def _positive(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0


def merge_command(
    states: Mapping[str, State],
    changed: str,
    value: Any,
    *,
    entity: EntityInfo,
    options: MergeOptions,
) -> MergedCommand:
    """
    Resolves one user write into one hub command.

    `states` maps property names of the target channel to their current mirror
    states; only device-confirmed (`ack`) values are merged in. The returned
    `mirror` holds the values in mirror units that can be written back before
    the hub confirms them. Raises MergeError for writes that cannot be sent.
    """
    merge = _Merge(entity, options)
    merge.seed(states, changed)
    merge.overlay(changed, value)
    merge.resolve()
    return merge.finish()
