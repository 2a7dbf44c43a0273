from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from hue_mirror.colors import (
    brightness_to_level,
    convert_temperature,
    format_xy,
    hue_to_degrees,
    mired_to_kelvin,
    parse_xy,
    round_half_up,
    xy_brightness_to_rgb,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PropertySpec:
    type: str
    role: str
    write: bool = True
    unit: str | None = None
    min: float | None = None
    max: float | None = None

    def common(self, name: str, *, default: Any = None, **overrides: Any) -> dict[str, Any]:
        common: dict[str, Any] = {
            "name": name,
            "type": self.type,
            "role": self.role,
            "read": True,
            "write": self.write,
        }
        if self.unit is not None:
            common["unit"] = self.unit
        if self.min is not None:
            common["min"] = self.min
        if self.max is not None:
            common["max"] = self.max
        common.update(overrides)
        common["def"] = state_value(default)
        return common


# Kelvin bounds for groups; the hub does not report them per group.
GROUP_KELVIN_RANGE = (1802, 6536)


SENSOR_PROPERTIES: dict[str, PropertySpec] = {
    "on": PropertySpec("boolean", "switch"),
    "reachable": PropertySpec("boolean", "indicator.reachable", write=False),
    "buttonevent": PropertySpec("number", "state", write=False),
    "lastupdated": PropertySpec("string", "date", write=False),
    "battery": PropertySpec("number", "value.battery", write=False, unit="%", min=0, max=100),
    "pending": PropertySpec("array", "config", write=False),
    "daylight": PropertySpec("boolean", "switch"),
    "dark": PropertySpec("boolean", "switch"),
    "presence": PropertySpec("boolean", "switch"),
    "lightlevel": PropertySpec("number", "lightlevel", min=0),
    "temperature": PropertySpec("number", "indicator.temperature", write=False, unit="°C"),
    "status": PropertySpec("number", "indicator.status"),
    "flag": PropertySpec("boolean", "switch"),
    "rotaryevent": PropertySpec("number", "state", write=False),
    "expectedrotation": PropertySpec("number", "state", write=False, unit="°"),
    "expectedeventduration": PropertySpec("number", "state", write=False, unit="ms"),
}

SUPPORTED_SENSORS = (
    "ZLLSwitch",
    "ZGPSwitch",
    "Daylight",
    "ZLLTemperature",
    "ZLLPresence",
    "ZLLLightLevel",
    "ZLLRelativeRotary",
)
SOFTWARE_SENSORS = ("CLIPGenericStatus", "CLIPGenericFlag")

LIGHT_PROPERTIES: dict[str, PropertySpec] = {
    "on": PropertySpec("boolean", "switch.light"),
    "bri": PropertySpec("number", "level.dimmer", min=0, max=254),
    "level": PropertySpec("number", "level.dimmer", min=0, max=100),
    "hue": PropertySpec("number", "level.color.hue", unit="°", min=0, max=360),
    "sat": PropertySpec("number", "level.color.saturation", min=0, max=254),
    "xy": PropertySpec("string", "level.color.xy"),
    "ct": PropertySpec("number", "level.color.temperature", unit="°K"),
    "alert": PropertySpec("string", "text"),
    "effect": PropertySpec("string", "text"),
    "colormode": PropertySpec("string", "colormode", write=False),
    "reachable": PropertySpec("boolean", "indicator.reachable", write=False),
    "r": PropertySpec("number", "level.color.red", min=0, max=255),
    "g": PropertySpec("number", "level.color.green", min=0, max=255),
    "b": PropertySpec("number", "level.color.blue", min=0, max=255),
    "command": PropertySpec("string", "command"),
    "pending": PropertySpec("array", "config"),
    "mode": PropertySpec("string", "text"),
    "transitiontime": PropertySpec("number", "level", unit="ds", min=0, max=64000),
    "updateable": PropertySpec("string", "indicator.update", write=False),
}

GROUP_PROPERTIES: dict[str, PropertySpec] = {
    "on": PropertySpec("boolean", "switch"),
    "bri": PropertySpec("number", "level.dimmer", min=0, max=254),
    "level": PropertySpec("number", "level.dimmer", min=0, max=100),
    "hue": PropertySpec("number", "level.color.hue", unit="°", min=0, max=360),
    "sat": PropertySpec("number", "level.color.saturation", min=0, max=254),
    "xy": PropertySpec("string", "level.color.xy"),
    "ct": PropertySpec(
        "number", "level.color.temperature", unit="°K", min=GROUP_KELVIN_RANGE[0], max=GROUP_KELVIN_RANGE[1]
    ),
    "alert": PropertySpec("string", "switch"),
    "effect": PropertySpec("string", "switch"),
    "colormode": PropertySpec("string", "sensor.colormode", write=False),
    "r": PropertySpec("number", "level.color.red", min=0, max=255),
    "g": PropertySpec("number", "level.color.green", min=0, max=255),
    "b": PropertySpec("number", "level.color.blue", min=0, max=255),
    "command": PropertySpec("string", "command"),
    "status": PropertySpec("number", "indicator.status"),
    "transitiontime": PropertySpec("number", "level", unit="ds", min=0, max=64000),
    "anyOn": PropertySpec("boolean", "indicator.switch"),
    "allOn": PropertySpec("boolean", "indicator.switch"),
    "class": PropertySpec("string", "indicator", write=False),
    "activeStream": PropertySpec("boolean", "indicator"),
}


def _hue_degrees(value: Any) -> int:
    return round_half_up(hue_to_degrees(float(value)))


def _kelvin(value: Any) -> float:
    return mired_to_kelvin(float(value))


TRANSFORMS: dict[str, Callable[[Any], Any]] = {
    "hue": _hue_degrees,
    "ct": _kelvin,
    "xy": format_xy,
    "temperature": convert_temperature,
}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def normalize_states(
    states: Mapping[str, Any],
    *,
    reachability_implies_off: bool = True,
    ct_fallback: float | None = None,
    label: str = "",
) -> dict[str, Any]:
    """
    Converts one hub property bag into mirror units.

    The same conversion runs when objects are created and on every poll, so a
    new state's default matches what the next poll reports. A color temperature
    that cannot be converted falls back to `ct_fallback`, or is dropped.
    """
    out = dict(states)

    if reachability_implies_off and out.get("reachable") is False and "bri" in out:
        out["bri"] = 0
        out["on"] = False
    if out.get("on") is False and "bri" in out:
        out["bri"] = 0

    for name, transform in TRANSFORMS.items():
        if out.get(name) is not None:
            out[name] = transform(out[name])

    if "xy" in out:
        try:
            x, y = parse_xy(out["xy"])
        except ValueError:
            logger.warning("Cannot derive rgb of %s from xy %r", label, out["xy"])
        else:
            bri = out.get("bri")
            rgb = xy_brightness_to_rgb(x, y, bri / 254 if _is_number(bri) else None)
            out["r"] = round_half_up(rgb.r * 255)
            out["g"] = round_half_up(rgb.g * 255)
            out["b"] = round_half_up(rgb.b * 255)

    if _is_number(out.get("bri")):
        out["level"] = brightness_to_level(out["bri"])

    ct = out.get("ct")
    if ct is not None and not math.isfinite(ct):
        if ct_fallback is not None:
            out["ct"] = ct_fallback
        else:
            logger.debug("Cannot determine ct value of %s", label)
            del out["ct"]

    return out


def state_value(value: Any) -> Any:
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"))
    return value


def surface(
    channel: str, states: Mapping[str, Any], table: Mapping[str, PropertySpec]
) -> list[tuple[str, Any]]:
    """Pairs of (state id, value) for the properties the table knows."""
    return [(f"{channel}.{name}", state_value(value)) for name, value in states.items() if name in table]
