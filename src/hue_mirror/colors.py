from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, NamedTuple


logger = logging.getLogger(__name__)


class XYBrightness(NamedTuple):
    x: float
    y: float
    brightness: int


class HSB(NamedTuple):
    hue: float
    saturation: float
    brightness: float


class RGB(NamedTuple):
    r: float
    g: float
    b: float


@dataclass(frozen=True)
class Gamut:
    red: tuple[float, float]
    green: tuple[float, float]
    blue: tuple[float, float]


# https://developers.meethue.com/develop/hue-api/supported-devices/
GAMUT_MODELS: dict[str, tuple[str, ...]] = {
    "A": ("LST001", "LLC010", "LLC011", "LLC012", "LLC006", "LLC007", "LLC013"),
    "B": ("LCT001", "LCT007", "LCT002", "LCT003", "LLM001"),
    "C": ("LCT010", "LCT014", "LCT011", "LLC020", "LST002"),
}

GAMUTS: dict[str, Gamut] = {
    "A": Gamut(red=(0.704, 0.296), green=(0.2151, 0.7106), blue=(0.138, 0.08)),
    "B": Gamut(red=(0.675, 0.322), green=(0.409, 0.518), blue=(0.167, 0.04)),
    "C": Gamut(red=(0.692, 0.308), green=(0.17, 0.7), blue=(0.153, 0.048)),
    "default": Gamut(red=(1.0, 0.0), green=(0.0, 1.0), blue=(0.0, 0.0)),
}

MIRED_MIN = 153
MIRED_MAX = 500


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def gamut_type_for_model(model_id: str | None) -> str:
    model = (model_id or "").strip()
    for name, models in GAMUT_MODELS.items():
        if model in models:
            return name
    return "default"


def _linearize(c: float) -> float:
    if c > 0.04045:
        return ((c + 0.055) / 1.055) ** 2.4
    return c / 12.92


def _delinearize(c: float) -> float:
    if c <= 0.0031308:
        return c * 12.92
    return 1.055 * c ** (1.0 / 2.4) - 0.055


def rgb_to_xy(r: float, g: float, b: float) -> tuple[float, float]:
    """Chromaticity of an sRGB triple with channels in [0, 1]."""
    r, g, b = _linearize(r), _linearize(g), _linearize(b)
    # Wide RGB D65
    x = r * 0.664511 + g * 0.154324 + b * 0.162028
    y = r * 0.283881 + g * 0.668433 + b * 0.047685
    z = r * 0.000088 + g * 0.07231 + b * 0.986039
    total = x + y + z
    if total == 0:
        return 0.0, 0.0
    return x / total, y / total


def rgb_to_hsb(r: float, g: float, b: float) -> HSB:
    """Returns hue in degrees, saturation and brightness in [0, 1]."""
    lo = min(r, g, b)
    hi = max(r, g, b)
    if hi == lo:
        return HSB(0.0, 0.0, hi)

    delta = hi - lo
    if r == hi:
        hue = ((g - b) / delta) * 60
    elif g == hi:
        hue = (2 + (b - r) / delta) * 60
    else:
        hue = (4 + (r - g) / delta) * 60
    return HSB(hue, delta / hi, hi)


def rgb_to_xy_brightness(r: float, g: float, b: float, model_id: str | None = None) -> XYBrightness:
    x, y = rgb_to_xy(r, g, b)
    bri = min(255, round_half_up(rgb_to_hsb(r, g, b).brightness * 255))
    cx, cy = gamut_correct(x, y, model_id)
    return XYBrightness(cx, cy, bri)


def _closest_on_edge(
    px: float, py: float, start: tuple[float, float], end: tuple[float, float]
) -> tuple[float, float]:
    vx, vy = end[0] - start[0], end[1] - start[1]
    dot = ((px - start[0]) * vx + (py - start[1]) * vy) / (vx * vx + vy * vy)
    if dot < 0.0:
        return start
    if dot > 1.0:
        return end
    return start[0] + dot * vx, start[1] + dot * vy


def _cross(origin: tuple[float, float], edge_end: tuple[float, float], px: float, py: float) -> float:
    vx, vy = edge_end[0] - origin[0], edge_end[1] - origin[1]
    return (px - origin[0]) * vy - (py - origin[1]) * vx


def gamut_correct(x: float, y: float, model_id: str | None = None) -> tuple[float, float]:
    """
    Returns (x, y) unchanged when it lies inside the model's gamut triangle,
    otherwise the closest point on the first violated edge.
    """
    gamut = GAMUTS[gamut_type_for_model(model_id)]
    red, green, blue = gamut.red, gamut.green, gamut.blue

    # Sign of the opposite vertex for every edge, then of the point.
    edges = (
        (blue, red, _cross(blue, red, *green), _cross(blue, red, x, y)),
        (red, green, _cross(red, green, *blue), _cross(red, green, x, y)),
        (green, blue, _cross(green, blue, *red), _cross(green, blue, x, y)),
    )

    if all(vertex * point >= 0 for _, _, vertex, point in edges):
        return x, y

    for start, end, vertex, point in edges:
        if vertex * point <= 0:
            return _closest_on_edge(x, y, start, end)

    logger.error("Gamut correction found no violated edge for xy=(%s, %s) model=%s", x, y, model_id)
    return x, y


def _limit(r: float, g: float, b: float) -> tuple[float, float, float]:
    if r > b and r > g and r > 1.0:
        g, b, r = g / r, b / r, 1.0
    r = max(r, 0.0)
    if g > b and g > r and g > 1.0:
        r, b, g = r / g, b / g, 1.0
    g = max(g, 0.0)
    if b > r and b > g and b > 1.0:
        r, g, b = r / b, g / b, 1.0
    b = max(b, 0.0)
    return r, g, b


def xy_brightness_to_rgb(x: float, y: float, brightness: float | None = None) -> RGB:
    """Channels in [0, 1]; brightness is relative (bri / 254), defaulting to full."""
    if brightness is None:
        brightness = 1.0
    if brightness <= 0 or y <= 0:
        return RGB(0.0, 0.0, 0.0)

    big_y = brightness
    big_x = (big_y / y) * x
    big_z = (big_y / y) * (1.0 - x - y)

    r = big_x * 1.656492 - big_y * 0.354851 - big_z * 0.255038
    g = -big_x * 0.707196 + big_y * 1.655397 + big_z * 0.036152
    b = big_x * 0.051713 - big_y * 0.121364 + big_z * 1.01153

    r, g, b = _limit(r, g, b)
    r, g, b = _delinearize(r), _delinearize(g), _delinearize(b)
    return RGB(*_limit(r, g, b))


def mired_to_kelvin(mired: float) -> float:
    """`inf` when the mired value is zero; callers must drop non-finite results."""
    if not mired:
        return math.inf
    return round_half_up(1e6 / mired)


def kelvin_to_mired(kelvin: float) -> int:
    return round_half_up(1e6 / kelvin)


def kelvin_range(ct_capabilities: dict[str, Any] | None) -> tuple[int, int]:
    """Kelvin bounds from a light's `capabilities.control.ct` mired range."""
    caps = ct_capabilities if isinstance(ct_capabilities, dict) else {}
    low = caps.get("min") or MIRED_MIN
    high = caps.get("max")
    if not high or high == 65535:
        high = MIRED_MAX
    return kelvin_to_mired(high), kelvin_to_mired(low)


def level_to_brightness(level: float) -> int:
    return min(254, max(0, round_half_up(level * 2.54)))


def brightness_to_level(bri: float) -> int:
    return max(0, min(100, round_half_up(bri / 2.54)))


def hue_to_degrees(hue: float) -> float:
    return hue / 65535 * 360


def degrees_to_hue(degrees: float) -> int:
    return min(65535, round_half_up(degrees / 360 * 65535))


def parse_xy(value: Any) -> tuple[float, float]:
    """Accepts "x,y" strings and [x, y] sequences; raises ValueError otherwise."""
    if isinstance(value, str):
        parts = value.split(",")
    elif isinstance(value, (list, tuple)):
        parts = list(value)
    else:
        raise ValueError(f"invalid xy value: {value!r}")
    if len(parts) != 2:
        raise ValueError(f"invalid xy value: {value!r}")
    x, y = float(parts[0]), float(parts[1])
    if not (math.isfinite(x) and math.isfinite(y)):
        raise ValueError(f"invalid xy value: {value!r}")
    return x, y


def format_xy(x: Any, y: Any | None = None) -> str:
    if y is None:
        if isinstance(x, (list, tuple)):
            return ",".join(str(v) for v in x)
        return str(x)
    return f"{x},{y}"


def convert_temperature(value: Any) -> float:
    """Hub sensors report hundredths of a degree Celsius."""
    if value is None:
        return 0.0
    return int(value) / 100
