import math

import pytest

from hue_mirror.colors import (
    GAMUTS,
    brightness_to_level,
    convert_temperature,
    degrees_to_hue,
    format_xy,
    gamut_correct,
    gamut_type_for_model,
    kelvin_range,
    kelvin_to_mired,
    level_to_brightness,
    mired_to_kelvin,
    parse_xy,
    rgb_to_xy,
    rgb_to_xy_brightness,
    round_half_up,
    xy_brightness_to_rgb,
)


def test_round_half_up_rounds_halves_away_from_zero():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.49) == 2


def test_level_and_brightness_scales():
    assert level_to_brightness(100) == 254
    assert level_to_brightness(50) == 127
    assert level_to_brightness(0) == 0
    assert brightness_to_level(254) == 100
    assert brightness_to_level(200) == 79
    assert brightness_to_level(300) == 100


def test_mired_kelvin_conversion():
    assert mired_to_kelvin(366) == 2732
    assert kelvin_to_mired(2000) == 500
    assert math.isinf(mired_to_kelvin(0))


def test_kelvin_range_from_capabilities():
    assert kelvin_range({"min": 153, "max": 500}) == (2000, 6536)
    assert kelvin_range({"min": 153, "max": 454}) == (2203, 6536)
    # 65535 marks an unknown upper bound.
    assert kelvin_range({"min": 153, "max": 65535}) == (2000, 6536)
    assert kelvin_range(None) == (2000, 6536)


def test_hue_degrees():
    assert degrees_to_hue(360) == 65535
    assert degrees_to_hue(0) == 0


def test_gamut_lookup_by_model():
    assert gamut_type_for_model("LCT010") == "C"
    assert gamut_type_for_model("LST001") == "A"
    assert gamut_type_for_model("unknown") == "default"
    assert gamut_type_for_model(None) == "default"


def test_gamut_correct_keeps_points_inside():
    assert gamut_correct(0.3, 0.3, "LCT010") == (0.3, 0.3)


def test_gamut_correct_moves_points_outside_to_edge():
    assert gamut_correct(0.8, 0.1, "LCT010") == (0.692, 0.308)


def test_xy_brightness_to_rgb_white_point():
    rgb = xy_brightness_to_rgb(0.3127, 0.329, 1.0)
    assert rgb.r == pytest.approx(1.0, abs=0.05)
    assert rgb.g == pytest.approx(1.0, abs=0.05)
    assert rgb.b == pytest.approx(1.0, abs=0.05)


def test_xy_brightness_to_rgb_zero_brightness_is_black():
    assert tuple(xy_brightness_to_rgb(0.3, 0.3, 0)) == (0.0, 0.0, 0.0)


def test_rgb_to_xy_brightness_full_red():
    xyb = rgb_to_xy_brightness(1.0, 0.0, 0.0)
    assert xyb.brightness == 255
    assert xyb.x > 0.6


def test_parse_and_format_xy():
    assert parse_xy("0.3,0.4") == (0.3, 0.4)
    assert parse_xy([0.3, 0.4]) == (0.3, 0.4)
    assert format_xy([0.3, 0.4]) == "0.3,0.4"
    assert format_xy(0.3, 0.4) == "0.3,0.4"
    with pytest.raises(ValueError):
        parse_xy("0.3")
    with pytest.raises(ValueError):
        parse_xy("a,b")
    with pytest.raises(ValueError):
        parse_xy(None)


def test_convert_temperature():
    assert convert_temperature(2150) == 21.5
    assert convert_temperature(None) == 0.0


@pytest.mark.parametrize("model_id", ["LST001", "LCT001", "LCT010"])
@pytest.mark.parametrize("point", [(0.8, 0.1), (0.05, 0.9), (0.1, 0.01), (0.45, 0.6)])
def test_gamut_correct_lands_on_triangle_edge(model_id, point):
    gamut = GAMUTS[gamut_type_for_model(model_id)]
    x, y = gamut_correct(*point, model_id)
    edges = ((gamut.blue, gamut.red), (gamut.red, gamut.green), (gamut.green, gamut.blue))
    distances = []
    for (ax, ay), (bx, by) in edges:
        cross = (x - ax) * (by - ay) - (y - ay) * (bx - ax)
        distances.append(abs(cross) / math.hypot(bx - ax, by - ay))
    assert min(distances) == pytest.approx(0.0, abs=1e-9)


def test_gamut_inside_point_round_trips_through_rgb():
    xyb = rgb_to_xy_brightness(0.5, 0.4, 0.3, model_id="LCT010")
    rgb = xy_brightness_to_rgb(xyb.x, xyb.y, 1.0)
    x, y = rgb_to_xy(rgb.r, rgb.g, rgb.b)
    assert (x, y) == pytest.approx((xyb.x, xyb.y), abs=1e-3)
