from hue_mirror.properties import (
    GROUP_PROPERTIES,
    LIGHT_PROPERTIES,
    SENSOR_PROPERTIES,
    normalize_states,
    state_value,
    surface,
)


def test_off_light_reports_zero_brightness():
    states = normalize_states({"on": False, "bri": 200})
    assert states["bri"] == 0
    assert states["level"] == 0


def test_unreachable_light_is_off_unless_disabled():
    assert normalize_states({"on": True, "bri": 200, "reachable": False})["on"] is False
    states = normalize_states({"on": True, "bri": 200, "reachable": False}, reachability_implies_off=False)
    assert states["on"] is True
    assert states["bri"] == 200


def test_units_are_converted():
    states = normalize_states({"hue": 65535, "ct": 500, "xy": [0.3, 0.3], "temperature": 2150})
    assert states["hue"] == 360
    assert states["ct"] == 2000
    assert states["xy"] == "0.3,0.3"
    assert states["temperature"] == 21.5
    assert {"r", "g", "b"} <= set(states)


def test_zero_mired_uses_fallback_or_is_dropped():
    assert normalize_states({"ct": 0}, ct_fallback=6536)["ct"] == 6536
    assert "ct" not in normalize_states({"ct": 0})


def test_invalid_xy_keeps_value_without_rgb():
    states = normalize_states({"xy": "garbage"})
    assert states["xy"] == "garbage"
    assert "r" not in states


def test_surface_skips_unknown_properties():
    values = surface("Lamp", {"bri": 10, "unknown": 1, "pending": []}, LIGHT_PROPERTIES)
    assert values == [("Lamp.bri", 10), ("Lamp.pending", [])]


def test_state_value_serializes_objects():
    assert state_value({"a": 1}) == '{"a":1}'
    assert state_value(3) == 3


def test_property_common_metadata():
    common = LIGHT_PROPERTIES["bri"].common("Lamp.bri", default=12)
    assert common == {
        "name": "Lamp.bri",
        "type": "number",
        "role": "level.dimmer",
        "read": True,
        "write": True,
        "min": 0,
        "max": 254,
        "def": 12,
    }
    assert SENSOR_PROPERTIES["temperature"].common("x")["write"] is False
    assert GROUP_PROPERTIES["ct"].common("x", min=2000)["min"] == 2000
