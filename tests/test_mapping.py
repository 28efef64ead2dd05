"""Tests for ButtonMapping parsing, keys and selection."""

from __future__ import annotations

import pytest

from pyIPortSM.enums import ActionType
from pyIPortSM.mapping import ButtonMapping, select_mapping


def _mapping(number=1, mode="red", **kwargs) -> ButtonMapping:
    defaults = {"action_type": ActionType.HOMEKIT, "action": "toggle"}
    defaults.update(kwargs)
    return ButtonMapping(number, mode, **defaults)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestButtonMapping:

    @pytest.mark.parametrize("number", [0, 11, -1])
    def test_button_number_range(self, number):
        with pytest.raises(ValueError):
            _mapping(number)

    def test_method_validated(self):
        with pytest.raises(ValueError):
            _mapping(action_type=ActionType.URL, url="http://x", method="PUT")

    def test_url_action_needs_url(self):
        with pytest.raises(ValueError):
            _mapping(action_type=ActionType.URL)

    def test_immutable(self):
        m = _mapping()
        with pytest.raises(AttributeError):
            m.action = "on"

    def test_key(self):
        m = _mapping(3, "blue", target_name="Living Room  Lamp")
        assert m.key == "btn3-blue-toggle-Living_Room_Lamp"

    def test_key_without_target(self):
        m = _mapping(2, "any", action_type=ActionType.LED, action="", value="red")
        assert m.key == "btn2-any--"

    def test_label(self):
        m = _mapping(1, "red", target_name="Desk")
        assert m.label == "B1 [red] → toggle Desk"
        led = _mapping(4, "any", action_type=ActionType.LED, action="", value="red")
        assert led.label == "B4 [any] → led-action"


class TestFromDict:

    def test_full_entry(self):
        m = ButtonMapping.from_dict({
            "buttonNumber": 2,
            "modeColor": "Green",
            "actionType": "homekit-action",
            "action": "brightness",
            "targetName": "Hall",
            "value": 40,
        })
        assert m.button_number == 2
        assert m.mode_color == "green"
        assert m.action_type is ActionType.HOMEKIT
        assert m.action == "brightness"
        assert m.target_name == "Hall"
        assert m.value == "40"

    def test_defaults(self):
        m = ButtonMapping.from_dict({"buttonNumber": "5", "actionType": "scene"})
        assert m.button_number == 5
        assert m.mode_color == "any"
        assert m.action_type is ActionType.SCENE
        assert m.action == ""
        assert m.method == "GET"
        assert m.target_name is None

    def test_legacy_led_color(self):
        m = ButtonMapping.from_dict({
            "buttonNumber": 1, "actionType": "led", "ledColor": "blue",
        })
        assert m.action_type is ActionType.LED
        assert m.value == "blue"

    def test_url_entry(self):
        m = ButtonMapping.from_dict({
            "buttonNumber": 9,
            "actionType": "url-action",
            "url": "http://example.local/hook",
            "method": "post",
            "body": {"source": "panel"},
        })
        assert m.method == "POST"
        assert m.body == '{"source": "panel"}'

    def test_blank_strings_become_none(self):
        m = ButtonMapping.from_dict({
            "buttonNumber": 1, "actionType": "homekit", "targetName": "  ",
        })
        assert m.target_name is None

    @pytest.mark.parametrize("entry", [
        {"actionType": "homekit-action"},
        {"buttonNumber": 1},
        {"buttonNumber": "x", "actionType": "homekit-action"},
        {"buttonNumber": 1, "actionType": "teleport"},
        {"buttonNumber": 12, "actionType": "homekit-action"},
        "not a dict",
    ])
    def test_invalid(self, entry):
        with pytest.raises(ValueError):
            ButtonMapping.from_dict(entry)


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


class TestSelectMapping:

    def test_exact_mode_wins_over_any(self):
        any_m = _mapping(1, "any", target_name="A")
        red_m = _mapping(1, "red", target_name="R")
        assert select_mapping([any_m, red_m], 1, "red") is red_m

    def test_falls_back_to_any(self):
        any_m = _mapping(1, "any")
        red_m = _mapping(1, "red")
        assert select_mapping([red_m, any_m], 1, "blue") is any_m

    def test_none_when_nothing_matches(self):
        assert select_mapping([_mapping(1, "red")], 1, "blue") is None
        assert select_mapping([_mapping(2, "red")], 1, "red") is None
        assert select_mapping([], 1, "red") is None

    def test_first_among_equals(self):
        first = _mapping(1, "red", target_name="first")
        second = _mapping(1, "red", target_name="second")
        assert select_mapping([first, second], 1, "red") is first

    def test_unknown_and_off_modes_use_any(self):
        any_m = _mapping(3, "any")
        assert select_mapping([any_m], 3, "unknown") is any_m
        assert select_mapping([any_m], 3, "off") is any_m
