"""Tests for ActionDispatcher: colour cycle, mode lookup, actions, triggers."""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock, call

import aiohttp
import pytest

from pyIPortSM.color import DeviceColor, ModeTable
from pyIPortSM.dispatcher import CYCLE_BUTTON, ActionDispatcher
from pyIPortSM.enums import ActionType, DispatchMode, ModeMatch
from pyIPortSM.mapping import ButtonMapping


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


RED = DeviceColor(255, 0, 0)
BLUE = DeviceColor(0, 0, 255)


class FakeResponse:
    def __init__(self, status: int, delay: float = 0.0) -> None:
        self.status = status
        self._delay = delay

    async def read(self) -> bytes:
        return b"ok"

    async def __aenter__(self):
        if self._delay:
            await asyncio.sleep(self._delay)
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeHttpSession:
    """Records requests made through ``request()``."""

    def __init__(self, status: int = 200, error: Optional[Exception] = None,
                 delay: float = 0.0) -> None:
        self.requests: List[Tuple[str, str, Any]] = []
        self.closed = False
        self._status = status
        self._error = error
        self._delay = delay

    def request(self, method, url, data=None):
        self.requests.append((method, url, data))
        if self._error is not None:
            raise self._error
        return FakeResponse(self._status, self._delay)

    async def close(self):
        self.closed = True


class SceneRegistry:
    def __init__(self) -> None:
        self.scenes: List[str] = []

    def resolve_by_name(self, name):
        return None

    def activate_scene(self, name):
        self.scenes.append(name)
        return True


def _m(number: int, mode: str, action_type: ActionType, **kwargs: Any) -> ButtonMapping:
    return ButtonMapping(number, mode, action_type, **kwargs)


def _make_dispatcher(mappings=(), color: DeviceColor = RED, **kwargs: Any):
    state = {"color": color}
    set_led = MagicMock()
    defaults: dict[str, Any] = {
        "color_source": lambda: state["color"],
        "set_led": set_led,
        "registry": MagicMock(),
        "listener": MagicMock(),
    }
    defaults.update(kwargs)
    return ActionDispatcher(mappings, **defaults), state, set_led


# ===========================================================================
# Colour cycle
# ===========================================================================


class TestColorCycle:

    def test_first_press_selects_green(self):
        d, _state, set_led = _make_dispatcher()
        assert d.execute(CYCLE_BUTTON) is None
        set_led.assert_called_once_with(0, 255, 0)
        assert d.cycle_index == 1

    def test_full_cycle(self):
        d, _state, set_led = _make_dispatcher()
        names = [d.cycle_color() for _ in range(7)]
        assert names == [
            "green", "blue", "yellow", "purple", "white", "red", "green",
        ]
        assert set_led.call_args_list[3] == call(128, 0, 128)

    def test_ignores_mappings_for_button_ten(self):
        mapping = _m(10, "any", ActionType.HOMEKIT, action="toggle",
                     target_name="Lamp")
        registry = MagicMock()
        d, _state, set_led = _make_dispatcher([mapping], registry=registry)
        d.execute(10)
        set_led.assert_called_once_with(0, 255, 0)
        registry.resolve_by_name.assert_not_called()

    def test_uses_mode_table_overrides(self):
        table = ModeTable({"green": DeviceColor(0, 200, 0)})
        d, _state, set_led = _make_dispatcher(mode_table=table)
        d.execute(10)
        set_led.assert_called_once_with(0, 200, 0)


# ===========================================================================
# Mapping resolution
# ===========================================================================


class TestResolution:

    def test_unmapped_button(self):
        d, _state, set_led = _make_dispatcher()
        assert d.execute(1) is None
        set_led.assert_not_called()

    def test_current_mode(self):
        d, state, _ = _make_dispatcher()
        assert d.current_mode() == "red"
        state["color"] = DeviceColor(0, 0, 0)
        assert d.current_mode() == "off"

    def test_exact_then_any(self):
        red_m = _m(1, "red", ActionType.LED, value="blue")
        any_m = _m(1, "any", ActionType.LED, value="green")
        d, state, set_led = _make_dispatcher([any_m, red_m])
        assert d.execute(1) is red_m
        set_led.assert_called_once_with(0, 0, 255)

        state["color"] = BLUE
        set_led.reset_mock()
        assert d.execute(1) is any_m
        set_led.assert_called_once_with(0, 255, 0)

    def test_no_match_in_mode(self):
        d, state, set_led = _make_dispatcher([_m(1, "red", ActionType.LED, value="blue")])
        state["color"] = BLUE
        assert d.execute(1) is None
        set_led.assert_not_called()

    def test_tolerance_matching(self):
        mapping = _m(2, "red", ActionType.LED, value="white")
        d, _state, set_led = _make_dispatcher(
            [mapping],
            color=DeviceColor(220, 30, 30),
            mode_match=ModeMatch.TOLERANCE,
        )
        assert d.execute(2) is mapping
        set_led.assert_called_once_with(255, 255, 255)

    def test_normalized_is_default(self):
        mapping = _m(2, "red", ActionType.LED, value="white")
        d, _state, set_led = _make_dispatcher([mapping], color=DeviceColor(220, 30, 30))
        assert d.execute(2) is None
        set_led.assert_not_called()


# ===========================================================================
# homekit-action
# ===========================================================================


class TestDeviceActions:

    def _setup(self, action: str, value: Optional[str] = None, handle=None):
        mapping = _m(1, "any", ActionType.HOMEKIT, action=action,
                     target_name="Desk Lamp", value=value)
        handle = handle if handle is not None else MagicMock()
        registry = MagicMock()
        registry.resolve_by_name.return_value = handle
        d, _state, _ = _make_dispatcher([mapping], registry=registry)
        return d, registry, handle

    def test_toggle(self):
        handle = MagicMock()
        handle.is_on.return_value = True
        d, registry, _ = self._setup("toggle", handle=handle)
        d.execute(1)
        registry.resolve_by_name.assert_called_once_with("Desk Lamp")
        handle.set_on.assert_called_once_with(False)

    def test_toggle_from_unknown_state(self):
        handle = MagicMock()
        handle.is_on.return_value = None
        d, _, _ = self._setup("toggle", handle=handle)
        d.execute(1)
        handle.set_on.assert_called_once_with(True)

    @pytest.mark.parametrize("action,expected", [("on", True), ("off", False), ("ON", True)])
    def test_on_off(self, action, expected):
        d, _, handle = self._setup(action)
        d.execute(1)
        handle.set_on.assert_called_once_with(expected)

    @pytest.mark.parametrize("value,expected", [("40", 40), ("150", 100), ("-5", 0), ("55.7", 55)])
    def test_brightness(self, value, expected):
        d, _, handle = self._setup("brightness", value=value)
        d.execute(1)
        handle.set_brightness.assert_called_once_with(expected)

    def test_brightness_invalid_value(self):
        d, _, handle = self._setup("brightness", value="bright")
        d.execute(1)
        handle.set_brightness.assert_not_called()

    def test_brightness_not_supported(self):
        handle = MagicMock(spec=["is_on", "set_on"])
        d, _, _ = self._setup("brightness", value="10", handle=handle)
        d.execute(1)
        handle.set_on.assert_not_called()

    def test_unknown_action(self):
        d, _, handle = self._setup("explode")
        d.execute(1)
        handle.set_on.assert_not_called()

    def test_target_not_found(self):
        mapping = _m(1, "any", ActionType.HOMEKIT, action="on", target_name="Ghost")
        registry = MagicMock()
        registry.resolve_by_name.return_value = None
        d, _state, _ = _make_dispatcher([mapping], registry=registry)
        assert d.execute(1) is mapping

    def test_registry_error_contained(self):
        mapping = _m(1, "any", ActionType.HOMEKIT, action="on", target_name="X")
        registry = MagicMock()
        registry.resolve_by_name.side_effect = RuntimeError("boom")
        d, _state, _ = _make_dispatcher([mapping], registry=registry)
        assert d.execute(1) is mapping

    def test_handle_error_contained(self):
        handle = MagicMock()
        handle.set_on.side_effect = RuntimeError("device offline")
        d, _, _ = self._setup("on", handle=handle)
        d.execute(1)
        handle.set_on.assert_called_once_with(True)

    def test_no_registry(self):
        mapping = _m(1, "any", ActionType.HOMEKIT, action="on", target_name="X")
        d, _state, _ = _make_dispatcher([mapping], registry=None)
        assert d.execute(1) is mapping

    @pytest.mark.asyncio
    async def test_async_handle(self):
        handle = MagicMock()
        handle.set_on = AsyncMock()
        d, _, _ = self._setup("on", handle=handle)
        d.execute(1)
        await asyncio.sleep(0)
        handle.set_on.assert_awaited_once_with(True)


# ===========================================================================
# led-action / scene-action
# ===========================================================================


class TestLedAndSceneActions:

    def test_hex_value(self):
        d, _state, set_led = _make_dispatcher([_m(3, "any", ActionType.LED, value="#102030")])
        d.execute(3)
        set_led.assert_called_once_with(16, 32, 48)

    def test_unknown_colour(self):
        d, _state, set_led = _make_dispatcher([_m(3, "any", ActionType.LED, value="magenta")])
        d.execute(3)
        set_led.assert_not_called()

    def test_missing_value(self):
        d, _state, set_led = _make_dispatcher([_m(3, "any", ActionType.LED)])
        d.execute(3)
        set_led.assert_not_called()

    def test_scene_activated(self):
        registry = SceneRegistry()
        mapping = _m(4, "any", ActionType.SCENE, target_name="Movie")
        d, _state, _ = _make_dispatcher([mapping], registry=registry)
        d.execute(4)
        assert registry.scenes == ["Movie"]

    def test_scene_unsupported(self):
        registry = MagicMock(spec=["resolve_by_name"])
        mapping = _m(4, "any", ActionType.SCENE, target_name="Movie")
        d, _state, _ = _make_dispatcher([mapping], registry=registry)
        assert d.execute(4) is mapping


# ===========================================================================
# url-action
# ===========================================================================


class TestUrlAction:

    @pytest.mark.asyncio
    async def test_get(self):
        http = FakeHttpSession()
        mapping = _m(5, "any", ActionType.URL, url="http://example.local/a")
        d, _state, _ = _make_dispatcher([mapping], http_session=http)
        d.execute(5)
        await asyncio.sleep(0.01)
        assert http.requests == [("GET", "http://example.local/a", None)]
        assert d.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_post_with_body(self):
        http = FakeHttpSession(status=201)
        mapping = _m(5, "any", ActionType.URL, url="http://example.local/b",
                     method="POST", body='{"x": 1}')
        d, _state, _ = _make_dispatcher([mapping], http_session=http)
        d.execute(5)
        await asyncio.sleep(0.01)
        assert http.requests == [("POST", "http://example.local/b", b'{"x": 1}')]

    @pytest.mark.asyncio
    async def test_get_ignores_body(self):
        http = FakeHttpSession()
        mapping = _m(5, "any", ActionType.URL, url="http://x", body="ignored")
        d, _state, _ = _make_dispatcher([mapping], http_session=http)
        d.execute(5)
        await asyncio.sleep(0.01)
        assert http.requests == [("GET", "http://x", None)]

    @pytest.mark.asyncio
    async def test_failure_is_contained(self):
        http = FakeHttpSession(error=aiohttp.ClientConnectionError("refused"))
        mapping = _m(5, "any", ActionType.URL, url="http://x")
        d, _state, _ = _make_dispatcher([mapping], http_session=http)
        d.execute(5)
        d.execute(5)
        await asyncio.sleep(0.01)
        # Not retried: exactly one request per press.
        assert len(http.requests) == 2
        assert d.pending_tasks == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending_and_keeps_injected_session(self):
        http = FakeHttpSession(delay=10.0)
        mapping = _m(5, "any", ActionType.URL, url="http://slow")
        d, _state, _ = _make_dispatcher([mapping], http_session=http)
        d.execute(5)
        await asyncio.sleep(0.01)
        assert d.pending_tasks == 1
        await d.close()
        assert d.pending_tasks == 0
        assert http.closed is False

    def test_without_loop(self):
        mapping = _m(5, "any", ActionType.URL, url="http://x")
        d, _state, _ = _make_dispatcher([mapping], http_session=FakeHttpSession())
        assert d.execute(5) is mapping
        assert d.pending_tasks == 0


# ===========================================================================
# Trigger mode
# ===========================================================================


class TestTriggerMode:

    @pytest.mark.asyncio
    async def test_pulse(self):
        listener = MagicMock()
        mapping = _m(1, "red", ActionType.LED, value="blue")
        d, _state, set_led = _make_dispatcher(
            [mapping],
            listener=listener,
            dispatch_mode=DispatchMode.TRIGGER,
            trigger_reset_delay=0.03,
        )
        assert d.execute(1) is mapping
        listener.notify_trigger.assert_called_once_with(mapping.key, True)
        set_led.assert_not_called()

        await asyncio.sleep(0.06)
        assert listener.notify_trigger.call_args_list == [
            call(mapping.key, True), call(mapping.key, False),
        ]

    @pytest.mark.asyncio
    async def test_retrigger_extends_pulse(self):
        listener = MagicMock()
        mapping = _m(1, "any", ActionType.LED, value="blue")
        d, _state, _ = _make_dispatcher(
            [mapping],
            listener=listener,
            dispatch_mode=DispatchMode.TRIGGER,
            trigger_reset_delay=0.03,
        )
        d.execute(1)
        await asyncio.sleep(0.01)
        d.execute(1)
        await asyncio.sleep(0.06)
        assert listener.notify_trigger.call_args_list == [
            call(mapping.key, True),
            call(mapping.key, True),
            call(mapping.key, False),
        ]

    @pytest.mark.asyncio
    async def test_close_resets_triggers(self):
        listener = MagicMock()
        mapping = _m(1, "any", ActionType.LED, value="blue")
        d, _state, _ = _make_dispatcher(
            [mapping],
            listener=listener,
            dispatch_mode=DispatchMode.TRIGGER,
            trigger_reset_delay=10.0,
        )
        d.execute(1)
        await d.close()
        assert listener.notify_trigger.call_args_list == [
            call(mapping.key, True), call(mapping.key, False),
        ]

    def test_without_loop_resets_immediately(self):
        listener = MagicMock()
        mapping = _m(1, "any", ActionType.LED, value="blue")
        d, _state, _ = _make_dispatcher(
            [mapping], listener=listener, dispatch_mode=DispatchMode.TRIGGER,
        )
        d.execute(1)
        assert listener.notify_trigger.call_args_list == [
            call(mapping.key, True), call(mapping.key, False),
        ]

    def test_cycle_button_not_triggered(self):
        listener = MagicMock()
        d, _state, set_led = _make_dispatcher(
            listener=listener, dispatch_mode=DispatchMode.TRIGGER,
        )
        d.execute(10)
        set_led.assert_called_once_with(0, 255, 0)
        listener.notify_trigger.assert_not_called()


class TestRepr:

    def test_repr(self):
        d, _state, _ = _make_dispatcher([_m(1, "any", ActionType.LED, value="red")])
        assert repr(d) == "ActionDispatcher(mappings=1, mode=direct)"
