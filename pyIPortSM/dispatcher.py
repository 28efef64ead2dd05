"""Mode-aware action dispatch for completed button presses.

The :class:`ActionDispatcher` is called with the 1-based button number
of every completed single press:

* **Button 10** is reserved.  It always advances the LED through the
  fixed :data:`~pyIPortSM.color.COLOR_CYCLE`, whatever mappings exist.
* **Buttons 1–9** look up a :class:`~pyIPortSM.mapping.ButtonMapping`
  for the current *mode* (derived from the LED colour with
  :func:`~pyIPortSM.color.classify_mode`), falling back to a mapping
  for ``"any"``.

How a resolved mapping takes effect depends on the deployment's
:class:`~pyIPortSM.enums.DispatchMode`:

``DIRECT``
    The action runs here: switch an external device, change the LED,
    call a URL, or ask the host to activate a scene.

``TRIGGER``
    Nothing runs here.  The listener's virtual trigger for the mapping
    is pulsed (``True``, then ``False`` after *trigger_reset_delay*) so
    that the host's own automation can react.

Every failure on this path (unknown target, missing capability, bad
value, HTTP error) is logged and otherwise ignored; the press counts
as handled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import (
    Any,
    Callable,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
)

import aiohttp

from pyIPortSM.color import (
    COLOR_CYCLE,
    DEFAULT_TOLERANCE,
    DeviceColor,
    ModeTable,
    classify_mode,
    parse_color_value,
)
from pyIPortSM.enums import ActionType, DispatchMode, ModeMatch
from pyIPortSM.interfaces import DeviceRegistry, PanelListener, invoke
from pyIPortSM.mapping import ButtonMapping, select_mapping

logger = logging.getLogger(__name__)

#: Button number that cycles the LED colour.
CYCLE_BUTTON: int = 10

#: Default length of a virtual trigger pulse (seconds).
DEFAULT_TRIGGER_RESET_DELAY: float = 0.5

#: Default total timeout for ``url-action`` requests (seconds).
DEFAULT_HTTP_TIMEOUT: float = 10.0


class ActionDispatcher:
    """Turns button numbers into effects.

    Parameters
    ----------
    mappings:
        The configured button mappings.
    color_source:
        Returns the current LED colour.
    set_led:
        Sets the LED colour; called as ``set_led(r, g, b)``.
    mode_table:
        Mode name → colour table used for classification, LED actions
        and the colour cycle.
    registry:
        Resolves external devices for ``homekit-action``.
    listener:
        Receives virtual-trigger pulses in ``TRIGGER`` mode.
    dispatch_mode:
        ``DIRECT`` or ``TRIGGER``.
    mode_match, tolerance:
        Mode classification algorithm and its tolerance.
    trigger_reset_delay:
        Pulse length in seconds.
    http_session:
        An :class:`aiohttp.ClientSession` to use for ``url-action``.
        When omitted one is created on first use and closed by
        :meth:`close`.
    http_timeout:
        Total timeout of a ``url-action`` request in seconds.
    """

    def __init__(
        self,
        mappings: Iterable[ButtonMapping],
        *,
        color_source: Callable[[], DeviceColor],
        set_led: Callable[[int, int, int], Any],
        mode_table: Optional[Mapping[str, DeviceColor]] = None,
        registry: Optional[DeviceRegistry] = None,
        listener: Optional[PanelListener] = None,
        dispatch_mode: DispatchMode = DispatchMode.DIRECT,
        mode_match: ModeMatch = ModeMatch.NORMALIZED,
        tolerance: int = DEFAULT_TOLERANCE,
        trigger_reset_delay: float = DEFAULT_TRIGGER_RESET_DELAY,
        http_session: Optional[aiohttp.ClientSession] = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
    ) -> None:
        self._mappings: Tuple[ButtonMapping, ...] = tuple(mappings)
        self._color_source = color_source
        self._set_led = set_led
        self._mode_table: Mapping[str, DeviceColor] = (
            mode_table if mode_table is not None else ModeTable()
        )
        self._registry = registry
        self._listener = listener
        self._dispatch_mode = dispatch_mode
        self._mode_match = mode_match
        self._tolerance = tolerance
        self._trigger_reset_delay = trigger_reset_delay

        self._http_session = http_session
        self._owns_http_session = http_session is None
        self._http_timeout = http_timeout

        self._cycle_index = 0
        self._tasks: Set[asyncio.Task[None]] = set()
        self._trigger_timers: dict[str, asyncio.TimerHandle] = {}

    # ---- properties --------------------------------------------------

    @property
    def mappings(self) -> Tuple[ButtonMapping, ...]:
        return self._mappings

    @property
    def dispatch_mode(self) -> DispatchMode:
        return self._dispatch_mode

    @property
    def cycle_index(self) -> int:
        """Position of the current colour in :data:`COLOR_CYCLE`."""
        return self._cycle_index

    @property
    def pending_tasks(self) -> int:
        """Number of outbound requests still running."""
        return len(self._tasks)

    def current_mode(self) -> str:
        """Classify the current LED colour."""
        return classify_mode(
            self._color_source(),
            self._mode_table,
            algorithm=self._mode_match,
            tolerance=self._tolerance,
        )

    def mappings_for(self, button_number: int) -> List[ButtonMapping]:
        return [m for m in self._mappings if m.button_number == button_number]

    # ---- entry point -------------------------------------------------

    def execute(self, button_number: int) -> Optional[ButtonMapping]:
        """Run whatever *button_number* is configured to do.

        Returns the mapping that was acted on, or ``None`` for the
        colour-cycle button and for unmapped presses.
        """
        if button_number == CYCLE_BUTTON:
            self.cycle_color()
            return None

        if not self.mappings_for(button_number):
            logger.info("No actions configured for button %d", button_number)
            return None

        mode = self.current_mode()
        logger.info("Current LED mode: %s", mode)

        mapping = select_mapping(self._mappings, button_number, mode)
        if mapping is None:
            logger.info(
                "No action found for button %d in %s mode",
                button_number,
                mode,
            )
            return None

        logger.info("Executing action for button %d: %s",
                    button_number, mapping.label)

        if self._dispatch_mode is DispatchMode.TRIGGER:
            self.pulse_trigger(mapping)
        else:
            self.dispatch(mapping)
        return mapping

    # ---- colour cycle ------------------------------------------------

    def cycle_color(self) -> str:
        """Advance the LED to the next colour of the cycle."""
        self._cycle_index = (self._cycle_index + 1) % len(COLOR_CYCLE)
        name = COLOR_CYCLE[self._cycle_index]
        color = self._mode_table[name]
        logger.info(
            "Button %d pressed: cycling to %s %s", CYCLE_BUTTON, name, color
        )
        invoke(self._set_led, color.r, color.g, color.b)
        return name

    # ---- virtual triggers --------------------------------------------

    def pulse_trigger(self, mapping: ButtonMapping) -> None:
        """Set the mapping's trigger, and clear it after the reset delay."""
        key = mapping.key
        if self._listener is None:
            logger.warning("No listener for trigger %s", key)
            return

        previous = self._trigger_timers.pop(key, None)
        if previous is not None:
            previous.cancel()

        invoke(self._listener.notify_trigger, key, True)
        logger.info("Triggered %s", mapping.label)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            invoke(self._listener.notify_trigger, key, False)
            return
        self._trigger_timers[key] = loop.call_later(
            self._trigger_reset_delay, self._reset_trigger, key
        )

    def _reset_trigger(self, key: str) -> None:
        self._trigger_timers.pop(key, None)
        if self._listener is not None:
            invoke(self._listener.notify_trigger, key, False)

    # ---- direct dispatch ---------------------------------------------

    def dispatch(self, mapping: ButtonMapping) -> None:
        """Run *mapping* directly."""
        if mapping.action_type is ActionType.HOMEKIT:
            self._run_device_action(mapping)
        elif mapping.action_type is ActionType.LED:
            self._run_led_action(mapping)
        elif mapping.action_type is ActionType.URL:
            self._run_url_action(mapping)
        elif mapping.action_type is ActionType.SCENE:
            self._run_scene_action(mapping)

    def _run_device_action(self, mapping: ButtonMapping) -> None:
        name = mapping.target_name
        if not name:
            logger.warning("No accessory specified for %s", mapping.label)
            return
        if self._registry is None:
            logger.warning("No device registry, cannot reach %r", name)
            return

        try:
            handle = self._registry.resolve_by_name(name)
        except Exception:
            logger.exception("Lookup of %r failed", name)
            return
        if handle is None:
            logger.warning("Accessory %r not found", name)
            return

        action = mapping.action.lower()
        if action == "toggle":
            try:
                current = bool(handle.is_on())
            except Exception:
                logger.exception("Cannot read state of %r", name)
                return
            if invoke(handle.set_on, not current):
                logger.info("Toggled %s to %s", name,
                            "off" if current else "on")
        elif action in ("on", "off"):
            if invoke(handle.set_on, action == "on"):
                logger.info("Turned %s %s", action, name)
        elif action == "brightness":
            setter = getattr(handle, "set_brightness", None)
            if setter is None:
                logger.warning("Accessory %r has no brightness", name)
                return
            try:
                level = int(float(mapping.value or ""))
            except ValueError:
                logger.warning(
                    "Invalid brightness %r for %r", mapping.value, name
                )
                return
            level = max(0, min(100, level))
            if invoke(setter, level):
                logger.info("Set brightness of %s to %d", name, level)
        else:
            logger.warning("Unknown action %r for %r", mapping.action, name)

    def _run_led_action(self, mapping: ButtonMapping) -> None:
        if not mapping.value:
            logger.warning("No colour given for %s", mapping.label)
            return
        try:
            color = parse_color_value(mapping.value, self._mode_table)
        except ValueError:
            logger.warning("Unknown colour %r", mapping.value)
            return
        invoke(self._set_led, color.r, color.g, color.b)
        logger.info("Set LED to %s", mapping.value)

    def _run_scene_action(self, mapping: ButtonMapping) -> None:
        scene = mapping.target_name or mapping.value
        activate = getattr(self._registry, "activate_scene", None)
        if not scene or activate is None:
            logger.info("Scene action requested: %s (not supported)", scene)
            return
        if invoke(activate, scene):
            logger.info("Activated scene %s", scene)

    # ---- url-action --------------------------------------------------

    def _run_url_action(self, mapping: ButtonMapping) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No event loop, cannot call %s", mapping.url)
            return
        task = loop.create_task(self._send_request(mapping))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _get_http_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._http_timeout)
            )
            self._owns_http_session = True
        return self._http_session

    async def _send_request(self, mapping: ButtonMapping) -> None:
        method, url = mapping.method, mapping.url or ""
        data = mapping.body.encode("utf-8") if (
            method == "POST" and mapping.body
        ) else None
        try:
            session = self._get_http_session()
            async with session.request(method, url, data=data) as resp:
                await resp.read()
                logger.info("%s %s → HTTP %d", method, url, resp.status)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("%s %s failed: %s", method, url,
                           str(exc) or type(exc).__name__)

    # ---- shutdown ----------------------------------------------------

    async def close(self) -> None:
        """Cancel outstanding requests, clear triggers, release HTTP."""
        for key in list(self._trigger_timers):
            self._trigger_timers.pop(key).cancel()
            if self._listener is not None:
                invoke(self._listener.notify_trigger, key, False)

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

        if self._owns_http_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    def __repr__(self) -> str:
        return (
            f"ActionDispatcher(mappings={len(self._mappings)}, "
            f"mode={self._dispatch_mode.value})"
        )
