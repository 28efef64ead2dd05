"""Panel bridge: one panel wired to one home-automation host.

:class:`PanelBridge` is the top-level object of the package.  It owns
exactly one :class:`~pyIPortSM.session.PanelSession` and connects it to
the rest of the pipeline::

    PanelSession ──► EventQueue ──► ButtonBank ──► listener.notify_button_event
         │                                      └─► ActionDispatcher (single)
         ├─► listener.notify_light_state  (every LED report)
         └─► listener.notify_reachability (on change)

Button events that arrive before the host reports
:meth:`~pyIPortSM.interfaces.PanelListener.ready_for_events` are held in
the queue; the host calls :meth:`PanelBridge.notify_ready` once its
services exist.

The bridge also exposes the panel LED as a light with the usual
on / hue / saturation / brightness controls.  Every light control raises
:class:`ConnectionError` while the panel is not connected.

Usage::

    bridge = PanelBridge(load_config("iport.yaml"), listener=my_listener)
    await bridge.start()
    ...
    await bridge.stop()
"""

from __future__ import annotations

import logging
from typing import Optional

import aiohttp

from pyIPortSM.button_input import ButtonBank
from pyIPortSM.color import HSV, DeviceColor, hsv_to_rgb, rgb_to_hsv
from pyIPortSM.config import PanelConfig
from pyIPortSM.dispatcher import ActionDispatcher
from pyIPortSM.enums import ConnectionState, PressType
from pyIPortSM.event_queue import EventQueue
from pyIPortSM.interfaces import (
    DeviceRegistry,
    LoggingListener,
    NullRegistry,
    PanelListener,
    invoke,
)
from pyIPortSM.session import Connector, PanelSession

logger = logging.getLogger(__name__)


class PanelBridge:
    """Connects a panel to a listener and a device registry.

    Parameters
    ----------
    config:
        All settings; see :class:`~pyIPortSM.config.PanelConfig`.
    listener:
        Receiver of outward notifications.  Defaults to a
        :class:`~pyIPortSM.interfaces.LoggingListener`.
    registry:
        Resolves external devices for ``homekit-action`` mappings.
        Defaults to a :class:`~pyIPortSM.interfaces.NullRegistry`.
    connector:
        Passed to :class:`~pyIPortSM.session.PanelSession` (for tests).
    http_session:
        Passed to :class:`~pyIPortSM.dispatcher.ActionDispatcher`.
    """

    def __init__(
        self,
        config: Optional[PanelConfig] = None,
        *,
        listener: Optional[PanelListener] = None,
        registry: Optional[DeviceRegistry] = None,
        connector: Optional[Connector] = None,
        http_session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self._config = config if config is not None else PanelConfig()
        cfg = self._config
        self._listener: PanelListener = (
            listener if listener is not None else LoggingListener(cfg.name)
        )
        self._registry: DeviceRegistry = (
            registry if registry is not None else NullRegistry()
        )

        self._session = PanelSession(
            cfg.ip,
            cfg.port,
            timeout=cfg.timeout,
            reconnect_delay=cfg.reconnect_delay,
            keepalive_interval=cfg.keepalive_interval,
            shutdown_grace=cfg.shutdown_grace,
            initial_color=cfg.default_color,
            on_led_report=self._on_led_report,
            on_button_event=self._on_button_event,
            on_reachability=self._on_reachability,
            connector=connector,
        )
        self._buttons = ButtonBank(
            self._on_press,
            mode=cfg.press_mode,
            double_press_window=cfg.double_press_window,
            long_press_time=cfg.long_press_time,
        )
        self._queue = EventQueue(self._is_ready, self._handle_raw_event)
        self._dispatcher = ActionDispatcher(
            cfg.button_mappings,
            color_source=lambda: self._session.color,
            set_led=self._session.set_led,
            mode_table=cfg.mode_table,
            registry=self._registry,
            listener=self._listener,
            dispatch_mode=cfg.dispatch_mode,
            mode_match=cfg.mode_match,
            tolerance=cfg.mode_tolerance,
            trigger_reset_delay=cfg.trigger_reset_delay,
            http_session=http_session,
        )

        # Last HSV seen or requested; setters combine one new component
        # with the other two.
        self._hsv: HSV = rgb_to_hsv(*cfg.default_color.as_tuple())
        self._started = False

    # ---- accessors ---------------------------------------------------

    @property
    def config(self) -> PanelConfig:
        return self._config

    @property
    def session(self) -> PanelSession:
        return self._session

    @property
    def buttons(self) -> ButtonBank:
        return self._buttons

    @property
    def queue(self) -> EventQueue:
        return self._queue

    @property
    def dispatcher(self) -> ActionDispatcher:
        return self._dispatcher

    @property
    def listener(self) -> PanelListener:
        return self._listener

    @property
    def is_connected(self) -> bool:
        return self._session.is_connected

    @property
    def color(self) -> DeviceColor:
        return self._session.color

    # ---- lifecycle ---------------------------------------------------

    async def start(self) -> None:
        """Start the session.  Returns without waiting for a connection."""
        if self._started:
            return
        self._started = True
        logger.info(
            "Starting %s for %s:%d (%d button mappings)",
            self._config.name,
            self._config.ip,
            self._config.port,
            len(self._config.button_mappings),
        )
        await self._session.start()

    async def stop(self) -> None:
        """Close the session and cancel all timers and pending requests."""
        await self._session.stop()
        self._buttons.stop()
        dropped = len(self._queue)
        if dropped:
            logger.info("Discarding %d queued button events", dropped)
        self._queue.clear()
        await self._dispatcher.close()
        self._started = False

    def notify_ready(self) -> int:
        """The host is ready for button events; replay queued ones.

        Returns the number of events replayed.
        """
        return self._queue.flush()

    # ---- session callbacks -------------------------------------------

    def _on_led_report(self, color: DeviceColor) -> None:
        self._publish_light_state(color)

    def _on_button_event(self, button_index: int, raw_state: int) -> None:
        logger.debug("Button %d state %d", button_index + 1, raw_state)
        self._queue.submit(button_index, raw_state)

    def _on_reachability(self, reachable: bool) -> None:
        invoke(self._listener.notify_reachability, reachable)

    # ---- button pipeline ---------------------------------------------

    def _is_ready(self) -> bool:
        return bool(self._listener.ready_for_events())

    def _handle_raw_event(self, button_index: int, raw_state: int) -> None:
        if self._session.is_closing:
            logger.debug("Shutting down, ignoring button %d", button_index + 1)
            return
        self._buttons.feed(button_index, raw_state)

    def _on_press(self, button_index: int, press_type: PressType) -> None:
        invoke(self._listener.notify_button_event, button_index, press_type)
        if press_type is PressType.SINGLE:
            try:
                self._dispatcher.execute(button_index + 1)
            except Exception:
                logger.exception(
                    "Action for button %d failed", button_index + 1
                )

    def _publish_light_state(self, color: DeviceColor) -> None:
        if not self.is_connected:
            return
        hsv = rgb_to_hsv(*color.as_tuple())
        if hsv.v > 0:
            self._hsv = hsv
        invoke(
            self._listener.notify_light_state,
            hsv.v > 0, hsv.h, hsv.s, hsv.v,
        )

    # ---- light control -----------------------------------------------

    def _require_connected(self) -> None:
        if not self.is_connected:
            raise ConnectionError("Device not connected")

    def light_state(self) -> HSV:
        """Current LED colour as hue / saturation / brightness.

        Raises
        ------
        ConnectionError
            If the panel is not connected.
        """
        self._require_connected()
        return rgb_to_hsv(*self._session.color.as_tuple())

    def is_on(self) -> bool:
        """``True`` if the LED is lit.

        Raises
        ------
        ConnectionError
            If the panel is not connected.
        """
        return self.light_state().v > 0

    def set_on(self, value: bool) -> None:
        """Switch the LED on or off.

        Switching on an LED that is black makes it white; switching on a
        lit LED leaves its colour alone.  Switching off makes it black.

        Raises
        ------
        ConnectionError
            If the panel is not connected.
        """
        self._require_connected()
        if value:
            if self._session.color.is_black:
                self._session.set_led(255, 255, 255)
        else:
            self._session.set_led(0, 0, 0)

    def set_hue(self, hue: float) -> DeviceColor:
        """Set the hue (0–360), keeping saturation and brightness."""
        self._require_connected()
        return self._apply_hsv(HSV(hue, self._hsv.s, self._hsv.v))

    def set_saturation(self, saturation: float) -> DeviceColor:
        """Set the saturation (0–100), keeping hue and brightness."""
        self._require_connected()
        return self._apply_hsv(HSV(self._hsv.h, saturation, self._hsv.v))

    def set_brightness(self, brightness: float) -> DeviceColor:
        """Set the brightness (0–100), keeping hue and saturation."""
        self._require_connected()
        return self._apply_hsv(HSV(self._hsv.h, self._hsv.s, brightness))

    def _apply_hsv(self, hsv: HSV) -> DeviceColor:
        color = hsv_to_rgb(hsv.h, hsv.s, hsv.v)
        self._hsv = hsv
        self._session.set_led(color.r, color.g, color.b)
        return color

    # ---- dunder ------------------------------------------------------

    def __repr__(self) -> str:
        state = self._session.state
        return (
            f"PanelBridge({self._config.name!r}, "
            f"{self._config.ip}:{self._config.port}, "
            f"{'connected' if state is ConnectionState.CONNECTED else state.value})"
        )
