"""Button press classification for the panel's ten keys.

The panel reports raw transitions per key: ``1`` when a key goes down
and ``0`` when it comes up.  This module turns those transitions into
classified presses (:class:`~pyIPortSM.enums.PressType`).  Two
variants exist and are selected with :class:`~pyIPortSM.enums.PressMode`:

Simple (``PressMode.SIMPLE``)
    :func:`transition` is a pure function over :class:`ButtonState`.
    A release that follows a press is a ``SINGLE`` press; nothing else
    is ever emitted.  Repeated presses and stray releases are ignored.

Timed (``PressMode.TIMED``)
    :class:`PressClassifier` additionally recognises double and long
    presses using two timers on the running loop::

        IDLE ── press ──► PRESSED ── long timer fires ──► HELD (emit LONG)
                            │                               │
                         release                         release
                            ▼                               ▼
                       WAIT_SECOND ── window expires ──► IDLE (emit SINGLE)
                            │
                          press
                            ▼
                      SECOND_PRESSED ── release ──► IDLE (emit DOUBLE)

    The long timer (default 800 ms) starts on every press and is
    cancelled by the release.  The double-press window (default 500 ms)
    starts on the first release and is cancelled by a second press.

:class:`ButtonBank` holds one classifier per key in the configured
variant and reports every classified press through a single callback.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple, Union

from pyIPortSM.codec import BUTTON_COUNT
from pyIPortSM.enums import ButtonPhase, PressMode, PressType

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Default timing constants (seconds)
# ---------------------------------------------------------------------------

#: Maximum gap between the first release and the second press.
DEFAULT_DOUBLE_PRESS_WINDOW: float = 0.5

#: Hold duration after which a press becomes a long press.
DEFAULT_LONG_PRESS_TIME: float = 0.8

#: Raw state values sent by the panel.
RAW_PRESSED: int = 1
RAW_RELEASED: int = 0

#: Callback receiving ``(button_index, press_type)``.
PressCallback = Callable[[int, PressType], object]


# ---------------------------------------------------------------------------
# Simple variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ButtonState:
    """State of one key in the simple variant."""

    phase: ButtonPhase = ButtonPhase.IDLE
    last_press_start: Optional[float] = None


def transition(
    state: ButtonState,
    raw_state: int,
    now: float,
) -> Tuple[ButtonState, Optional[PressType]]:
    """Apply one raw transition to *state*.

    Returns the new state and the completed press, if any.  Raw values
    other than 0 and 1 leave the state unchanged.
    """
    if raw_state == RAW_PRESSED:
        if state.phase is ButtonPhase.IDLE:
            return ButtonState(ButtonPhase.PRESSED, now), None
        return state, None

    if raw_state == RAW_RELEASED and state.phase is ButtonPhase.PRESSED:
        return replace(state, phase=ButtonPhase.IDLE), PressType.SINGLE

    return state, None


class SimpleButton:
    """Stateful wrapper around :func:`transition` for one key."""

    def __init__(
        self,
        index: int,
        on_press: PressCallback,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._index = index
        self._on_press = on_press
        self._clock = clock
        self._state = ButtonState()

    @property
    def state(self) -> ButtonState:
        return self._state

    @property
    def phase(self) -> ButtonPhase:
        return self._state.phase

    def feed(self, raw_state: int) -> None:
        self._state, press = transition(self._state, raw_state, self._clock())
        if press is None:
            return
        try:
            self._on_press(self._index, press)
        except Exception:
            logger.exception(
                "Press callback error for button %d", self._index + 1
            )

    def stop(self) -> None:
        self._state = ButtonState()

    def __repr__(self) -> str:
        return f"SimpleButton(index={self._index}, phase={self.phase.value})"


# ---------------------------------------------------------------------------
# Timed variant
# ---------------------------------------------------------------------------


class _TimedState(enum.Enum):
    """Internal states of :class:`PressClassifier`."""

    IDLE = "idle"
    PRESSED = "pressed"
    HELD = "held"
    WAIT_SECOND = "wait_second"
    SECOND_PRESSED = "second_pressed"


class PressClassifier:
    """Timer based single / double / long classification for one key.

    Timing parameters
    -----------------

    * *double_press_window*: time (seconds) after the first release
      during which a second press turns the gesture into a double
      press.  Default: 500 ms.

    * *long_press_time*: time (seconds) a key must stay down to count
      as a long press.  Default: 800 ms.

    Timers need a running event loop; without one the classifier still
    tracks state but never emits ``LONG`` or a delayed ``SINGLE``.
    """

    def __init__(
        self,
        index: int,
        on_press: PressCallback,
        *,
        double_press_window: float = DEFAULT_DOUBLE_PRESS_WINDOW,
        long_press_time: float = DEFAULT_LONG_PRESS_TIME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._index = index
        self._on_press = on_press
        self._double_press_window = double_press_window
        self._long_press_time = long_press_time
        self._clock = clock

        self._state = _TimedState.IDLE
        self._last_press_start: Optional[float] = None

        self._long_timer: Optional[asyncio.TimerHandle] = None
        self._window_timer: Optional[asyncio.TimerHandle] = None

    # ---- public API --------------------------------------------------

    @property
    def state(self) -> str:
        """Current state name (for debugging / testing)."""
        return self._state.value

    @property
    def phase(self) -> ButtonPhase:
        """``PRESSED`` while the key is physically down."""
        if self._state in (
            _TimedState.PRESSED, _TimedState.HELD, _TimedState.SECOND_PRESSED,
        ):
            return ButtonPhase.PRESSED
        return ButtonPhase.IDLE

    @property
    def last_press_start(self) -> Optional[float]:
        return self._last_press_start

    @property
    def double_press_window(self) -> float:
        return self._double_press_window

    @property
    def long_press_time(self) -> float:
        return self._long_press_time

    def feed(self, raw_state: int) -> None:
        """Apply one raw transition from the panel."""
        if raw_state == RAW_PRESSED:
            self.press()
        elif raw_state == RAW_RELEASED:
            self.release()

    def press(self) -> None:
        """The key went down.  Ignored while already down."""
        if self._state is _TimedState.IDLE:
            self._last_press_start = self._clock()
            self._state = _TimedState.PRESSED
            self._schedule_long_timer()

        elif self._state is _TimedState.WAIT_SECOND:
            self._cancel_window_timer()
            self._last_press_start = self._clock()
            self._state = _TimedState.SECOND_PRESSED

    def release(self) -> None:
        """The key came up.  Ignored while not down."""
        if self._state is _TimedState.PRESSED:
            self._cancel_long_timer()
            self._state = _TimedState.WAIT_SECOND
            self._schedule_window_timer()

        elif self._state is _TimedState.SECOND_PRESSED:
            self._state = _TimedState.IDLE
            self._emit(PressType.DOUBLE)

        elif self._state is _TimedState.HELD:
            # The long press was already reported when the timer fired.
            self._state = _TimedState.IDLE

    def stop(self) -> None:
        """Cancel all pending timers and reset to IDLE."""
        self._cancel_long_timer()
        self._cancel_window_timer()
        self._state = _TimedState.IDLE

    # ---- long-press timer --------------------------------------------

    def _schedule_long_timer(self) -> None:
        self._cancel_long_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._long_timer = loop.call_later(
            self._long_press_time, self._on_long_timeout
        )

    def _cancel_long_timer(self) -> None:
        if self._long_timer is not None:
            self._long_timer.cancel()
            self._long_timer = None

    def _on_long_timeout(self) -> None:
        self._long_timer = None
        if self._state is not _TimedState.PRESSED:
            return
        self._state = _TimedState.HELD
        self._emit(PressType.LONG)

    # ---- double-press window -----------------------------------------

    def _schedule_window_timer(self) -> None:
        self._cancel_window_timer()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._window_timer = loop.call_later(
            self._double_press_window, self._on_window_timeout
        )

    def _cancel_window_timer(self) -> None:
        if self._window_timer is not None:
            self._window_timer.cancel()
            self._window_timer = None

    def _on_window_timeout(self) -> None:
        self._window_timer = None
        if self._state is not _TimedState.WAIT_SECOND:
            return
        self._state = _TimedState.IDLE
        self._emit(PressType.SINGLE)

    # ---- event emission ----------------------------------------------

    def _emit(self, press_type: PressType) -> None:
        try:
            self._on_press(self._index, press_type)
        except Exception:
            logger.exception(
                "Press callback error for button %d (%s)",
                self._index + 1,
                press_type.name,
            )

    # ---- dunder ------------------------------------------------------

    def __repr__(self) -> str:
        return (
            f"PressClassifier(index={self._index}, "
            f"state={self._state.value!r})"
        )


# ---------------------------------------------------------------------------
# ButtonBank
# ---------------------------------------------------------------------------


class ButtonBank:
    """All keys of the panel, classified with one :class:`PressMode`.

    Parameters
    ----------
    on_press:
        Called with ``(button_index, press_type)`` for every classified
        press.  ``button_index`` is 0-based.
    mode:
        Classification variant.
    count:
        Number of keys.
    double_press_window, long_press_time:
        Timings for :attr:`PressMode.TIMED`.
    """

    def __init__(
        self,
        on_press: PressCallback,
        *,
        mode: PressMode = PressMode.SIMPLE,
        count: int = BUTTON_COUNT,
        double_press_window: float = DEFAULT_DOUBLE_PRESS_WINDOW,
        long_press_time: float = DEFAULT_LONG_PRESS_TIME,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_press = on_press
        self._mode = mode
        self._buttons: List[Union[SimpleButton, PressClassifier]] = []
        for index in range(count):
            if mode is PressMode.TIMED:
                self._buttons.append(PressClassifier(
                    index,
                    self._forward,
                    double_press_window=double_press_window,
                    long_press_time=long_press_time,
                    clock=clock,
                ))
            else:
                self._buttons.append(
                    SimpleButton(index, self._forward, clock=clock)
                )

    @property
    def mode(self) -> PressMode:
        return self._mode

    def __len__(self) -> int:
        return len(self._buttons)

    def __getitem__(self, index: int) -> Union[SimpleButton, PressClassifier]:
        return self._buttons[index]

    def feed(self, button_index: int, raw_state: int) -> None:
        """Route a raw transition to its key.  Unknown keys are ignored."""
        if not 0 <= button_index < len(self._buttons):
            logger.debug("Ignoring event for unknown button %d", button_index)
            return
        self._buttons[button_index].feed(raw_state)

    def stop(self) -> None:
        """Reset every key and cancel pending timers."""
        for button in self._buttons:
            button.stop()

    def _forward(self, button_index: int, press_type: PressType) -> None:
        logger.info(
            "Button %d triggered %s press",
            button_index + 1,
            press_type.name.lower(),
        )
        self._on_press(button_index, press_type)

    def __repr__(self) -> str:
        return f"ButtonBank(mode={self._mode.value}, count={len(self)})"
