"""FIFO buffer for button events that arrive before the host is ready.

The panel may report key transitions as soon as the TCP connection is
up, which can be before the home-automation host has created the
services that receive button notifications.  :class:`EventQueue` holds
such events and replays them, in arrival order, when :meth:`flush` is
called after the host signals readiness.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List

logger = logging.getLogger(__name__)

#: Default number of events held while the consumer is not ready.
DEFAULT_MAX_PENDING: int = 100


@dataclass(frozen=True)
class QueuedEvent:
    """One raw button transition waiting to be handled."""

    button_index: int
    raw_state: int


class EventQueue:
    """Readiness-gated FIFO of :class:`QueuedEvent`.

    Parameters
    ----------
    ready:
        Returns ``True`` once events may be handled.
    handler:
        Called with ``(button_index, raw_state)`` for each event.
    max_pending:
        Capacity of the queue.  When it is full the oldest event is
        dropped to make room.
    """

    def __init__(
        self,
        ready: Callable[[], bool],
        handler: Callable[[int, int], object],
        max_pending: int = DEFAULT_MAX_PENDING,
    ) -> None:
        if max_pending < 1:
            raise ValueError(f"max_pending must be positive, got {max_pending}")
        self._ready = ready
        self._handler = handler
        self._max_pending = max_pending
        self._queue: Deque[QueuedEvent] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def pending(self) -> List[QueuedEvent]:
        """Snapshot of the queued events, oldest first."""
        return list(self._queue)

    def submit(self, button_index: int, raw_state: int) -> bool:
        """Handle the event now if possible, otherwise queue it.

        Events are never handled ahead of older queued ones: when the
        consumer has become ready but the queue is not empty, the queue
        is flushed first.

        Returns ``True`` if the event was handled immediately.
        """
        if not self._is_ready():
            if len(self._queue) >= self._max_pending:
                dropped = self._queue.popleft()
                logger.warning(
                    "Event queue full, dropping button %d, state %d",
                    dropped.button_index + 1,
                    dropped.raw_state,
                )
            self._queue.append(QueuedEvent(button_index, raw_state))
            logger.info(
                "Queued event for button %d, state %d (%d pending)",
                button_index + 1,
                raw_state,
                len(self._queue),
            )
            return False

        if self._queue:
            self.flush()
        self._handler(button_index, raw_state)
        return True

    def flush(self) -> int:
        """Handle every queued event in FIFO order.

        Returns the number of events handled.  Does nothing while the
        consumer is not ready.
        """
        if not self._queue:
            return 0
        if not self._is_ready():
            logger.debug(
                "Consumer not ready, keeping %d queued events",
                len(self._queue),
            )
            return 0

        logger.info("Processing %d queued events", len(self._queue))
        handled = 0
        while self._queue:
            event = self._queue.popleft()
            self._handler(event.button_index, event.raw_state)
            handled += 1
        return handled

    def clear(self) -> None:
        self._queue.clear()

    def _is_ready(self) -> bool:
        try:
            return bool(self._ready())
        except Exception:
            logger.exception("Readiness check failed")
            return False

    def __repr__(self) -> str:
        return f"EventQueue(pending={len(self._queue)})"
