"""Capability interfaces towards the home-automation host.

The bridge never touches the host's object model directly.  It talks to
two injected collaborators:

* :class:`PanelListener`: receives outward notifications (button
  presses, LED light state, reachability, virtual-trigger pulses) and
  tells the bridge when it is ready to receive button events.
* :class:`DeviceRegistry`: resolves other devices by display name so
  that ``homekit-action`` mappings can switch them, and optionally
  activates scenes.

Any method may be a plain function or a coroutine function; coroutines
are scheduled on the running loop and never awaited by the caller.

:class:`LoggingListener` and :class:`NullRegistry` are minimal
implementations used by the command line runner.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Protocol, Set, runtime_checkable

from pyIPortSM.enums import PressType

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class DeviceHandle(Protocol):
    """An external switch or light that mappings can act on.

    ``set_brightness`` is optional; handles without it ignore
    ``brightness`` actions.
    """

    def is_on(self) -> Optional[bool]:
        ...

    def set_on(self, value: bool) -> Any:
        ...


@runtime_checkable
class DeviceRegistry(Protocol):
    """Looks up external devices by display name.

    Registries may additionally implement
    ``activate_scene(name) -> bool`` for ``scene-action`` mappings.
    """

    def resolve_by_name(self, name: str) -> Optional[DeviceHandle]:
        ...


@runtime_checkable
class PanelListener(Protocol):
    """Receiver of everything the bridge pushes outward."""

    def ready_for_events(self) -> bool:
        ...

    def notify_button_event(
        self, button_index: int, press_type: PressType
    ) -> Any:
        ...

    def notify_light_state(
        self, on: bool, hue: float, saturation: float, brightness: float
    ) -> Any:
        ...

    def notify_reachability(self, reachable: bool) -> Any:
        ...

    def notify_trigger(self, mapping_key: str, value: bool) -> Any:
        ...


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------


class NullRegistry:
    """A registry that knows no devices."""

    def resolve_by_name(self, name: str) -> Optional[DeviceHandle]:
        return None


class LoggingListener:
    """A listener that only logs what it is told.  Always ready."""

    def __init__(self, name: str = "panel") -> None:
        self._log = logging.getLogger(f"{__name__}.{name}")

    def ready_for_events(self) -> bool:
        return True

    def notify_button_event(
        self, button_index: int, press_type: PressType
    ) -> None:
        self._log.info(
            "Button %d: %s press", button_index + 1, press_type.name.lower()
        )

    def notify_light_state(
        self, on: bool, hue: float, saturation: float, brightness: float
    ) -> None:
        self._log.debug(
            "Light on=%s h=%.0f s=%.0f v=%.0f",
            on, hue, saturation, brightness,
        )

    def notify_reachability(self, reachable: bool) -> None:
        self._log.info("Panel %s", "reachable" if reachable else "unreachable")

    def notify_trigger(self, mapping_key: str, value: bool) -> None:
        self._log.info("Trigger %s -> %s", mapping_key, value)


# ---------------------------------------------------------------------------
# Callback invocation
# ---------------------------------------------------------------------------

#: Strong references to scheduled callback coroutines.
_background_tasks: Set["asyncio.Task[Any]"] = set()


def invoke(callback: Optional[Callable[..., Any]], *args: Any) -> bool:
    """Call *callback* and schedule the result if it is a coroutine.

    Exceptions raised by the callback are logged and swallowed so that a
    misbehaving collaborator can never break the device session.
    Returns ``False`` if the callback raised.
    """
    if callback is None:
        return True
    name = getattr(callback, "__qualname__", repr(callback))
    try:
        result = callback(*args)
    except Exception:
        logger.exception("Callback error in %s", name)
        return False

    if asyncio.iscoroutine(result):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            result.close()
            logger.warning("No event loop to run %s", name)
            return False
        task = loop.create_task(result)
        _background_tasks.add(task)
        task.add_done_callback(_finish_task)
    return True


def _finish_task(task: "asyncio.Task[Any]") -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background callback failed: %r", exc)
