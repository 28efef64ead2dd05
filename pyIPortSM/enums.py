"""Enumerations used by the iPort SM panel bridge.

The integer values of :class:`PressType` match the HomeKit
``ProgrammableSwitchEvent`` characteristic (0 = single, 1 = double,
2 = long) so that host layers can forward them unchanged.
"""

from enum import Enum, IntEnum, unique


# ---------------------------------------------------------------------------
#  Session / transport
# ---------------------------------------------------------------------------


@unique
class ConnectionState(Enum):
    """Phase of the single panel connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


# ---------------------------------------------------------------------------
#  Buttons
# ---------------------------------------------------------------------------


@unique
class ButtonPhase(Enum):
    """Phase of one physical button."""

    IDLE = "idle"
    PRESSED = "pressed"


@unique
class PressType(IntEnum):
    """Classified press kinds (HomeKit ``ProgrammableSwitchEvent``)."""

    SINGLE = 0
    DOUBLE = 1
    LONG = 2


@unique
class PressMode(Enum):
    """Which press classification variant is active."""

    SIMPLE = "simple"
    """Release while pressed is a single press; nothing else."""

    TIMED = "timed"
    """Timer based single / double / long classification."""


# ---------------------------------------------------------------------------
#  Modes and actions
# ---------------------------------------------------------------------------


@unique
class ModeMatch(Enum):
    """Algorithm used to map the LED colour to a mode name."""

    NORMALIZED = "normalized"
    """Scale the dominant channel to 255, then compare exactly."""

    TOLERANCE = "tolerance"
    """Per-channel absolute difference within a tolerance."""


@unique
class ActionType(Enum):
    """Kinds of action a button mapping can perform."""

    HOMEKIT = "homekit-action"
    LED = "led-action"
    URL = "url-action"
    SCENE = "scene-action"

    @classmethod
    def from_config(cls, value: str) -> "ActionType":
        """Parse a config value, accepting the short legacy spellings."""
        text = str(value).strip().lower()
        if not text.endswith("-action"):
            text = f"{text}-action"
        return cls(text)


@unique
class DispatchMode(Enum):
    """How a resolved mapping is turned into an effect."""

    DIRECT = "direct"
    """Execute the action from the bridge itself."""

    TRIGGER = "trigger"
    """Pulse a virtual trigger and let the host automation react."""
