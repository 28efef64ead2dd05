"""pyIPortSM - Python bridge for iPort SM button panels."""

__version__ = "0.1.0"

from pyIPortSM.enums import (  # noqa: F401 – re-export for convenience
    ActionType,
    ButtonPhase,
    ConnectionState,
    DispatchMode,
    ModeMatch,
    PressMode,
    PressType,
)

from pyIPortSM.color import (  # noqa: F401
    COLOR_CYCLE,
    HSV,
    DeviceColor,
    ModeTable,
    classify_mode,
    hsv_to_rgb,
    parse_color_value,
    rgb_to_hsv,
)

from pyIPortSM.codec import (  # noqa: F401
    DEFAULT_PANEL_PORT,
    ButtonEvent,
    ButtonEventBatch,
    LedReport,
    Unrecognized,
    decode,
    format_query_command,
    format_set_command,
)

from pyIPortSM.connection import PanelConnection  # noqa: F401

from pyIPortSM.session import (  # noqa: F401
    PanelSession,
    TransportClosed,
    TransportData,
    TransportError,
    TransportEvent,
    TransportTimedOut,
)

from pyIPortSM.button_input import (  # noqa: F401
    ButtonBank,
    ButtonState,
    PressClassifier,
    transition,
)

from pyIPortSM.event_queue import EventQueue, QueuedEvent  # noqa: F401

from pyIPortSM.mapping import ButtonMapping, select_mapping  # noqa: F401

from pyIPortSM.interfaces import (  # noqa: F401
    DeviceHandle,
    DeviceRegistry,
    LoggingListener,
    NullRegistry,
    PanelListener,
)

from pyIPortSM.dispatcher import ActionDispatcher  # noqa: F401

from pyIPortSM.config import PanelConfig, load_config  # noqa: F401

from pyIPortSM.bridge import PanelBridge  # noqa: F401
