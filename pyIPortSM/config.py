"""Configuration for a panel bridge.

:class:`PanelConfig` collects every tunable with its default.  It is
normally built from a mapping that uses the camelCase keys (and
millisecond times) of the Homebridge plugin configuration::

    ip: 192.168.2.12
    port: 10001
    timeout: 10000
    reconnectDelay: 5000
    triggerResetDelay: 500
    pressMode: timed
    modeMatch: tolerance
    modeTolerance: 40
    modeColors:
      orange: "#FF8000"
    buttonMappings:
      - buttonNumber: 1
        modeColor: red
        actionType: homekit-action
        action: toggle
        targetName: Desk Lamp

:func:`load_config` reads such a file.  YAML and JSON are both
accepted; a Homebridge ``config.json`` works too, in which case the
entry of the ``platforms`` list whose ``platform`` is
:data:`PLATFORM_NAME` is used.

Scalar values that cannot be converted raise :class:`ValueError`.
Individual button mappings that are invalid are skipped with a
warning so that one typo does not disable the whole panel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from pyIPortSM.codec import DEFAULT_PANEL_PORT
from pyIPortSM.color import (
    DEFAULT_TOLERANCE,
    WHITE,
    DeviceColor,
    ModeTable,
)
from pyIPortSM.enums import ActionType, DispatchMode, ModeMatch, PressMode
from pyIPortSM.mapping import ButtonMapping

logger = logging.getLogger(__name__)

#: Platform identifier used in Homebridge configuration files.
PLATFORM_NAME: str = "IPortSMButtons"

#: Default panel address.
DEFAULT_IP: str = "192.168.2.12"

#: Default display name.
DEFAULT_NAME: str = "iPort SM Buttons"

# Millisecond keys and their defaults.
_MS_DEFAULTS: Dict[str, int] = {
    "timeout": 10_000,
    "reconnectDelay": 5_000,
    "keepaliveInterval": 5_000,
    "shutdownGrace": 2_000,
    "triggerResetDelay": 500,
    "doublePressWindow": 500,
    "longPressTime": 800,
}


@dataclass(frozen=True)
class PanelConfig:
    """All settings of one bridge instance.  Times are in seconds."""

    ip: str = DEFAULT_IP
    port: int = DEFAULT_PANEL_PORT
    name: str = DEFAULT_NAME
    timeout: float = 10.0
    reconnect_delay: float = 5.0
    keepalive_interval: float = 5.0
    shutdown_grace: float = 2.0
    trigger_reset_delay: float = 0.5
    press_mode: PressMode = PressMode.SIMPLE
    double_press_window: float = 0.5
    long_press_time: float = 0.8
    mode_match: ModeMatch = ModeMatch.NORMALIZED
    mode_tolerance: int = DEFAULT_TOLERANCE
    dispatch_mode: DispatchMode = DispatchMode.DIRECT
    default_color: DeviceColor = WHITE
    mode_table: ModeTable = field(default_factory=ModeTable)
    button_mappings: Tuple[ButtonMapping, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PanelConfig":
        """Build a config from camelCase keys with millisecond times.

        Unknown keys are ignored.

        Raises
        ------
        ValueError
            If a value has the wrong type or range.
        """
        if not isinstance(data, Mapping):
            raise ValueError(
                f"Configuration must be a mapping, got {type(data).__name__}"
            )

        seconds = {
            key: _milliseconds(data, key, default) / 1000
            for key, default in _MS_DEFAULTS.items()
        }

        port = _int(data, "port", DEFAULT_PANEL_PORT)
        if not 0 < port < 65536:
            raise ValueError(f"port out of range: {port}")

        tolerance = _int(data, "modeTolerance", DEFAULT_TOLERANCE)
        if not 0 <= tolerance <= 255:
            raise ValueError(f"modeTolerance out of range: {tolerance}")

        return cls(
            ip=str(data.get("ip") or DEFAULT_IP).strip(),
            port=port,
            name=str(data.get("name") or DEFAULT_NAME),
            timeout=seconds["timeout"],
            reconnect_delay=seconds["reconnectDelay"],
            keepalive_interval=seconds["keepaliveInterval"],
            shutdown_grace=seconds["shutdownGrace"],
            trigger_reset_delay=seconds["triggerResetDelay"],
            press_mode=_enum(data, "pressMode", PressMode, PressMode.SIMPLE),
            double_press_window=seconds["doublePressWindow"],
            long_press_time=seconds["longPressTime"],
            mode_match=_enum(
                data, "modeMatch", ModeMatch, ModeMatch.NORMALIZED
            ),
            mode_tolerance=tolerance,
            dispatch_mode=_enum(
                data, "dispatchMode", DispatchMode, DispatchMode.DIRECT
            ),
            default_color=_color(data.get("defaultColor"), WHITE),
            mode_table=_mode_table(data.get("modeColors")),
            button_mappings=_mappings(data.get("buttonMappings")),
        )


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _milliseconds(data: Mapping[str, Any], key: str, default: int) -> float:
    value = data.get(key)
    if value is None:
        return float(default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number of milliseconds")
    if value < 0:
        raise ValueError(f"{key} must not be negative")
    return float(value)


def _int(data: Mapping[str, Any], key: str, default: int) -> int:
    value = data.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{key} must be an integer, got {value!r}") from None


def _enum(data: Mapping[str, Any], key: str, enum_cls: Any, default: Any) -> Any:
    value = data.get(key)
    if value is None:
        return default
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValueError(
            f"{key} must be one of {choices}, got {value!r}"
        ) from None


def _color(value: Any, default: DeviceColor) -> DeviceColor:
    if value is None:
        return default
    if isinstance(value, str):
        return DeviceColor.from_hex(value)
    if isinstance(value, Mapping):
        return DeviceColor(
            int(value.get("r", 0)), int(value.get("g", 0)), int(value.get("b", 0))
        )
    if isinstance(value, (list, tuple)) and len(value) == 3:
        return DeviceColor(*(int(c) for c in value))
    raise ValueError(f"Invalid colour {value!r}")


def _mode_table(value: Any) -> ModeTable:
    if not value:
        return ModeTable()
    if not isinstance(value, Mapping):
        raise ValueError("modeColors must be a mapping of name to colour")
    overrides = {
        str(name): _color(color, WHITE) for name, color in value.items()
    }
    return ModeTable(overrides)


def _mappings(value: Any) -> Tuple[ButtonMapping, ...]:
    if not value:
        return ()
    if not isinstance(value, list):
        raise ValueError("buttonMappings must be a list")
    result = []
    for position, entry in enumerate(value):
        try:
            result.append(ButtonMapping.from_dict(entry))
        except ValueError as exc:
            logger.warning("Skipping button mapping #%d: %s", position, exc)
    return tuple(result)


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------


def extract_platform(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return the panel section of a Homebridge-style config.

    Plain panel configs are returned unchanged.
    """
    platforms = data.get("platforms")
    if not isinstance(platforms, list):
        return data
    for entry in platforms:
        if isinstance(entry, Mapping) and entry.get("platform") == PLATFORM_NAME:
            return entry
    raise ValueError(f"No {PLATFORM_NAME!r} platform in configuration")


def load_config(path: Union[str, Path]) -> PanelConfig:
    """Read a YAML or JSON configuration file.

    Raises
    ------
    OSError
        If the file cannot be read.
    ValueError
        If the file is not valid YAML / JSON or holds invalid values.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh)
        except yaml.YAMLError as exc:
            raise ValueError(f"Cannot parse {path}: {exc}") from None

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(
            f"Expected a mapping at top level in {path}, "
            f"got {type(data).__name__}"
        )

    config = PanelConfig.from_dict(extract_platform(data))
    logger.info(
        "Loaded configuration from %s (%d button mappings)",
        path,
        len(config.button_mappings),
    )
    return config


def dump_config(config: PanelConfig) -> Dict[str, Any]:
    """Return *config* as a camelCase mapping (times in milliseconds)."""
    mappings = []
    for m in config.button_mappings:
        entry: Dict[str, Any] = {
            "buttonNumber": m.button_number,
            "modeColor": m.mode_color,
            "actionType": m.action_type.value,
            "action": m.action,
        }
        for key, value in (
            ("targetName", m.target_name),
            ("value", m.value),
            ("url", m.url),
            ("body", m.body),
        ):
            if value is not None:
                entry[key] = value
        if m.action_type is ActionType.URL:
            entry["method"] = m.method
        mappings.append(entry)

    return {
        "ip": config.ip,
        "port": config.port,
        "name": config.name,
        "timeout": _ms(config.timeout),
        "reconnectDelay": _ms(config.reconnect_delay),
        "keepaliveInterval": _ms(config.keepalive_interval),
        "shutdownGrace": _ms(config.shutdown_grace),
        "triggerResetDelay": _ms(config.trigger_reset_delay),
        "pressMode": config.press_mode.value,
        "doublePressWindow": _ms(config.double_press_window),
        "longPressTime": _ms(config.long_press_time),
        "modeMatch": config.mode_match.value,
        "modeTolerance": config.mode_tolerance,
        "dispatchMode": config.dispatch_mode.value,
        "defaultColor": config.default_color.to_hex(),
        "modeColors": {
            name: color.to_hex() for name, color in config.mode_table.items()
        },
        "buttonMappings": mappings,
    }


def _ms(seconds: float) -> int:
    return int(round(seconds * 1000))


def config_to_yaml(config: PanelConfig) -> str:
    """Render *config* as human-readable YAML."""
    return yaml.dump(
        dump_config(config),
        default_flow_style=False,
        allow_unicode=True,
        sort_keys=False,
    )


def default_config(ip: Optional[str] = None) -> PanelConfig:
    """A config with every default, optionally for another address."""
    return PanelConfig(ip=ip) if ip else PanelConfig()
