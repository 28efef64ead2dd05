"""Wire codec for the iPort SM line protocol.

The panel speaks plain text over TCP, records separated by ``\\r``.
Replies arrive in one of several shapes:

* a JSON object with button events::

      {"events": [{"label": "Key 3", "state": "1"}]}

* a JSON object with the LED colour::

      {"led": "255128000"}

* a legacy text reply ``led=RRRGGGBBB`` or ``led=#RRGGBB``;
* a bare 9-digit ``RRRGGGBBB`` string.

:func:`decode` turns one received chunk into a list of typed messages
(:class:`LedReport`, :class:`ButtonEventBatch`, :class:`Unrecognized`)
and never raises.  :func:`format_set_command` and
:func:`format_query_command` build the two outgoing commands.

Usage::

    for msg in decode(chunk):
        if isinstance(msg, LedReport):
            ...
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple, Union

from pyIPortSM.color import DeviceColor

logger = logging.getLogger(__name__)

#: Default TCP port of the panel.
DEFAULT_PANEL_PORT: int = 10001

#: Number of physical buttons on the panel.
BUTTON_COUNT: int = 10

#: Record separator used on the wire.
RECORD_SEPARATOR: str = "\r"

_LED_PREFIX = "led="
_LABEL_RE = re.compile(r"^\s*Key\s+(\d+)\s*$", re.IGNORECASE)
_HEX_RE = re.compile(r"^[0-9A-Fa-f]{6}")
_DECIMAL_RE = re.compile(r"[0-9]{9}")
_RECORD_SPLIT_RE = re.compile(r"[\r\n]+")


# ---------------------------------------------------------------------------
# Decoded message types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedReport:
    """The panel reported its current LED colour."""

    color: DeviceColor


@dataclass(frozen=True)
class ButtonEvent:
    """One raw transition: ``raw_state`` 1 = pressed, 0 = released."""

    index: int
    raw_state: int


@dataclass(frozen=True)
class ButtonEventBatch:
    """All button transitions contained in one JSON object."""

    events: Tuple[ButtonEvent, ...]


@dataclass(frozen=True)
class Unrecognized:
    """Data that matched no known shape (kept for diagnostics)."""

    raw: str


PanelMessage = Union[LedReport, ButtonEventBatch, Unrecognized]


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode(data: Union[bytes, str]) -> List[PanelMessage]:
    """Decode one received chunk.

    A chunk holding several ``\\r`` / ``\\n`` separated records is
    decoded record by record, in order; if none of them decodes, the
    whole chunk is tried once more (a JSON object may span lines).  An
    empty chunk decodes to ``[]``, a chunk with no usable content to a
    single :class:`Unrecognized`.
    """
    if isinstance(data, bytes):
        text = data.decode("utf-8", errors="replace")
    else:
        text = data
    text = text.strip()
    if not text:
        return []

    records = [r.strip() for r in _RECORD_SPLIT_RE.split(text) if r.strip()]
    messages: List[PanelMessage] = []
    for record in records:
        messages.extend(_decode_record(record))
    if not messages and len(records) > 1:
        messages = _decode_record(text)

    return messages or [Unrecognized(text)]


def _decode_record(text: str) -> List[PanelMessage]:
    """Decode a single trimmed record; ``[]`` when it matches nothing."""
    try:
        payload = json.loads(text)
    except ValueError:
        payload = None
    else:
        if isinstance(payload, dict):
            return _decode_json(payload)
        # Bare numbers are valid JSON (``255128000``); handle as text.
        payload = None

    if _LED_PREFIX in text:
        value = text.split(_LED_PREFIX, 1)[1].strip()
        color = decode_led_value(value)
        return [LedReport(color)] if color is not None else []

    if _DECIMAL_RE.fullmatch(text):
        color = decode_led_value(text)
        return [LedReport(color)] if color is not None else []

    return []


def _decode_json(payload: dict) -> List[PanelMessage]:
    messages: List[PanelMessage] = []

    led = payload.get("led")
    if led and not isinstance(led, bool):
        color = decode_led_value(str(led))
        if color is not None:
            messages.append(LedReport(color))

    raw_events = payload.get("events")
    if isinstance(raw_events, list):
        events = []
        for entry in raw_events:
            event = _decode_event(entry)
            if event is not None:
                events.append(event)
        if events:
            messages.append(ButtonEventBatch(tuple(events)))

    return messages


def _decode_event(entry: Any) -> Optional[ButtonEvent]:
    if not isinstance(entry, dict):
        return None

    match = _LABEL_RE.match(str(entry.get("label", "")))
    if match is None:
        logger.debug("Ignoring event with bad label: %r", entry)
        return None
    index = int(match.group(1)) - 1
    if not 0 <= index < BUTTON_COUNT:
        logger.debug("Ignoring event for unknown key: %r", entry)
        return None

    state = entry.get("state")
    if isinstance(state, bool):
        return None
    try:
        raw_state = int(str(state).strip())
    except ValueError:
        logger.debug("Ignoring event with bad state: %r", entry)
        return None

    return ButtonEvent(index, raw_state)


def decode_led_value(value: str) -> Optional[DeviceColor]:
    """Decode ``#RRGGBB`` or ``RRRGGGBBB`` into a colour.

    Decimal values shorter than nine digits are left-padded with zeros
    (numeric JSON drops leading zeros).  Returns ``None`` for anything
    malformed or out of range.
    """
    text = value.strip()
    if not text:
        return None
    if text.startswith("#"):
        digits = text[1:7]
        if not _HEX_RE.match(digits):
            return None
        return DeviceColor.from_hex(digits)

    digits = text.zfill(9)[:9]
    if not _DECIMAL_RE.fullmatch(digits):
        return None
    r, g, b = int(digits[0:3]), int(digits[3:6]), int(digits[6:9])
    if max(r, g, b) > 255:
        return None
    return DeviceColor(r, g, b)


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def format_set_command(r: int, g: int, b: int) -> bytes:
    """Build the LED set command ``\\rled=RRRGGGBBB\\r``."""
    color = DeviceColor(r, g, b)
    return (
        f"{RECORD_SEPARATOR}{_LED_PREFIX}"
        f"{color.r:03d}{color.g:03d}{color.b:03d}{RECORD_SEPARATOR}"
    ).encode("ascii")


def format_query_command() -> bytes:
    """Build the LED query command ``\\rled=?\\r``."""
    return f"{RECORD_SEPARATOR}{_LED_PREFIX}?{RECORD_SEPARATOR}".encode(
        "ascii"
    )
