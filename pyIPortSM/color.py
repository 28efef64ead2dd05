"""Colour model for the panel LED.

Pure helpers, no state:

* :class:`DeviceColor`: an immutable 8-bit RGB triple.
* :func:`rgb_to_hsv` / :func:`hsv_to_rgb`: conversions in the ranges
  used by HomeKit light services (hue 0–360, saturation and value
  0–100).
* :class:`ModeTable` and :func:`classify_mode`: map the current LED
  colour to a *mode* name that selects which button mapping applies.

Mode classification
~~~~~~~~~~~~~~~~~~~

Two algorithms are available (see :class:`~pyIPortSM.enums.ModeMatch`):

``NORMALIZED``
    The colour is scaled so that its dominant channel becomes 255
    (``c / max * 255`` per channel, halves rounded up) and compared for exact
    equality with each table entry.  A dimmed red ``(100, 0, 0)`` is
    still ``"red"``, but ``(250, 10, 0)`` is ``"unknown"``.

``TOLERANCE``
    No scaling.  An entry matches when every channel differs by at most
    *tolerance* (default 50).  When several entries qualify the one with
    the smallest summed difference wins.  ``(250, 10, 0)`` is ``"red"``
    but a dimmed ``(100, 0, 0)`` is ``"unknown"``.

Black ``(0, 0, 0)`` is always ``"off"``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterator, Mapping, NamedTuple, Optional, Tuple

from pyIPortSM.enums import ModeMatch

#: Mode name returned for a black LED.
MODE_OFF: str = "off"

#: Mode name returned when no table entry matches.
MODE_UNKNOWN: str = "unknown"

#: Wildcard used by button mappings.
MODE_ANY: str = "any"

#: Default per-channel tolerance for :attr:`ModeMatch.TOLERANCE`.
DEFAULT_TOLERANCE: int = 50

#: Fixed colour sequence stepped through by button 10.
COLOR_CYCLE: Tuple[str, ...] = (
    "red", "green", "blue", "yellow", "purple", "white",
)


# ---------------------------------------------------------------------------
# DeviceColor
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DeviceColor:
    """An RGB colour with 8-bit channels.

    Raises
    ------
    ValueError
        If a channel is not an integer in ``[0, 255]``.
    """

    r: int
    g: int
    b: int

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(
                    f"Channel {name} must be an int, got {value!r}"
                )
            if not 0 <= value <= 255:
                raise ValueError(
                    f"Channel {name} out of range: {value}"
                )

    @classmethod
    def from_hex(cls, text: str) -> "DeviceColor":
        """Parse ``#RRGGBB`` (the ``#`` is optional)."""
        digits = text.strip().lstrip("#")
        if len(digits) != 6:
            raise ValueError(f"Expected 6 hex digits, got {text!r}")
        try:
            return cls(
                int(digits[0:2], 16),
                int(digits[2:4], 16),
                int(digits[4:6], 16),
            )
        except ValueError:
            raise ValueError(f"Invalid hex colour {text!r}") from None

    def to_hex(self) -> str:
        return f"#{self.r:02X}{self.g:02X}{self.b:02X}"

    @property
    def is_black(self) -> bool:
        return self.r == 0 and self.g == 0 and self.b == 0

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.r, self.g, self.b)

    def __str__(self) -> str:
        return f"({self.r},{self.g},{self.b})"


#: Initial LED colour when nothing else is configured.
WHITE = DeviceColor(255, 255, 255)

#: LED switched off.
BLACK = DeviceColor(0, 0, 0)


# ---------------------------------------------------------------------------
# HSV conversion
# ---------------------------------------------------------------------------


class HSV(NamedTuple):
    """Hue in degrees ``[0, 360)``, saturation and value in ``[0, 100]``."""

    h: float
    s: float
    v: float


def rgb_to_hsv(r: int, g: int, b: int) -> HSV:
    """Convert 8-bit RGB to :class:`HSV`.

    Hue is defined as 0 for achromatic colours (``max == min``).
    """
    rf, gf, bf = r / 255, g / 255, b / 255
    mx = max(rf, gf, bf)
    mn = min(rf, gf, bf)
    delta = mx - mn

    s = 0.0 if mx == 0 else delta / mx

    if delta == 0:
        h = 0.0
    elif mx == rf:
        h = (gf - bf) / delta + (6 if gf < bf else 0)
    elif mx == gf:
        h = (bf - rf) / delta + 2
    else:
        h = (rf - gf) / delta + 4

    hue = (h * 60) % 360
    return HSV(hue, s * 100, mx * 100)


def hsv_to_rgb(h: float, s: float, v: float) -> DeviceColor:
    """Convert :class:`HSV` components back to a :class:`DeviceColor`.

    Uses the six-sector formula on ``floor(h / 60) mod 6``; each channel
    is rounded half up and clamped to ``[0, 255]``.
    """
    hf = (h % 360) / 60
    sf = min(max(s, 0.0), 100.0) / 100
    vf = min(max(v, 0.0), 100.0) / 100

    i = math.floor(hf)
    f = hf - i
    p = vf * (1 - sf)
    q = vf * (1 - f * sf)
    t = vf * (1 - (1 - f) * sf)

    sector = i % 6
    if sector == 0:
        rf, gf, bf = vf, t, p
    elif sector == 1:
        rf, gf, bf = q, vf, p
    elif sector == 2:
        rf, gf, bf = p, vf, t
    elif sector == 3:
        rf, gf, bf = p, q, vf
    elif sector == 4:
        rf, gf, bf = t, p, vf
    else:
        rf, gf, bf = vf, p, q

    return DeviceColor(_to_byte(rf), _to_byte(gf), _to_byte(bf))


def _to_byte(fraction: float) -> int:
    return min(255, max(0, math.floor(fraction * 255 + 0.5)))


# ---------------------------------------------------------------------------
# Mode table
# ---------------------------------------------------------------------------

#: Built-in mode colours.
DEFAULT_MODE_COLORS: Dict[str, DeviceColor] = {
    "red": DeviceColor(255, 0, 0),
    "green": DeviceColor(0, 255, 0),
    "blue": DeviceColor(0, 0, 255),
    "yellow": DeviceColor(255, 255, 0),
    "purple": DeviceColor(128, 0, 128),
    "white": DeviceColor(255, 255, 255),
}


class ModeTable(Mapping[str, DeviceColor]):
    """Immutable, ordered mapping of mode name → canonical colour.

    Parameters
    ----------
    overrides:
        Entries that replace or extend the built-in defaults.  Names are
        lower-cased.
    include_defaults:
        When ``False`` only *overrides* are used.
    """

    def __init__(
        self,
        overrides: Optional[Mapping[str, DeviceColor]] = None,
        *,
        include_defaults: bool = True,
    ) -> None:
        entries: Dict[str, DeviceColor] = (
            dict(DEFAULT_MODE_COLORS) if include_defaults else {}
        )
        for name, color in (overrides or {}).items():
            entries[name.strip().lower()] = color
        self._entries = entries

    def __getitem__(self, name: str) -> DeviceColor:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v}" for k, v in self._entries.items())
        return f"ModeTable({body})"


def classify_mode(
    color: DeviceColor,
    table: Mapping[str, DeviceColor],
    *,
    algorithm: ModeMatch = ModeMatch.NORMALIZED,
    tolerance: int = DEFAULT_TOLERANCE,
) -> str:
    """Return the mode name for *color*, ``"off"`` or ``"unknown"``."""
    if color.is_black:
        return MODE_OFF

    if algorithm is ModeMatch.NORMALIZED:
        peak = max(color.as_tuple())
        scaled = tuple(
            math.floor(c / peak * 255 + 0.5) for c in color.as_tuple()
        )
        for name, entry in table.items():
            if scaled == entry.as_tuple():
                return name
        return MODE_UNKNOWN

    best: Optional[str] = None
    best_distance = 0
    for name, entry in table.items():
        diffs = [
            abs(a - b) for a, b in zip(color.as_tuple(), entry.as_tuple())
        ]
        if max(diffs) > tolerance:
            continue
        distance = sum(diffs)
        if best is None or distance < best_distance:
            best = name
            best_distance = distance
    return best if best is not None else MODE_UNKNOWN


def parse_color_value(
    value: str,
    table: Mapping[str, DeviceColor],
) -> DeviceColor:
    """Resolve a ``#RRGGBB`` literal or a mode name to a colour.

    Raises
    ------
    ValueError
        If *value* is neither.
    """
    text = str(value).strip()
    if text.startswith("#"):
        return DeviceColor.from_hex(text)
    color = table.get(text.lower())
    if color is None:
        raise ValueError(f"Unknown colour {value!r}")
    return color
