"""Button mappings: which action a key performs in which mode.

A :class:`ButtonMapping` ties a button number (1–10) and a mode colour
(a mode name or ``"any"``) to one action.  Mappings are read from the
``buttonMappings`` list of the configuration; the keys are the camelCase
names used by the Homebridge plugin configuration::

    buttonMappings:
      - buttonNumber: 1
        modeColor: red
        actionType: homekit-action
        action: toggle
        targetName: Living Room Lamp
      - buttonNumber: 2
        modeColor: any
        actionType: url-action
        url: http://example.local/hook
        method: POST
        body: '{"source": "panel"}'

:func:`select_mapping` implements the lookup rule: an exact mode match
first, then a ``"any"`` entry, otherwise ``None``.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from pyIPortSM.codec import BUTTON_COUNT
from pyIPortSM.color import MODE_ANY
from pyIPortSM.enums import ActionType

#: HTTP methods accepted for ``url-action``.
HTTP_METHODS = frozenset({"GET", "POST"})

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ButtonMapping:
    """One configured rule.  Immutable."""

    button_number: int
    mode_color: str
    action_type: ActionType
    action: str = ""
    target_name: Optional[str] = None
    value: Optional[str] = None
    url: Optional[str] = None
    method: str = "GET"
    body: Optional[str] = None

    def __post_init__(self) -> None:
        if not 1 <= self.button_number <= BUTTON_COUNT:
            raise ValueError(
                f"buttonNumber must be 1–{BUTTON_COUNT}, "
                f"got {self.button_number}"
            )
        if self.method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method {self.method!r}")
        if self.action_type is ActionType.URL and not self.url:
            raise ValueError("url-action requires a url")

    @property
    def key(self) -> str:
        """Stable identifier, e.g. ``btn1-red-toggle-Living_Room_Lamp``."""
        target = _WHITESPACE_RE.sub("_", self.target_name or "")
        return (
            f"btn{self.button_number}-{self.mode_color}-"
            f"{self.action}-{target}"
        )

    @property
    def label(self) -> str:
        """Human-readable description for logs and UIs."""
        target = f" {self.target_name}" if self.target_name else ""
        return (
            f"B{self.button_number} [{self.mode_color}] → "
            f"{self.action or self.action_type.value}{target}"
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ButtonMapping":
        """Build a mapping from a configuration entry.

        ``ledColor`` is accepted as a legacy alias of ``value``.

        Raises
        ------
        ValueError
            If a required key is missing or a value is invalid.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Mapping must be an object, got {data!r}")
        try:
            button_number = int(data["buttonNumber"])
            action_type = ActionType.from_config(data["actionType"])
        except KeyError as exc:
            raise ValueError(f"Mapping is missing {exc.args[0]!r}") from None
        except (TypeError, ValueError):
            raise ValueError(f"Invalid mapping {data!r}") from None

        value = data.get("value", data.get("ledColor"))
        return cls(
            button_number=button_number,
            mode_color=str(data.get("modeColor", MODE_ANY)).strip().lower(),
            action_type=action_type,
            action=str(data.get("action", "")).strip(),
            target_name=_optional_str(data.get("targetName")),
            value=_optional_str(value),
            url=_optional_str(data.get("url")),
            method=str(data.get("method", "GET")).strip().upper(),
            body=_body_str(data.get("body")),
        )


def _body_str(value: Any) -> Optional[str]:
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return _optional_str(value)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def select_mapping(
    mappings: Iterable[ButtonMapping],
    button_number: int,
    mode: str,
) -> Optional[ButtonMapping]:
    """Return the mapping for *button_number* in *mode*.

    An entry whose ``mode_color`` equals *mode* wins over an ``"any"``
    entry; the first entry wins among equals.
    """
    fallback: Optional[ButtonMapping] = None
    for mapping in mappings:
        if mapping.button_number != button_number:
            continue
        if mapping.mode_color == mode:
            return mapping
        if mapping.mode_color == MODE_ANY and fallback is None:
            fallback = mapping
    return fallback
