"""RequestData — the structured form of the loosely-typed request bag.

Collaborators hand the bot scorer whatever they managed to collect from the
client.  ``RequestData.from_mapping`` turns that bag into a record with an
explicit default per field, so the scorer never sees a missing attribute.
Keys are accepted in snake_case or camelCase; unusable values fall back to
the field default instead of raising.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any


def _pick(bag: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in bag and bag[name] is not None:
            return bag[name]
    return None


def _as_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


@dataclass(frozen=True, slots=True)
class PointerSample:
    x: float
    y: float
    timestamp: float


@dataclass(frozen=True, slots=True)
class KeystrokeSample:
    timestamp: float
    key: str = ""


@dataclass(frozen=True, slots=True)
class Timing:
    page_load: float | None = None  # ms
    time_on_page: float | None = None  # ms


@dataclass(frozen=True, slots=True)
class ScreenResolution:
    width: int
    height: int = 0


@dataclass(frozen=True, slots=True)
class RequestData:
    """Everything the bot scorer may look at for one request.

    Defaults
    ────────
      user_agent      ""   (scored as missing)
      headers         {}   (header names are lower-cased)
      mouse_movements ()   (no pointer data)
      keystrokes      ()
      timing          Timing()  (nothing recorded)
      screen, timezone, language, canvas, webgl  None  (missing)
      plugins         ()
    """

    user_agent: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    timing: Timing = field(default_factory=Timing)
    mouse_movements: tuple[PointerSample, ...] = ()
    keystrokes: tuple[KeystrokeSample, ...] = ()
    screen: ScreenResolution | None = None
    timezone: str | None = None
    language: str | None = None
    plugins: tuple[str, ...] = ()
    canvas: str | None = None
    webgl: str | None = None

    @property
    def accept_language(self) -> str:
        return self.headers.get("accept-language", "")

    @classmethod
    def from_mapping(cls, bag: Mapping[str, Any] | None) -> RequestData:
        """Build a RequestData from a raw dict; never raises on bad fields."""
        if not bag:
            return cls()
        if isinstance(bag, RequestData):
            return bag

        raw_headers = _pick(bag, "headers")
        headers: dict[str, str] = {}
        if isinstance(raw_headers, Mapping):
            headers = {str(k).lower(): str(v) for k, v in raw_headers.items() if v is not None}

        raw_timing = _pick(bag, "timing")
        timing = Timing()
        if isinstance(raw_timing, Mapping):
            timing = Timing(
                page_load=_as_float(_pick(raw_timing, "page_load", "pageLoad")),
                time_on_page=_as_float(_pick(raw_timing, "time_on_page", "timeOnPage")),
            )

        return cls(
            user_agent=_as_str(_pick(bag, "user_agent", "userAgent")) or "",
            headers=headers,
            timing=timing,
            mouse_movements=_parse_pointer(_pick(bag, "mouse_movements", "mouseMovements")),
            keystrokes=_parse_keystrokes(_pick(bag, "keystrokes", "keystroke_timing", "keystrokeTiming")),
            screen=_parse_screen(_pick(bag, "screen", "screen_resolution", "screenResolution")),
            timezone=_as_str(_pick(bag, "timezone")),
            language=_as_str(_pick(bag, "language")),
            plugins=_parse_plugins(_pick(bag, "plugins")),
            canvas=_as_str(_pick(bag, "canvas")),
            webgl=_as_str(_pick(bag, "webgl")),
        )


def _parse_pointer(raw: Any) -> tuple[PointerSample, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    out: list[PointerSample] = []
    for item in raw:
        if isinstance(item, PointerSample):
            out.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        x, y, ts = _as_float(item.get("x")), _as_float(item.get("y")), _as_float(item.get("timestamp"))
        if x is None or y is None or ts is None:
            continue
        out.append(PointerSample(x=x, y=y, timestamp=ts))
    return tuple(out)


def _parse_keystrokes(raw: Any) -> tuple[KeystrokeSample, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    out: list[KeystrokeSample] = []
    for item in raw:
        if isinstance(item, KeystrokeSample):
            out.append(item)
        elif isinstance(item, Mapping):
            ts = _as_float(item.get("timestamp"))
            if ts is not None:
                out.append(KeystrokeSample(timestamp=ts, key=str(item.get("key", ""))))
        else:
            ts = _as_float(item)
            if ts is not None:
                out.append(KeystrokeSample(timestamp=ts))
    return tuple(out)


def _parse_screen(raw: Any) -> ScreenResolution | None:
    if isinstance(raw, ScreenResolution):
        return raw
    if not isinstance(raw, Mapping):
        return None
    width = _as_float(raw.get("width"))
    if width is None:
        return None
    height = _as_float(raw.get("height")) or 0
    return ScreenResolution(width=int(width), height=int(height))


def _parse_plugins(raw: Any) -> tuple[str, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(p) for p in raw if p is not None)
