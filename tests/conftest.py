"""Shared fixtures for the abuse-mitigation engine tests."""

from __future__ import annotations

from typing import Any

import pytest

from src.contracts.event import SecurityEvent
from src.contracts.request import RequestData
from src.shared.clock import ManualClock

# 2026-01-05T10:00:00Z
T0 = 1_767_607_200_000

BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Curved path with irregular spacing; no three consecutive points collinear.
HUMAN_PATH: list[dict[str, float]] = [
    {"x": 10, "y": 10, "timestamp": 0},
    {"x": 40, "y": 25, "timestamp": 16},
    {"x": 55, "y": 70, "timestamp": 40},
    {"x": 120, "y": 80, "timestamp": 90},
    {"x": 130, "y": 140, "timestamp": 160},
    {"x": 210, "y": 150, "timestamp": 220},
]

HUMAN_KEYSTROKES: list[dict[str, Any]] = [
    {"timestamp": 0, "key": "a"},
    {"timestamp": 120, "key": "l"},
    {"timestamp": 310, "key": "i"},
    {"timestamp": 400, "key": "c"},
    {"timestamp": 610, "key": "e"},
]


# ── Helper: request bags ─────────────────────────────────────────────────


def make_request(
    *,
    user_agent: str = BROWSER_UA,
    accept_language: str | None = "en-US,en;q=0.9",
    page_load: float | None = 850,
    time_on_page: float | None = 12_000,
    mouse_movements: list[dict[str, float]] | None = None,
    keystrokes: list[dict[str, Any]] | None = None,
    screen_width: int | None = 1920,
    timezone: str | None = "Europe/Kyiv",
    language: str | None = "en-US",
    plugins: list[str] | None = None,
    canvas: str | None = "data:image/png;base64,iVBORw0KGgo",
    webgl: str | None = "ANGLE (Intel, Intel(R) UHD Graphics 620)",
) -> RequestData:
    """A realistic browser request unless told otherwise."""
    bag: dict[str, Any] = {
        "userAgent": user_agent,
        "headers": {"Accept-Language": accept_language} if accept_language else {},
        "timing": {"pageLoad": page_load, "timeOnPage": time_on_page},
        "mouseMovements": HUMAN_PATH if mouse_movements is None else mouse_movements,
        "keystrokeTiming": HUMAN_KEYSTROKES if keystrokes is None else keystrokes,
        "screenResolution": {"width": screen_width, "height": 1080} if screen_width else None,
        "timezone": timezone,
        "language": language,
        "plugins": ["PDF Viewer", "Chrome PDF Viewer", "Native Client"] if plugins is None else plugins,
        "canvas": canvas,
        "webgl": webgl,
    }
    return RequestData.from_mapping(bag)


def make_bare_request(*, page_load: float | None = None, time_on_page: float | None = None) -> RequestData:
    """Empty user agent, no pointer/keyboard data, no fingerprint fields."""
    return RequestData.from_mapping({"timing": {"pageLoad": page_load, "timeOnPage": time_on_page}})


# ── Helper: events ───────────────────────────────────────────────────────


def make_event(
    *,
    id: str = "evt_1",
    timestamp: int = T0,
    type: str = "security_check",
    severity: str = "low",
    source: str = "security_guard",
    identifier: str = "198.51.100.20",
    risk_score: float = 0.0,
    details: dict[str, Any] | None = None,
) -> SecurityEvent:
    return SecurityEvent(
        id=id,
        timestamp=timestamp,
        type=type,
        severity=severity,
        source=source,
        identifier=identifier,
        details=details or {},
        risk_score=risk_score,
    )


# ── Fixtures ─────────────────────────────────────────────────────────────


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def human_request() -> RequestData:
    return make_request()


@pytest.fixture
def requests_jsonl(tmp_path):
    """A small replay log: a human, a credential-stuffing script, a captcha."""
    lines = [
        '{"timestamp": "2026-01-05T10:00:00Z", "identifier": "198.51.100.20", "action": "request", '
        '"endpoint": "/api/products", "request": {"userAgent": "' + BROWSER_UA + '", '
        '"timezone": "Europe/Kyiv", "language": "en-US"}}',
        '{"timestamp": "2026-01-05T10:00:05Z", "identifier": "203.0.113.7", "action": "auth_failure", '
        '"username": "admin", "password": "password1"}',
        '{"timestamp": "2026-01-05T10:00:06Z", "identifier": "203.0.113.7", "action": "auth_failure", '
        '"username": "admin", "password": "password2"}',
        "not json at all",
        '{"timestamp": "2026-01-05T10:00:07Z", "action": "request"}',
        '{"timestamp": "2026-01-05T10:00:08Z", "identifier": "203.0.113.7", "action": "request", '
        '"request_type": "login", "endpoint": "/api/auth/login", "username": "admin", '
        '"request": {"userAgent": "curl/8.4.0"}}',
        '{"timestamp": 1767607260000, "identifier": "192.0.2.44", "action": "captcha"}',
        '{"timestamp": 1767607270000, "identifier": "192.0.2.44", "action": "captcha", "answer": "-1"}',
        "",
    ]
    path = tmp_path / "requests.jsonl"
    path.write_text("\n".join(lines), encoding="utf-8")
    return path
