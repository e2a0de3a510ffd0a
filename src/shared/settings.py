"""Typed configuration for every detector, with YAML overlay.

The dataclass defaults ARE the reference configuration; ``config/guard.yaml``
only restates them so operators have something to edit.  ``load_settings``
reads a YAML file and overlays it section by section:

    rate_limiting:   default / auth / global / endpoints / forms
    brute_force:     BruteForceSettings fields
    bot_detection:   BotSettings fields, plus a nested ``weights`` mapping
    monitoring:      MonitorSettings fields
    seed:            optional int for the CAPTCHA RNG

Unknown keys are logged and ignored; invalid values raise ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from src.shared.config_loader import load_yaml

log = logging.getLogger(__name__)

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


# ═══════════════════════════════════════════════════════════════════════════
#  Rate limiting
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class LimitRule:
    """``max_requests`` hits per ``window_ms``; offenders blocked for ``block_duration_ms``."""

    window_ms: int
    max_requests: int
    block_duration_ms: int

    def __post_init__(self) -> None:
        if self.window_ms <= 0:
            raise ValueError(f"window_ms must be > 0, got {self.window_ms}")
        if self.max_requests < 0:
            raise ValueError(f"max_requests must be >= 0, got {self.max_requests}")
        if self.block_duration_ms < 0:
            raise ValueError(f"block_duration_ms must be >= 0, got {self.block_duration_ms}")

    def override(self, **changes: int | None) -> LimitRule:
        """Return a copy with every non-None keyword applied."""
        updates = {k: v for k, v in changes.items() if v is not None}
        return dataclasses.replace(self, **updates) if updates else self


def _default_endpoints() -> dict[str, LimitRule]:
    return {
        "/api/auth/login": LimitRule(15 * MINUTE_MS, 5, HOUR_MS),
        "/api/auth/register": LimitRule(HOUR_MS, 3, HOUR_MS),
        "/api/auth/reset-password": LimitRule(HOUR_MS, 3, HOUR_MS),
        "/api/products": LimitRule(MINUTE_MS, 60, 10 * MINUTE_MS),
        "/api/orders": LimitRule(MINUTE_MS, 20, 30 * MINUTE_MS),
        "/api/cart": LimitRule(MINUTE_MS, 100, 5 * MINUTE_MS),
    }


def _default_forms() -> dict[str, LimitRule]:
    return {
        "login": LimitRule(5 * MINUTE_MS, 3, 30 * MINUTE_MS),
        "register": LimitRule(HOUR_MS, 2, HOUR_MS),
        "contact": LimitRule(HOUR_MS, 5, HOUR_MS),
        "checkout": LimitRule(MINUTE_MS, 3, 30 * MINUTE_MS),
    }


@dataclass(frozen=True, slots=True)
class RateLimitSettings:
    default: LimitRule = LimitRule(15 * MINUTE_MS, 100, HOUR_MS)
    auth: LimitRule = LimitRule(15 * MINUTE_MS, 5, HOUR_MS)
    global_: LimitRule = LimitRule(MINUTE_MS, 1000, 5 * MINUTE_MS)
    endpoints: dict[str, LimitRule] = field(default_factory=_default_endpoints)
    forms: dict[str, LimitRule] = field(default_factory=_default_forms)

    def endpoint_rule(self, endpoint: str) -> LimitRule:
        return self.endpoints.get(endpoint, self.default)

    def form_rule(self, form_type: str) -> LimitRule:
        return self.forms.get(form_type, self.default)


# ═══════════════════════════════════════════════════════════════════════════
#  Brute force
# ═══════════════════════════════════════════════════════════════════════════

COMMON_PASSWORDS: tuple[str, ...] = ("password", "123456", "admin", "root", "test")


@dataclass(frozen=True, slots=True)
class BruteForceSettings:
    max_attempts: int = 5
    window_ms: int = 15 * MINUTE_MS
    block_duration_ms: int = HOUR_MS
    progressive_delay: bool = True
    max_delay_ms: int = 30 * SECOND_MS
    base_delay_ms: int = SECOND_MS
    max_delay_exponent: int = 5
    rapid_fire_threshold: int = 10
    rapid_fire_window_ms: int = MINUTE_MS
    rapid_fire_block_multiplier: int = 2
    pattern_repeat_threshold: int = 3
    max_distinct_usernames: int = 5
    sequential_run_length: int = 3
    password_history: int = 20
    username_history: int = 100
    common_passwords: tuple[str, ...] = COMMON_PASSWORDS

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.window_ms <= 0 or self.rapid_fire_window_ms <= 0:
            raise ValueError("brute-force windows must be > 0")
        if self.password_history < 1:
            raise ValueError("password_history must be >= 1")


# ═══════════════════════════════════════════════════════════════════════════
#  Bot detection
# ═══════════════════════════════════════════════════════════════════════════

BOT_USER_AGENT_PATTERNS: tuple[str, ...] = (
    r"bot",
    r"crawler",
    r"spider",
    r"scraper",
    r"curl",
    r"wget",
    r"python",
    r"java",
    r"php",
    r"headless",
    r"phantom",
    r"selenium",
    r"webdriver",
    r"puppeteer",
    r"playwright",
)

BROWSER_TOKENS: tuple[str, ...] = ("mozilla", "webkit", "chrome", "firefox", "safari", "edge")
REAL_BROWSER_TOKENS: tuple[str, ...] = ("firefox", "chrome", "safari")


@dataclass(frozen=True, slots=True)
class BotWeights:
    """Points added per heuristic hit before normalisation."""

    # user agent
    missing_user_agent: float = 2.0
    bot_pattern: float = 1.5
    missing_browser_token: float = 1.0
    short_user_agent: float = 1.0
    inconsistent_browser: float = 0.5
    # behaviour
    no_mouse_movement: float = 1.0
    few_mouse_movements: float = 1.0
    fast_mouse: float = 0.5
    consistent_mouse_speed: float = 0.5
    straight_line_movement: float = 1.0
    few_keystrokes: float = 0.5
    consistent_keystrokes: float = 1.0
    fast_typing: float = 0.5
    fast_page_load: float = 0.5
    short_time_on_page: float = 0.5
    # fingerprint
    suspicious_screen: float = 0.5
    missing_timezone: float = 0.5
    missing_language: float = 0.5
    few_plugins: float = 0.5
    missing_canvas: float = 0.5
    missing_webgl: float = 0.5
    # request pattern
    rapid_requests: float = 1.0
    identical_requests: float = 0.5


@dataclass(frozen=True, slots=True)
class BotSettings:
    enable_behavioral_analysis: bool = True
    enable_fingerprinting: bool = True
    suspicious_threshold: float = 0.7
    auto_block_threshold: float = 0.9
    score_divisor: float = 10.0
    confidence_per_reason: float = 0.2
    history_size: int = 100
    suspicious_record_score: float = 0.5
    bot_stats_score: float = 0.7
    stats_window_ms: int = DAY_MS
    # user agent
    bot_patterns: tuple[str, ...] = BOT_USER_AGENT_PATTERNS
    browser_tokens: tuple[str, ...] = BROWSER_TOKENS
    real_browser_tokens: tuple[str, ...] = REAL_BROWSER_TOKENS
    min_user_agent_length: int = 20
    # behaviour
    min_mouse_samples: int = 5
    max_mouse_speed: float = 1000.0
    min_mouse_speed_variance: float = 10.0
    straight_line_angle: float = 0.1  # radians
    straight_line_ratio: float = 0.8
    min_keystroke_samples: int = 3
    min_keystroke_variance: float = 10.0
    min_keystroke_interval_ms: float = 50.0
    min_page_load_ms: float = 100.0
    min_time_on_page_ms: float = 1000.0
    # fingerprint
    min_screen_width: int = 800
    min_plugins: int = 2
    # request pattern
    pattern_lookback: int = 10
    rapid_request_count: int = 5
    rapid_request_span_ms: int = 5 * SECOND_MS
    identical_request_limit: int = 3
    # captcha
    captcha_max_attempts: int = 3
    captcha_ttl_ms: int = 5 * MINUTE_MS
    weights: BotWeights = field(default_factory=BotWeights)

    def __post_init__(self) -> None:
        for name in ("suspicious_threshold", "auto_block_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.score_divisor <= 0:
            raise ValueError("score_divisor must be > 0")
        if self.history_size < 1:
            raise ValueError("history_size must be >= 1")


# ═══════════════════════════════════════════════════════════════════════════
#  Monitoring
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class MonitorSettings:
    enable_alerting: bool = True
    retention_ms: int = 7 * DAY_MS
    high_risk_score: float = 0.8
    rapid_requests: int = 100
    rapid_requests_window_ms: int = 5 * MINUTE_MS
    suspicious_ips: int = 10
    suspicious_ips_window_ms: int = HOUR_MS
    suspicious_risk_score: float = 0.5
    report_event_limit: int = 100
    bucket_event_limit: int = 10
    top_limit: int = 10

    def __post_init__(self) -> None:
        if self.retention_ms <= 0:
            raise ValueError("retention_ms must be > 0")


@dataclass(frozen=True, slots=True)
class GuardSettings:
    rate_limiting: RateLimitSettings = field(default_factory=RateLimitSettings)
    brute_force: BruteForceSettings = field(default_factory=BruteForceSettings)
    bot_detection: BotSettings = field(default_factory=BotSettings)
    monitoring: MonitorSettings = field(default_factory=MonitorSettings)
    seed: int | None = None


# ═══════════════════════════════════════════════════════════════════════════
#  Loading
# ═══════════════════════════════════════════════════════════════════════════


def _overlay(cls: type, data: dict[str, Any] | None, section: str, base: Any = None) -> Any:
    """Build *cls* from *base* (or defaults) with the known keys of *data*."""
    base = base if base is not None else cls()
    if not data:
        return base
    if not isinstance(data, dict):
        raise ValueError(f"Section '{section}' must be a mapping")
    known = {f.name for f in dataclasses.fields(cls)}
    updates: dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            log.warning("Unknown config key %s.%s ignored", section, key)
            continue
        current = getattr(base, key)
        if isinstance(current, tuple) and isinstance(value, list):
            value = tuple(value)
        updates[key] = value
    return dataclasses.replace(base, **updates)


def _rule(data: Any, where: str, base: LimitRule | None = None) -> LimitRule:
    if not isinstance(data, dict):
        raise ValueError(f"Rate-limit rule '{where}' must be a mapping")
    if base is None:
        missing = {"window_ms", "max_requests", "block_duration_ms"} - data.keys()
        if missing:
            raise ValueError(f"Rate-limit rule '{where}' missing {', '.join(sorted(missing))}")
        return LimitRule(int(data["window_ms"]), int(data["max_requests"]), int(data["block_duration_ms"]))
    return base.override(
        window_ms=data.get("window_ms"),
        max_requests=data.get("max_requests"),
        block_duration_ms=data.get("block_duration_ms"),
    )


def _rate_limiting(data: dict[str, Any] | None) -> RateLimitSettings:
    base = RateLimitSettings()
    if not data:
        return base
    updates: dict[str, Any] = {}
    for name, attr in (("default", "default"), ("auth", "auth"), ("global", "global_")):
        if name in data:
            updates[attr] = _rule(data[name], f"rate_limiting.{name}", getattr(base, attr))
    for name in ("endpoints", "forms"):
        if name in data:
            merged = dict(getattr(base, name))
            for key, raw in (data[name] or {}).items():
                merged[key] = _rule(raw, f"rate_limiting.{name}.{key}", merged.get(key))
            updates[name] = merged
    for key in data.keys() - {"default", "auth", "global", "endpoints", "forms"}:
        log.warning("Unknown config key rate_limiting.%s ignored", key)
    return dataclasses.replace(base, **updates)


def settings_from_dict(data: dict[str, Any] | None) -> GuardSettings:
    """Build GuardSettings from an already-parsed config mapping."""
    data = data or {}
    bot_raw = dict(data.get("bot_detection") or {})
    weights = _overlay(BotWeights, bot_raw.pop("weights", None), "bot_detection.weights")
    bot = _overlay(BotSettings, bot_raw, "bot_detection", BotSettings(weights=weights))

    for key in data.keys() - {"rate_limiting", "brute_force", "bot_detection", "monitoring", "seed"}:
        log.warning("Unknown config section %s ignored", key)

    seed = data.get("seed")
    return GuardSettings(
        rate_limiting=_rate_limiting(data.get("rate_limiting")),
        brute_force=_overlay(BruteForceSettings, data.get("brute_force"), "brute_force"),
        bot_detection=bot,
        monitoring=_overlay(MonitorSettings, data.get("monitoring"), "monitoring"),
        seed=int(seed) if seed is not None else None,
    )


def load_settings(path: str | Path | None = None) -> GuardSettings:
    """Load settings from a YAML file; ``None`` returns the defaults."""
    if path is None:
        return GuardSettings()
    settings = settings_from_dict(load_yaml(path))
    log.info(
        "Loaded settings from %s (%d endpoint rules, %d form rules)",
        path,
        len(settings.rate_limiting.endpoints),
        len(settings.rate_limiting.forms),
    )
    return settings
