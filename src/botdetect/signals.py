"""Signal analysers — pure functions: RequestData → SignalScore.

Each analyser adds weighted points for every heuristic that matches and
records a human-readable reason per hit.  Nothing here touches state; the
scorer sums the sub-scores and normalises the total.

Sub-scores
──────────
  user agent    — missing, known bot token, no browser token, short,
                  "mozilla" without a real browser
  behaviour     — pointer path, keystroke rhythm, page timing
  fingerprint   — screen, timezone, language, plugins, canvas, WebGL
"""

from __future__ import annotations

import math
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from functools import lru_cache

from src.contracts.request import KeystrokeSample, PointerSample, RequestData
from src.shared.settings import BotSettings


@dataclass(slots=True)
class SignalScore:
    score: float = 0.0
    reasons: list[str] = field(default_factory=list)

    def hit(self, points: float, reason: str) -> None:
        self.score += points
        self.reasons.append(reason)

    def merge(self, other: SignalScore) -> SignalScore:
        self.score += other.score
        self.reasons.extend(other.reasons)
        return self


@lru_cache(maxsize=32)
def _compile(patterns: tuple[str, ...]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _variance(values: Sequence[float]) -> float:
    """Population variance."""
    avg = _mean(values)
    return sum((v - avg) ** 2 for v in values) / len(values)


# ═══════════════════════════════════════════════════════════════════════════
#  User agent
# ═══════════════════════════════════════════════════════════════════════════


def analyze_user_agent(user_agent: str, settings: BotSettings | None = None) -> SignalScore:
    cfg = settings or BotSettings()
    w = cfg.weights
    result = SignalScore()

    if not user_agent:
        result.hit(w.missing_user_agent, "Missing user agent")
        return result

    ua = user_agent.lower()
    for pattern in _compile(cfg.bot_patterns):
        if pattern.search(ua):
            result.hit(w.bot_pattern, f"Bot pattern detected: {pattern.pattern}")

    if not any(token in ua for token in cfg.browser_tokens):
        result.hit(w.missing_browser_token, "Missing browser components")

    if len(ua) < cfg.min_user_agent_length:
        result.hit(w.short_user_agent, "Suspiciously short user agent")

    if "mozilla" in ua and not any(token in ua for token in cfg.real_browser_tokens):
        result.hit(w.inconsistent_browser, "Inconsistent browser identification")

    return result


def bot_confidence_level(score: float) -> str:
    """Bucket a user-agent score into high / medium / low / none."""
    if score >= 3:
        return "high"
    if score >= 1.5:
        return "medium"
    if score >= 0.5:
        return "low"
    return "none"


# ═══════════════════════════════════════════════════════════════════════════
#  Behaviour
# ═══════════════════════════════════════════════════════════════════════════


def straight_line_ratio(movements: Sequence[PointerSample], angle_threshold: float = 0.1) -> float:
    """Share of consecutive point triples whose heading changes by less
    than *angle_threshold* radians.  0.0 for fewer than three points.
    """
    if len(movements) < 3:
        return 0.0

    straight = 0
    for p1, p2, p3 in zip(movements, movements[1:], movements[2:]):
        a1 = math.atan2(p2.y - p1.y, p2.x - p1.x)
        a2 = math.atan2(p3.y - p2.y, p3.x - p2.x)
        diff = abs(a1 - a2)
        if min(diff, 2 * math.pi - diff) < angle_threshold:
            straight += 1
    return straight / (len(movements) - 2)


def analyze_mouse_movements(
    movements: Sequence[PointerSample], settings: BotSettings | None = None
) -> SignalScore:
    cfg = settings or BotSettings()
    w = cfg.weights
    result = SignalScore()

    if len(movements) < cfg.min_mouse_samples:
        result.hit(w.few_mouse_movements, "Too few mouse movements")
        return result

    speeds: list[float] = []
    for prev, curr in zip(movements, movements[1:]):
        dt = curr.timestamp - prev.timestamp
        if dt > 0:
            speeds.append(math.hypot(curr.x - prev.x, curr.y - prev.y) / dt)

    # Samples sharing one timestamp give no speed information.
    if speeds:
        if _mean(speeds) > cfg.max_mouse_speed:
            result.hit(w.fast_mouse, "Unnaturally fast mouse movements")
        if _variance(speeds) < cfg.min_mouse_speed_variance:
            result.hit(w.consistent_mouse_speed, "Unnaturally consistent mouse speed")

    if straight_line_ratio(movements, cfg.straight_line_angle) > cfg.straight_line_ratio:
        result.hit(w.straight_line_movement, "Too many straight-line movements")

    return result


def analyze_keystroke_timing(
    keystrokes: Sequence[KeystrokeSample], settings: BotSettings | None = None
) -> SignalScore:
    cfg = settings or BotSettings()
    w = cfg.weights
    result = SignalScore()

    if len(keystrokes) < cfg.min_keystroke_samples:
        result.hit(w.few_keystrokes, "Too few keystrokes for analysis")
        return result

    intervals = [curr.timestamp - prev.timestamp for prev, curr in zip(keystrokes, keystrokes[1:])]
    if _variance(intervals) < cfg.min_keystroke_variance:
        result.hit(w.consistent_keystrokes, "Unnaturally consistent keystroke timing")
    if _mean(intervals) < cfg.min_keystroke_interval_ms:
        result.hit(w.fast_typing, "Unnaturally fast typing")

    return result


def analyze_behavior(request: RequestData, settings: BotSettings | None = None) -> SignalScore:
    """Pointer path, keystroke rhythm and page timing.

    A request with no pointer data is only penalised when a page load was
    recorded; an absent or zero timing value is treated as not recorded.
    """
    cfg = settings or BotSettings()
    w = cfg.weights
    timing = request.timing
    result = SignalScore()

    if request.mouse_movements:
        result.merge(analyze_mouse_movements(request.mouse_movements, cfg))
    elif timing.page_load:
        result.hit(w.no_mouse_movement, "No mouse movements detected")

    if request.keystrokes:
        result.merge(analyze_keystroke_timing(request.keystrokes, cfg))

    if timing.page_load and timing.page_load < cfg.min_page_load_ms:
        result.hit(w.fast_page_load, "Suspiciously fast page load")
    if timing.time_on_page and timing.time_on_page < cfg.min_time_on_page_ms:
        result.hit(w.short_time_on_page, "Very short time on page")

    return result


# ═══════════════════════════════════════════════════════════════════════════
#  Fingerprint
# ═══════════════════════════════════════════════════════════════════════════


def analyze_fingerprint(request: RequestData, settings: BotSettings | None = None) -> SignalScore:
    cfg = settings or BotSettings()
    w = cfg.weights
    result = SignalScore()

    if request.screen is None or request.screen.width < cfg.min_screen_width:
        result.hit(w.suspicious_screen, "Suspicious screen resolution")
    if not request.timezone:
        result.hit(w.missing_timezone, "Missing timezone information")
    if not request.language:
        result.hit(w.missing_language, "Missing language information")
    if len(request.plugins) < cfg.min_plugins:
        result.hit(w.few_plugins, "Very few browser plugins")
    if not request.canvas:
        result.hit(w.missing_canvas, "Missing canvas fingerprint")
    if not request.webgl:
        result.hit(w.missing_webgl, "Missing WebGL fingerprint")

    return result
