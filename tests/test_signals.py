"""Tests for src.botdetect.signals — pure bot-signal analysers."""

from __future__ import annotations

import pytest

from src.botdetect.signals import (
    SignalScore,
    analyze_behavior,
    analyze_fingerprint,
    analyze_keystroke_timing,
    analyze_mouse_movements,
    analyze_user_agent,
    bot_confidence_level,
    straight_line_ratio,
)
from src.contracts.request import KeystrokeSample, PointerSample, RequestData
from tests.conftest import BROWSER_UA, make_bare_request, make_request


def _points(coords: list[tuple[float, float, float]]) -> tuple[PointerSample, ...]:
    return tuple(PointerSample(x=x, y=y, timestamp=t) for x, y, t in coords)


def _keys(stamps: list[float]) -> tuple[KeystrokeSample, ...]:
    return tuple(KeystrokeSample(timestamp=t) for t in stamps)


class TestSignalScore:
    def test_hit_and_merge(self):
        a = SignalScore()
        a.hit(1.0, "one")
        b = SignalScore()
        b.hit(0.5, "two")
        assert a.merge(b) is a
        assert a.score == 1.5
        assert a.reasons == ["one", "two"]


# ═══════════════════════════════════════════════════════════════════════════
#  User agent
# ═══════════════════════════════════════════════════════════════════════════


class TestUserAgent:
    def test_missing_scores_two_and_stops(self):
        result = analyze_user_agent("")
        assert result.score == 2.0
        assert result.reasons == ["Missing user agent"]

    def test_real_browser_is_clean(self):
        result = analyze_user_agent(BROWSER_UA)
        assert result.score == 0.0
        assert result.reasons == []

    def test_python_bot(self):
        result = analyze_user_agent("python-bot")
        assert result.score == pytest.approx(5.0)
        assert "Bot pattern detected: bot" in result.reasons
        assert "Bot pattern detected: python" in result.reasons
        assert "Missing browser components" in result.reasons
        assert "Suspiciously short user agent" in result.reasons

    def test_curl(self):
        assert analyze_user_agent("curl/8.4.0").score == pytest.approx(3.5)

    def test_pattern_match_is_case_insensitive(self):
        result = analyze_user_agent("Mozilla/5.0 (compatible; Googlebot/2.1) Chrome/120 Safari")
        assert "Bot pattern detected: bot" in result.reasons

    def test_mozilla_without_real_browser(self):
        result = analyze_user_agent("Mozilla/5.0 (compatible; MSIE 10.0; Windows NT 6.1)")
        assert result.reasons == ["Inconsistent browser identification"]
        assert result.score == 0.5

    @pytest.mark.parametrize(
        "score,level",
        [(0.0, "none"), (0.5, "low"), (1.5, "medium"), (2.9, "medium"), (3.0, "high")],
    )
    def test_confidence_levels(self, score, level):
        assert bot_confidence_level(score) == level


# ═══════════════════════════════════════════════════════════════════════════
#  Mouse and keyboard
# ═══════════════════════════════════════════════════════════════════════════


class TestMouse:
    def test_too_few_samples(self):
        result = analyze_mouse_movements(_points([(0, 0, 0), (1, 1, 10)]))
        assert result.reasons == ["Too few mouse movements"]
        assert result.score == 1.0

    def test_straight_constant_line(self):
        path = _points([(i * 10, i * 10, i * 10) for i in range(6)])
        assert straight_line_ratio(path) == 1.0
        result = analyze_mouse_movements(path)
        assert "Unnaturally consistent mouse speed" in result.reasons
        assert "Too many straight-line movements" in result.reasons
        assert result.score == pytest.approx(1.5)

    def test_teleporting_pointer(self):
        path = _points([(0, 0, 0), (5000, 0, 1), (0, 300, 2), (7000, 4000, 3), (10, 9000, 4)])
        result = analyze_mouse_movements(path)
        assert "Unnaturally fast mouse movements" in result.reasons

    def test_shared_timestamps_skip_speed_checks(self):
        path = _points([(0, 0, 5), (10, 40, 5), (50, 45, 5), (60, 90, 5), (120, 100, 5)])
        result = analyze_mouse_movements(path)
        assert result.score == 0.0

    def test_straight_line_ratio_short_input(self):
        assert straight_line_ratio(_points([(0, 0, 0), (1, 1, 1)])) == 0.0


class TestKeystrokes:
    def test_too_few(self):
        assert analyze_keystroke_timing(_keys([0, 100])).reasons == ["Too few keystrokes for analysis"]

    def test_metronome_typing(self):
        result = analyze_keystroke_timing(_keys([0, 30, 60, 90, 120]))
        assert result.reasons == ["Unnaturally consistent keystroke timing", "Unnaturally fast typing"]
        assert result.score == pytest.approx(1.5)

    def test_human_rhythm_is_clean(self):
        assert analyze_keystroke_timing(_keys([0, 120, 310, 400, 610])).score == 0.0


# ═══════════════════════════════════════════════════════════════════════════
#  Behaviour and fingerprint
# ═══════════════════════════════════════════════════════════════════════════


class TestBehaviour:
    def test_human_request(self):
        result = analyze_behavior(make_request())
        assert result.reasons == ["Unnaturally consistent mouse speed"]
        assert result.score == pytest.approx(0.5)

    def test_no_pointer_without_page_load_is_not_penalised(self):
        assert analyze_behavior(make_bare_request()).score == 0.0

    def test_fast_page_and_short_visit(self):
        result = analyze_behavior(make_bare_request(page_load=50, time_on_page=200))
        assert result.reasons == [
            "No mouse movements detected",
            "Suspiciously fast page load",
            "Very short time on page",
        ]
        assert result.score == pytest.approx(2.0)

    def test_zero_timing_treated_as_absent(self):
        assert analyze_behavior(make_bare_request(page_load=0, time_on_page=0)).score == 0.0


class TestFingerprint:
    def test_complete_fingerprint_is_clean(self):
        assert analyze_fingerprint(make_request()).score == 0.0

    def test_everything_missing(self):
        result = analyze_fingerprint(RequestData())
        assert len(result.reasons) == 6
        assert result.score == pytest.approx(3.0)

    def test_small_screen_and_single_plugin(self):
        result = analyze_fingerprint(make_request(screen_width=640, plugins=["PDF Viewer"]))
        assert result.reasons == ["Suspicious screen resolution", "Very few browser plugins"]
