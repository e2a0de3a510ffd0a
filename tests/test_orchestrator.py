"""Tests for src.engine.orchestrator — the end-to-end security check."""

from __future__ import annotations

import pytest

from src.contracts.request import RequestData
from src.engine.orchestrator import SecurityGuard, severity_for
from src.shared.settings import GuardSettings, LimitRule, RateLimitSettings
from tests.conftest import T0, make_bare_request, make_request

IP = "203.0.113.7"


def _guard(clock, **kw) -> SecurityGuard:
    return SecurityGuard.from_settings(GuardSettings(**kw), clock=clock)


def _scripted(user_agent: str) -> RequestData:
    return RequestData.from_mapping({"userAgent": user_agent, "timing": {"pageLoad": 50, "timeOnPage": 200}})


def _types(guard: SecurityGuard) -> list[str]:
    return [e.type for e in guard.monitor.get_events()]


class TestSeverity:
    @pytest.mark.parametrize(
        "risk,expected",
        [(0.0, "low"), (0.3, "low"), (0.31, "medium"), (0.7, "medium"), (0.71, "high"), (1.0, "high")],
    )
    def test_bands(self, risk, expected):
        assert severity_for(risk) == expected


# ═══════════════════════════════════════════════════════════════════════════
#  perform_security_check
# ═══════════════════════════════════════════════════════════════════════════


class TestSecurityCheck:
    def test_human_is_allowed(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", make_request())
        assert decision.allowed
        assert decision.risk_score == 0.0
        assert decision.severity == "low"
        assert decision.reasons == []
        assert decision.actions == []
        assert decision.event_id == f"evt_{T0}_000001"
        event = guard.monitor.get_events()[0]
        assert event.type == "security_check"
        assert event.details["allowed"] is True

    def test_raw_mapping_request(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", {"userAgent": "python-bot"})
        assert decision.event_id is not None
        assert guard.monitor.get_events()[-1].details["user_agent"] == "python-bot"

    def test_bot_is_denied_with_captcha_action(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", _scripted("python-bot"))
        assert not decision.allowed
        assert decision.reasons == ["Bot detected"]
        assert decision.actions == ["require_captcha"]
        assert decision.risk_score == pytest.approx(0.9)
        assert decision.severity == "high"
        assert _types(guard) == ["bot_detection", "security_check"]

    def test_captcha_only_is_allowed(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", _scripted("curl/8.4.0"))
        assert decision.allowed
        assert decision.reasons == ["CAPTCHA required"]
        assert decision.actions == ["require_captcha"]
        assert decision.risk_score == pytest.approx(0.5)
        assert decision.severity == "medium"

    def test_bare_request_at_threshold_needs_captcha(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", make_bare_request(page_load=50, time_on_page=200))
        assert decision.allowed
        assert "require_captcha" in decision.actions

    def test_default_rate_limit(self, clock):
        guard = _guard(clock, rate_limiting=RateLimitSettings(default=LimitRule(60_000, 2, 60_000)))
        for _ in range(2):
            assert guard.perform_security_check(IP, "request", make_request()).allowed
        decision = guard.perform_security_check(IP, "request", make_request())
        assert not decision.allowed
        assert decision.reasons == ["Rate limit exceeded"]
        assert decision.actions == ["block_request"]
        assert decision.risk_score == pytest.approx(0.7)
        assert decision.severity == "medium"
        violation = guard.monitor.get_events(type="rate_limit_violation")[0]
        assert violation.details["limit"] == 2
        assert violation.details["window_ms"] == 60_000

    def test_endpoint_rule(self, clock):
        guard = _guard(clock)
        for _ in range(5):
            guard.perform_security_check(IP, "login", make_request(), endpoint="/api/auth/login")
        decision = guard.perform_security_check(IP, "login", make_request(), endpoint="/api/auth/login")
        assert decision.reasons == ["Rate limit exceeded"]
        # other endpoints are unaffected
        assert guard.perform_security_check(IP, "browse", make_request(), endpoint="/api/products").allowed

    def test_global_limit(self, clock):
        guard = _guard(clock, rate_limiting=RateLimitSettings(global_=LimitRule(60_000, 2, 0)))
        assert guard.perform_security_check("a", "request", make_request()).allowed
        decision = guard.perform_security_check("b", "request", make_request())
        assert not decision.allowed
        assert decision.reasons == ["Global rate limit exceeded"]
        assert decision.risk_score == pytest.approx(0.6)
        violation = guard.monitor.get_events(type="rate_limit_violation")[0]
        assert violation.details["endpoint"] == "global"
        assert violation.details["requests"] == 2

    def test_risk_is_clamped(self, clock):
        guard = _guard(clock, rate_limiting=RateLimitSettings(default=LimitRule(60_000, 0, 60_000)))
        decision = guard.perform_security_check(IP, "request", _scripted("python-bot"))
        assert decision.reasons == ["Rate limit exceeded", "Bot detected"]
        assert decision.actions == ["block_request", "require_captcha"]
        assert decision.risk_score == 1.0

    def test_brute_force_denial(self, clock):
        guard = _guard(clock)
        for _ in range(5):
            guard.record_failed_auth(IP, "alice", "hunter2")
            clock.advance(1000)
        assert guard.monitor.get_events(type="brute_force_attempt") == []

        decision = guard.perform_security_check(IP, "login", make_request(), username="alice")
        assert not decision.allowed
        assert decision.reasons == ["Brute force protection triggered"]
        assert decision.risk_score == pytest.approx(0.8)
        assert decision.severity == "high"
        assert decision.progressive_delay == 16_000

        guard.record_failed_auth(IP, "alice", "hunter3")
        bf = guard.monitor.get_events(type="brute_force_attempt")
        assert len(bf) == 1
        assert bf[0].details["blocked"] is True

    def test_progressive_delay_action(self, clock):
        guard = _guard(clock)
        guard.record_failed_auth(IP, "alice")
        guard.record_failed_auth(IP, "alice")
        decision = guard.perform_security_check(IP, "login", make_request(), username="alice")
        assert decision.allowed
        assert decision.actions == ["apply_delay"]
        assert decision.progressive_delay == 2000

    def test_fail_closed(self, clock, monkeypatch):
        guard = _guard(clock)

        def explode(*args, **kwargs):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(guard.bot_scorer, "analyze_request", explode)
        decision = guard.perform_security_check(IP, "request", make_request())
        assert not decision.allowed
        assert decision.risk_score == 1.0
        assert decision.severity == "high"
        assert decision.reasons == ["Security check error"]
        assert decision.actions == ["block_request"]
        event = guard.monitor.get_events(type="security_check")[0]
        assert event.severity == "high"
        assert event.details["allowed"] is False

    def test_non_finite_screen_is_ignored(self, clock):
        guard = _guard(clock)
        decision = guard.perform_security_check(IP, "request", {"screenResolution": {"width": "inf", "height": "nan"}})
        assert decision.event_id is not None
        assert decision.reasons != ["Security check error"]

    def test_request_conversion_failure_fails_closed(self, clock, monkeypatch):
        guard = _guard(clock)

        def explode(*args, **kwargs):
            raise OverflowError("bad request bag")

        monkeypatch.setattr(RequestData, "from_mapping", explode)
        decision = guard.perform_security_check(IP, "request", {"userAgent": "x"})
        assert not decision.allowed
        assert decision.risk_score == 1.0
        assert decision.reasons == ["Security check error"]
        event = guard.monitor.get_events(type="security_check")[0]
        assert event.details["user_agent"] is None

    def test_empty_identifier_raises_without_event(self, clock):
        guard = _guard(clock)
        with pytest.raises(ValueError):
            guard.perform_security_check("", "request", make_request())
        assert guard.monitor.get_events() == []


# ═══════════════════════════════════════════════════════════════════════════
#  Authentication and pass-throughs
# ═══════════════════════════════════════════════════════════════════════════


class TestAuthFlow:
    def test_failed_auth_logs_attempt(self, clock):
        guard = _guard(clock)
        record = guard.record_failed_auth(IP, "alice", "hunter2")
        assert record.attempts == [T0]
        event = guard.monitor.get_events()[0]
        assert event.type == "authentication_attempt"
        assert event.details["success"] is False

    def test_pattern_block_logs_brute_force(self, clock):
        guard = _guard(clock)
        for i in range(1, 7):
            guard.record_failed_auth(IP, "alice", f"password{i}")
            clock.advance(20_000)
        assert guard.is_blocked(IP)
        assert len(guard.monitor.get_events(type="brute_force_attempt")) == 1

    def test_success_resets(self, clock):
        guard = _guard(clock)
        for _ in range(3):
            guard.record_failed_auth(IP, "alice")
        guard.record_successful_auth(IP, "alice")
        assert guard.check_auth_attempt(IP, "alice").remaining == 5
        assert guard.monitor.get_events()[-1].details["success"] is True

    def test_auth_and_form_rate_limits(self, clock):
        guard = _guard(clock)
        assert guard.check_auth_rate_limit(IP, "alice").remaining == 4
        assert guard.check_form_rate_limit(IP, "contact").remaining == 4

    def test_captcha_round_trip(self, clock):
        guard = _guard(clock, seed=42)
        public = guard.generate_captcha(IP)
        assert "answer" not in public
        answer = guard.bot_scorer.captcha.get(IP).answer
        result = guard.verify_captcha(IP, str(answer))
        assert result.valid
        assert result.reason == "correct answer"

    def test_seeded_guards_issue_same_questions(self, clock):
        one = _guard(clock, seed=42).generate_captcha(IP)
        two = _guard(clock, seed=42).generate_captcha(IP)
        assert one["question"] == two["question"]
        assert one["id"] == two["id"]

    def test_is_blocked_checks_both_detectors(self, clock):
        guard = _guard(clock)
        assert not guard.is_blocked(IP)
        guard.rate_limiter.block(IP, 1000)
        assert guard.is_blocked(IP)
        guard.rate_limiter.unblock(IP)
        guard.brute_force.block_account(IP, 1000)
        assert guard.is_blocked(IP)


class TestStats:
    def test_stats_shape(self, clock):
        guard = _guard(clock)
        guard.perform_security_check(IP, "request", make_request())
        guard.perform_security_check("b", "request", _scripted("python-bot"))
        guard.record_failed_auth(IP, "alice")
        stats = guard.get_stats()
        assert set(stats) == {"summary", "rate_limiting", "brute_force", "bot_detection", "monitoring"}
        assert stats["summary"]["total_requests"] == 2
        assert stats["summary"]["bot_detections"] == 1
        assert stats["summary"]["brute_force_attempts"] == 1

    def test_dashboard_and_report(self, clock):
        guard = _guard(clock)
        guard.perform_security_check(IP, "request", _scripted("python-bot"))
        dashboard = guard.get_dashboard_data()
        assert dashboard["statistics"]["total"] == 2
        report = guard.generate_security_report()
        assert report["summary"]["total_events"] == 2

    def test_sweep(self, clock):
        guard = _guard(clock)
        guard.perform_security_check(IP, "request", make_request())
        clock.advance(2 * 24 * 3_600_000)
        assert guard.sweep() >= 2
