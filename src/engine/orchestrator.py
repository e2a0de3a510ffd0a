"""SecurityGuard — composition root: one request in, one decision out.

Detector order is fixed::

    rate limiter (endpoint rule, else default)   deny  +0.7  block_request
    brute-force guard                             deny  +0.8  block_request
                                                  delay  +0   apply_delay
    bot scorer        is_bot                      deny  +0.9  require_captcha
                      requires_captcha                  +0.5  require_captcha
    global rate limit                             deny  +0.6  block_request

Risk is clamped to 1.0; severity is high above 0.7, medium above 0.3,
low otherwise.  Every call is logged to the monitor as ``security_check``.
Any exception inside the chain fails closed: ``allowed=False``,
``risk_score=1.0``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from src.botdetect.scorer import BotScorer
from src.contracts.enums import Action, EventType, Severity
from src.contracts.request import RequestData
from src.contracts.verdict import (
    AuthAttemptResult,
    CaptchaVerification,
    RateLimitResult,
    SecurityDecision,
)
from src.limiter.brute_force import BruteForceGuard, FailedAttemptRecord, credential_key
from src.limiter.rate_limiter import RateLimiter
from src.monitor.monitor import SecurityMonitor
from src.shared.clock import Clock, now_ms
from src.shared.seed import init_seed
from src.shared.settings import DAY_MS, GuardSettings

log = logging.getLogger(__name__)

RISK_RATE_LIMIT = 0.7
RISK_BRUTE_FORCE = 0.8
RISK_BOT = 0.9
RISK_CAPTCHA = 0.5
RISK_GLOBAL = 0.6

REASON_RATE_LIMIT = "Rate limit exceeded"
REASON_BRUTE_FORCE = "Brute force protection triggered"
REASON_BOT = "Bot detected"
REASON_CAPTCHA = "CAPTCHA required"
REASON_GLOBAL = "Global rate limit exceeded"
REASON_ERROR = "Security check error"


def severity_for(risk: float) -> str:
    if risk > 0.7:
        return Severity.HIGH.value
    if risk > 0.3:
        return Severity.MEDIUM.value
    return Severity.LOW.value


class SecurityGuard:
    """Runs the detectors in order and reports every decision to the monitor."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        brute_force: BruteForceGuard,
        bot_scorer: BotScorer,
        monitor: SecurityMonitor,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.brute_force = brute_force
        self.bot_scorer = bot_scorer
        self.monitor = monitor

    @classmethod
    def from_settings(cls, settings: GuardSettings | None = None, clock: Clock | None = None) -> SecurityGuard:
        """Build every detector with its own store, sharing one clock."""
        settings = settings or GuardSettings()
        clock = clock or now_ms
        guard = cls(
            rate_limiter=RateLimiter(settings.rate_limiting, clock=clock),
            brute_force=BruteForceGuard(settings.brute_force, clock=clock),
            bot_scorer=BotScorer(settings.bot_detection, clock=clock, rng=init_seed(settings.seed)),
            monitor=SecurityMonitor(settings.monitoring, clock=clock),
        )
        log.info(
            "SecurityGuard ready (%d endpoint rules, bot thresholds %.2f/%.2f)",
            len(settings.rate_limiting.endpoints),
            settings.bot_detection.suspicious_threshold,
            settings.bot_detection.auto_block_threshold,
        )
        return guard

    # ═══════════════════════════════════════════════════════════════════════
    #  Comprehensive check
    # ═══════════════════════════════════════════════════════════════════════

    def perform_security_check(
        self,
        identifier: str,
        request_type: str = "request",
        request: RequestData | Mapping[str, Any] | None = None,
        *,
        endpoint: str | None = None,
        username: str | None = None,
    ) -> SecurityDecision:
        """Run every detector for one request and aggregate their verdicts.

        Parameters
        ──────────
        identifier
            Requester key; must be non-empty.
        request_type
            Free-form label recorded with the event (``request``, ``login`` …).
        request
            Raw request bag or ``RequestData`` for the bot scorer.
        endpoint
            Selects the endpoint rule; the default rule applies when None.
        username
            Narrows the brute-force check to ``identifier:username``.
        """
        if not identifier:
            raise ValueError("identifier must be a non-empty string")

        req: RequestData | None = None
        try:
            req = request if isinstance(request, RequestData) else RequestData.from_mapping(request)
            decision = self._run_checks(identifier, req, endpoint, username)
        except Exception:
            log.exception("Security check failed for %s; failing closed", identifier)
            decision = SecurityDecision(
                allowed=False,
                risk_score=1.0,
                severity=Severity.HIGH.value,
                reasons=[REASON_ERROR],
                actions=[Action.BLOCK_REQUEST.value],
            )

        decision.event_id = self.monitor.log_security_event(
            type=EventType.SECURITY_CHECK,
            severity=decision.severity,
            source="security_guard",
            identifier=identifier,
            details={
                "request_type": request_type,
                "endpoint": endpoint,
                "username": username,
                "user_agent": req.user_agent if req is not None else None,
                "allowed": decision.allowed,
                "reasons": list(decision.reasons),
                "actions": list(decision.actions),
                "progressive_delay": decision.progressive_delay,
            },
            risk_score=decision.risk_score,
        )
        return decision

    def _run_checks(
        self,
        identifier: str,
        req: RequestData,
        endpoint: str | None,
        username: str | None,
    ) -> SecurityDecision:
        decision = SecurityDecision()

        # 1. per-identifier quota
        if endpoint:
            rate: RateLimitResult = self.rate_limiter.check_endpoint_rate_limit(identifier, endpoint)
        else:
            rate = self.rate_limiter.check_rate_limit(identifier)
        if not rate.allowed:
            decision.add(REASON_RATE_LIMIT, RISK_RATE_LIMIT, Action.BLOCK_REQUEST.value, deny=True)
            rule = (
                self.rate_limiter.settings.endpoint_rule(endpoint)
                if endpoint
                else self.rate_limiter.settings.default
            )
            self.monitor.log_rate_limit_violation(
                identifier,
                endpoint=endpoint,
                limit=rate.limit,
                window_ms=rule.window_ms,
                blocked=True,
            )

        # 2. brute force
        auth: AuthAttemptResult = self.brute_force.check_auth_attempt(identifier, username)
        decision.progressive_delay = auth.progressive_delay
        if not auth.allowed:
            decision.add(REASON_BRUTE_FORCE, RISK_BRUTE_FORCE, Action.BLOCK_REQUEST.value, deny=True)
        elif auth.progressive_delay > 0 and Action.APPLY_DELAY.value not in decision.actions:
            decision.actions.append(Action.APPLY_DELAY.value)

        # 3. bot scoring
        bot = self.bot_scorer.analyze_request(identifier, req)
        if bot.is_bot:
            decision.add(REASON_BOT, RISK_BOT, Action.REQUIRE_CAPTCHA.value, deny=True)
        elif bot.requires_captcha:
            decision.add(REASON_CAPTCHA, RISK_CAPTCHA, Action.REQUIRE_CAPTCHA.value, deny=False)
        if bot.is_bot or bot.requires_captcha:
            self.monitor.log_bot_detection(
                identifier,
                suspicion_score=bot.suspicion_score,
                confidence=bot.confidence,
                reasons=bot.reasons,
                user_agent=req.user_agent,
                blocked=bot.should_block,
            )

        # 4. global quota
        glob = self.rate_limiter.check_global_rate_limit()
        if not glob.allowed:
            decision.add(REASON_GLOBAL, RISK_GLOBAL, Action.BLOCK_REQUEST.value, deny=True)
            self.monitor.log_rate_limit_violation(
                identifier,
                endpoint="global",
                requests=glob.total_requests,
                limit=self.rate_limiter.settings.global_.max_requests,
                window_ms=self.rate_limiter.settings.global_.window_ms,
                blocked=False,
            )

        decision.risk_score = min(1.0, decision.risk_score)
        decision.severity = severity_for(decision.risk_score)
        if not decision.allowed:
            log.info("Denied %s: %s (risk %.2f)", identifier, "; ".join(decision.reasons), decision.risk_score)
        return decision

    # ═══════════════════════════════════════════════════════════════════════
    #  Authentication
    # ═══════════════════════════════════════════════════════════════════════

    def check_auth_attempt(self, identifier: str, username: str | None = None) -> AuthAttemptResult:
        return self.brute_force.check_auth_attempt(identifier, username)

    def check_auth_rate_limit(self, identifier: str, username: str | None = None) -> RateLimitResult:
        return self.rate_limiter.check_auth_rate_limit(identifier, username)

    def record_failed_auth(
        self,
        identifier: str,
        username: str | None = None,
        password: str | None = None,
        reason: str = "invalid_credentials",
        endpoint: str = "login",
    ) -> FailedAttemptRecord:
        """Record a failed login; a brute-force event is logged once the key is blocked."""
        record = self.brute_force.record_failed_attempt(
            identifier, username=username, password=password, reason=reason, endpoint=endpoint
        )
        self.monitor.log_auth_attempt(identifier, success=False, username=username, endpoint=endpoint)

        key = credential_key(identifier, username)
        if self.brute_force.is_blocked(key) or self.brute_force.is_blocked(identifier):
            self.monitor.log_brute_force_attempt(
                identifier,
                username=username,
                attempts=len(record.attempts),
                window_ms=self.brute_force.settings.window_ms,
                endpoint=endpoint,
                blocked=True,
            )
        return record

    def record_successful_auth(self, identifier: str, username: str | None = None, endpoint: str = "login") -> None:
        self.brute_force.record_successful_attempt(identifier, username)
        self.monitor.log_auth_attempt(identifier, success=True, username=username, endpoint=endpoint)

    # ═══════════════════════════════════════════════════════════════════════
    #  Pass-throughs
    # ═══════════════════════════════════════════════════════════════════════

    def check_form_rate_limit(self, identifier: str, form_type: str) -> RateLimitResult:
        return self.rate_limiter.check_form_rate_limit(identifier, form_type)

    def generate_captcha(self, identifier: str) -> dict[str, Any]:
        """Issue a challenge and return its client-safe view."""
        return self.bot_scorer.generate_captcha(identifier).public()

    def verify_captcha(self, identifier: str, answer: Any) -> CaptchaVerification:
        return self.bot_scorer.verify_captcha(identifier, answer)

    def is_blocked(self, identifier: str) -> bool:
        return self.rate_limiter.is_blocked(identifier) or self.brute_force.is_blocked(identifier)

    def get_stats(self) -> dict[str, Any]:
        limiter = self.rate_limiter.get_stats()
        brute = self.brute_force.get_stats()
        bots = self.bot_scorer.get_stats()
        monitor = self.monitor.get_metrics()
        return {
            "summary": {
                "total_requests": limiter["total_requests"],
                "blocked_requests": limiter["blocked_keys"],
                "suspicious_activity": monitor["suspicious_requests"],
                "bot_detections": bots["bot_detections"],
                "brute_force_attempts": brute["total_failed_attempts"],
            },
            "rate_limiting": limiter,
            "brute_force": brute,
            "bot_detection": bots,
            "monitoring": monitor,
        }

    def get_dashboard_data(self, time_range_ms: int = DAY_MS, group_by: str = "hour") -> dict[str, Any]:
        return self.monitor.get_dashboard_data(time_range_ms, group_by)

    def generate_security_report(self, time_range_ms: int = DAY_MS, include_recommendations: bool = True) -> dict[str, Any]:
        return self.monitor.generate_security_report(time_range_ms, include_recommendations)

    def sweep(self) -> int:
        """Best-effort memory hygiene across every detector."""
        return self.rate_limiter.sweep() + self.brute_force.sweep() + self.bot_scorer.sweep()
