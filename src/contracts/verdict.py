"""Verdict records returned by the detectors and the orchestrator.

A denial is a value, not an exception: callers branch on ``allowed`` /
``valid`` and read ``reason`` for the why.  All durations are in ms.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(slots=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int = 0
    reset_time: int | None = None  # epoch ms when the oldest counted hit leaves the window
    retry_after: int = 0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class GlobalRateLimitResult:
    allowed: bool
    total_requests: int
    remaining: int = 0
    retry_after: int = 0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AuthAttemptResult:
    allowed: bool
    attempts: int
    remaining: int = 0
    progressive_delay: int = 0  # advisory, never enforced by the guard
    retry_after: int = 0
    reset_time: int | None = None
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BotAnalysis:
    is_bot: bool = False
    suspicion_score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    confidence: float = 0.0
    requires_captcha: bool = False
    should_block: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CaptchaVerification:
    valid: bool
    reason: str
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SecurityDecision:
    """Aggregated verdict of one ``perform_security_check`` call."""

    allowed: bool = True
    risk_score: float = 0.0
    severity: str = "low"
    reasons: list[str] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)
    progressive_delay: int = 0
    event_id: str | None = None

    def add(self, reason: str, risk: float, action: str, *, deny: bool) -> None:
        self.reasons.append(reason)
        self.risk_score += risk
        if action not in self.actions:
            self.actions.append(action)
        if deny:
            self.allowed = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
