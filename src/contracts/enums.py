"""Canonical enumerations shared by detectors and the monitor."""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class EventType(str, Enum):
    AUTHENTICATION_ATTEMPT = "authentication_attempt"
    BRUTE_FORCE_ATTEMPT = "brute_force_attempt"
    BOT_DETECTION = "bot_detection"
    RATE_LIMIT_VIOLATION = "rate_limit_violation"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    SECURITY_CHECK = "security_check"
    UNKNOWN = "unknown"


class AlertType(str, Enum):
    HIGH_RISK_SCORE = "high_risk_score"
    RAPID_REQUESTS = "rapid_requests"
    MULTIPLE_SUSPICIOUS_IPS = "multiple_suspicious_ips"


class Action(str, Enum):
    BLOCK_REQUEST = "block_request"
    REQUIRE_CAPTCHA = "require_captcha"
    APPLY_DELAY = "apply_delay"


class DenialReason(str, Enum):
    BLOCKED = "blocked"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    GLOBAL_RATE_LIMIT_EXCEEDED = "global_rate_limit_exceeded"
    ACCOUNT_BLOCKED = "account_blocked"
    MAX_ATTEMPTS_EXCEEDED = "max_attempts_exceeded"


class CaptchaOutcome(str, Enum):
    CORRECT = "correct answer"
    INCORRECT = "incorrect answer"
    NO_CHALLENGE = "no active challenge"
    EXPIRED = "challenge expired"
    MAX_ATTEMPTS = "max attempts exceeded"
