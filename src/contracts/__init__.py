"""Plain-data contracts shared by every module."""

from src.contracts.alert import Alert
from src.contracts.enums import (
    Action,
    AlertType,
    CaptchaOutcome,
    DenialReason,
    EventType,
    Severity,
)
from src.contracts.event import SecurityEvent
from src.contracts.request import RequestData
from src.contracts.verdict import (
    AuthAttemptResult,
    BotAnalysis,
    CaptchaVerification,
    GlobalRateLimitResult,
    RateLimitResult,
    SecurityDecision,
)

__all__ = [
    "Action",
    "Alert",
    "AlertType",
    "AuthAttemptResult",
    "BotAnalysis",
    "CaptchaOutcome",
    "CaptchaVerification",
    "DenialReason",
    "EventType",
    "GlobalRateLimitResult",
    "RateLimitResult",
    "RequestData",
    "SecurityDecision",
    "SecurityEvent",
    "Severity",
]
