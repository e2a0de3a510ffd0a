"""SecurityMonitor — append-only event log with alerting and queries.

Ingest path (``log_security_event``)::

    prune by retention → assign id/timestamp/defaults → append
        → update running counters → evaluate alert rules → return id

Alert rules, each evaluated on every ingested event (no debouncing):

  high_risk_score          event.risk_score >= high_risk_score
  rapid_requests           >= rapid_requests rate-limit/auth events in
                           the trailing rapid_requests_window_ms
  multiple_suspicious_ips  >= suspicious_ips distinct identifiers with
                           risk > suspicious_risk_score in the trailing
                           suspicious_ips_window_ms

Queries prune first, copy the log under the lock, and aggregate outside it.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from enum import Enum
from typing import Any

from src.contracts.alert import Alert
from src.contracts.enums import AlertType, EventType, Severity
from src.contracts.event import SecurityEvent
from src.monitor import aggregation as agg
from src.shared.clock import Clock, now_ms
from src.shared.settings import DAY_MS, HOUR_MS, MonitorSettings

log = logging.getLogger(__name__)

_BLOCKING_TYPES = {EventType.RATE_LIMIT_VIOLATION.value, EventType.BRUTE_FORCE_ATTEMPT.value}
_REQUEST_TYPES = {EventType.RATE_LIMIT_VIOLATION.value, EventType.AUTHENTICATION_ATTEMPT.value}


def _value(x: Any) -> Any:
    return x.value if isinstance(x, Enum) else x


class SecurityMonitor:
    """Owns the event and alert logs; never touches detector state."""

    def __init__(self, settings: MonitorSettings | None = None, clock: Clock | None = None) -> None:
        self.settings = settings or MonitorSettings()
        self.clock = clock or now_ms
        self._lock = threading.RLock()
        self._events: deque[SecurityEvent] = deque()
        self._alerts: deque[Alert] = deque()
        self._seq = itertools.count(1)
        self._counters = self._zero_counters()
        self.start_time = self.clock()

    @staticmethod
    def _zero_counters() -> dict[str, int]:
        return {
            "total_requests": 0,
            "blocked_requests": 0,
            "suspicious_requests": 0,
            "bot_detections": 0,
            "brute_force_attempts": 0,
        }

    def _next_id(self, prefix: str, now: int) -> str:
        return f"{prefix}_{now}_{next(self._seq):06d}"

    def _prune(self, now: int) -> None:
        """Drop events and alerts at or beyond the retention horizon.  Lock held."""
        cutoff = now - self.settings.retention_ms
        while self._events and self._events[0].timestamp <= cutoff:
            self._events.popleft()
        while self._alerts and self._alerts[0].timestamp <= cutoff:
            self._alerts.popleft()

    # ═══════════════════════════════════════════════════════════════════════
    #  Ingest
    # ═══════════════════════════════════════════════════════════════════════

    def log_security_event(
        self,
        type: str | EventType = EventType.UNKNOWN,
        severity: str | Severity = Severity.MEDIUM,
        source: str = "unknown",
        identifier: str = "unknown",
        details: dict[str, Any] | None = None,
        risk_score: float = 0.0,
    ) -> str:
        """Append one event and return its id.

        Empty values fall back to the defaults (``unknown`` / ``medium`` / 0).
        """
        with self._lock:
            now = self.clock()
            self._prune(now)
            event = SecurityEvent(
                id=self._next_id("evt", now),
                timestamp=now,
                type=_value(type) or EventType.UNKNOWN.value,
                severity=_value(severity) or Severity.MEDIUM.value,
                source=source or "unknown",
                identifier=identifier or "unknown",
                details=dict(details or {}),
                risk_score=float(risk_score or 0.0),
            )
            self._events.append(event)
            self._count(event)
            if self.settings.enable_alerting:
                self._check_alerts(event, now)
        log.debug("Event %s type=%s identifier=%s risk=%.2f", event.id, event.type, event.identifier, event.risk_score)
        return event.id

    def _count(self, event: SecurityEvent) -> None:
        c = self._counters
        c["total_requests"] += 1
        if event.type in _BLOCKING_TYPES:
            c["blocked_requests"] += 1
        if event.severity in (Severity.MEDIUM.value, Severity.HIGH.value):
            c["suspicious_requests"] += 1
        if event.type == EventType.BOT_DETECTION.value:
            c["bot_detections"] += 1
        if event.type == EventType.BRUTE_FORCE_ATTEMPT.value:
            c["brute_force_attempts"] += 1

    # ── typed helpers ────────────────────────────────────────────────────

    def log_auth_attempt(
        self,
        identifier: str,
        *,
        success: bool,
        username: str | None = None,
        endpoint: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        return self.log_security_event(
            type=EventType.AUTHENTICATION_ATTEMPT,
            severity=Severity.LOW if success else Severity.MEDIUM,
            source="auth",
            identifier=identifier,
            details={"username": username, "success": success, "endpoint": endpoint, "user_agent": user_agent},
            risk_score=0.0 if success else 0.3,
        )

    def log_brute_force_attempt(
        self,
        identifier: str,
        *,
        username: str | None = None,
        attempts: int = 0,
        window_ms: int | None = None,
        endpoint: str | None = None,
        blocked: bool = False,
    ) -> str:
        return self.log_security_event(
            type=EventType.BRUTE_FORCE_ATTEMPT,
            severity=Severity.HIGH,
            source="brute_force_protection",
            identifier=identifier,
            details={
                "username": username,
                "attempts": attempts,
                "window_ms": window_ms,
                "endpoint": endpoint,
                "blocked": blocked,
            },
            risk_score=0.8,
        )

    def log_bot_detection(
        self,
        identifier: str,
        *,
        suspicion_score: float,
        confidence: float = 0.0,
        reasons: list[str] | None = None,
        user_agent: str | None = None,
        blocked: bool = False,
    ) -> str:
        return self.log_security_event(
            type=EventType.BOT_DETECTION,
            severity=Severity.HIGH if confidence > 0.8 else Severity.MEDIUM,
            source="bot_detection",
            identifier=identifier,
            details={
                "suspicion_score": suspicion_score,
                "confidence": confidence,
                "reasons": list(reasons or []),
                "user_agent": user_agent,
                "blocked": blocked,
            },
            risk_score=suspicion_score,
        )

    def log_rate_limit_violation(
        self,
        identifier: str,
        *,
        endpoint: str | None = None,
        requests: int | None = None,
        limit: int | None = None,
        window_ms: int | None = None,
        blocked: bool = True,
    ) -> str:
        return self.log_security_event(
            type=EventType.RATE_LIMIT_VIOLATION,
            severity=Severity.MEDIUM,
            source="rate_limiter",
            identifier=identifier,
            details={
                "endpoint": endpoint,
                "requests": requests,
                "limit": limit,
                "window_ms": window_ms,
                "blocked": blocked,
            },
            risk_score=0.6,
        )

    def log_suspicious_activity(
        self,
        identifier: str,
        *,
        pattern: str | None = None,
        description: str | None = None,
        source: str = "monitoring",
        severity: str | Severity = Severity.MEDIUM,
        risk_score: float = 0.5,
        endpoint: str | None = None,
        user_agent: str | None = None,
    ) -> str:
        return self.log_security_event(
            type=EventType.SUSPICIOUS_ACTIVITY,
            severity=severity,
            source=source,
            identifier=identifier,
            details={
                "pattern": pattern,
                "description": description,
                "endpoint": endpoint,
                "user_agent": user_agent,
            },
            risk_score=risk_score,
        )

    # ═══════════════════════════════════════════════════════════════════════
    #  Alerts
    # ═══════════════════════════════════════════════════════════════════════

    def _check_alerts(self, event: SecurityEvent, now: int) -> None:
        cfg = self.settings

        if event.risk_score >= cfg.high_risk_score:
            self._raise_alert(
                now,
                AlertType.HIGH_RISK_SCORE,
                Severity.HIGH,
                f"High risk activity detected: {event.type}",
                event.to_dict(),
            )

        start = now - cfg.rapid_requests_window_ms
        recent = sum(1 for e in self._events if e.timestamp > start and e.type in _REQUEST_TYPES)
        if recent >= cfg.rapid_requests:
            self._raise_alert(
                now,
                AlertType.RAPID_REQUESTS,
                Severity.MEDIUM,
                f"Rapid request pattern detected: {recent} requests",
                {"count": recent, "window_ms": cfg.rapid_requests_window_ms},
            )

        start = now - cfg.suspicious_ips_window_ms
        suspicious = sorted(
            {e.identifier for e in self._events if e.timestamp > start and e.risk_score > cfg.suspicious_risk_score}
        )
        if len(suspicious) >= cfg.suspicious_ips:
            self._raise_alert(
                now,
                AlertType.MULTIPLE_SUSPICIOUS_IPS,
                Severity.MEDIUM,
                f"Multiple suspicious IPs detected: {len(suspicious)} IPs",
                {"identifiers": suspicious},
            )

    def _raise_alert(
        self, now: int, kind: AlertType, severity: Severity, message: str, details: dict[str, Any]
    ) -> Alert:
        alert = Alert(
            id=self._next_id("alert", now),
            timestamp=now,
            type=kind.value,
            severity=severity.value,
            message=message,
            details=details,
        )
        self._alerts.append(alert)
        log.warning("Security alert %s [%s] %s", alert.id, alert.severity, alert.message)
        return alert

    def _find_alert(self, alert_id: str) -> Alert | None:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def acknowledge_alert(self, alert_id: str) -> bool:
        with self._lock:
            alert = self._find_alert(alert_id)
            if alert is None:
                return False
            alert.acknowledged = True
            return True

    def resolve_alert(self, alert_id: str) -> bool:
        with self._lock:
            alert = self._find_alert(alert_id)
            if alert is None:
                return False
            alert.resolved = True
            return True

    def get_alerts(
        self,
        time_range_ms: int | None = None,
        *,
        type: str | AlertType | None = None,
        include_resolved: bool = True,
    ) -> list[Alert]:
        """Alerts newer than ``now - time_range_ms`` (all retained when None)."""
        with self._lock:
            now = self.clock()
            self._prune(now)
            alerts = list(self._alerts)
        if time_range_ms is not None:
            alerts = [a for a in alerts if a.timestamp > now - time_range_ms]
        if type is not None:
            alerts = [a for a in alerts if a.type == _value(type)]
        if not include_resolved:
            alerts = [a for a in alerts if not a.resolved]
        return alerts

    # ═══════════════════════════════════════════════════════════════════════
    #  Queries
    # ═══════════════════════════════════════════════════════════════════════

    def _snapshot(self) -> tuple[int, list[SecurityEvent]]:
        with self._lock:
            now = self.clock()
            self._prune(now)
            return now, list(self._events)

    def get_events(
        self,
        time_range_ms: int | None = None,
        *,
        type: str | EventType | None = None,
        identifier: str | None = None,
    ) -> list[SecurityEvent]:
        now, events = self._snapshot()
        if time_range_ms is not None:
            events = agg.events_since(events, now - time_range_ms)
        if type is not None:
            events = [e for e in events if e.type == _value(type)]
        if identifier is not None:
            events = [e for e in events if e.identifier == identifier]
        return events

    def get_metrics(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def get_dashboard_data(self, time_range_ms: int = DAY_MS, group_by: str = "hour") -> dict[str, Any]:
        agg.bucket_interval(group_by)
        now, events = self._snapshot()
        recent = agg.events_since(events, now - time_range_ms)
        cfg = self.settings
        return {
            "time_range_ms": time_range_ms,
            "period": group_by,
            "statistics": agg.calculate_statistics(recent),
            "events": agg.group_events_by_time(recent, group_by, cfg.bucket_event_limit),
            "top_threats": agg.top_threats(recent, cfg.top_limit),
            "alerts": [a.to_dict() for a in self.get_alerts(time_range_ms)],
            "uptime_ms": now - self.start_time,
            "last_update": now,
        }

    def get_security_metrics(self, time_range_ms: int = HOUR_MS) -> dict[str, Any]:
        now, events = self._snapshot()
        recent = agg.events_since(events, now - time_range_ms)
        severities = agg.severity_counts(recent)
        metrics: dict[str, Any] = self.get_metrics()
        metrics.update(
            {
                "recent_events": len(recent),
                "high_severity_events": severities["high"],
                "medium_severity_events": severities["medium"],
                "low_severity_events": severities["low"],
                "event_types": agg.event_type_distribution(recent),
                "top_identifiers": agg.top_identifiers(recent, self.settings.top_limit),
                "risk_distribution": agg.risk_distribution(recent),
                "uptime_ms": now - self.start_time,
                "last_update": now,
            }
        )
        return metrics

    def generate_security_report(
        self, time_range_ms: int = DAY_MS, include_recommendations: bool = True
    ) -> dict[str, Any]:
        now, events = self._snapshot()
        recent = agg.events_since(events, now - time_range_ms)
        cfg = self.settings
        with self._lock:
            report_id = self._next_id("report", now)
        report = {
            "report_id": report_id,
            "generated_at": now,
            "time_range_ms": time_range_ms,
            "summary": agg.report_summary(recent),
            "statistics": agg.calculate_statistics(recent),
            "top_threats": agg.top_threats(recent, cfg.top_limit),
            "event_distribution": agg.event_type_distribution(recent),
            "risk_analysis": agg.analyze_risk_trends(recent),
            "recommendations": agg.generate_recommendations(recent) if include_recommendations else [],
            "detailed_events": [e.to_dict() for e in recent[-cfg.report_event_limit:]],
        }
        log.info("Generated report %s over %d events", report_id, len(recent))
        return report

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
            self._alerts.clear()
            self._counters = self._zero_counters()
