"""Read-side aggregation — pure functions over lists of SecurityEvent.

Nothing here mutates its input or touches monitor state; the monitor
hands these functions a snapshot of its log.

Risk bands
──────────
  low      risk_score < 0.3
  medium   0.3 <= risk_score < 0.7
  high     risk_score >= 0.7
"""

from __future__ import annotations

from collections import Counter
from typing import Any

from src.contracts.event import SecurityEvent
from src.shared.settings import DAY_MS, HOUR_MS, MINUTE_MS

BUCKET_INTERVALS: dict[str, int] = {
    "minute": MINUTE_MS,
    "hour": HOUR_MS,
    "day": DAY_MS,
}

_SEVERITIES = ("high", "medium", "low")


def bucket_interval(group_by: str) -> int:
    try:
        return BUCKET_INTERVALS[group_by]
    except KeyError:
        raise ValueError(
            f"group_by must be one of {', '.join(BUCKET_INTERVALS)}, got {group_by!r}"
        ) from None


def events_since(events: list[SecurityEvent], start: int) -> list[SecurityEvent]:
    return [e for e in events if e.timestamp >= start]


def _mean_risk(events: list[SecurityEvent]) -> float:
    return sum(e.risk_score for e in events) / len(events) if events else 0.0


# ═══════════════════════════════════════════════════════════════════════════
#  Histograms
# ═══════════════════════════════════════════════════════════════════════════


def group_events_by_time(
    events: list[SecurityEvent],
    group_by: str = "hour",
    limit: int = 10,
) -> list[dict[str, Any]]:
    """Bucket events by ``floor(timestamp / interval)``.

    Returns one dict per non-empty bucket, oldest first, each carrying the
    bucket start, the event count and at most *limit* raw events.
    """
    interval = bucket_interval(group_by)
    buckets: dict[int, list[SecurityEvent]] = {}
    for event in events:
        start = event.timestamp // interval * interval
        buckets.setdefault(start, []).append(event)
    return [
        {
            "time": start,
            "count": len(group),
            "events": [e.to_dict() for e in group[:limit]],
        }
        for start, group in sorted(buckets.items())
    ]


def event_type_distribution(events: list[SecurityEvent]) -> dict[str, int]:
    return dict(Counter(e.type for e in events))


def severity_counts(events: list[SecurityEvent]) -> dict[str, int]:
    counts = Counter(e.severity for e in events)
    return {sev: counts.get(sev, 0) for sev in _SEVERITIES}


def risk_distribution(events: list[SecurityEvent]) -> dict[str, int]:
    dist = {"low": 0, "medium": 0, "high": 0}
    for e in events:
        if e.risk_score < 0.3:
            dist["low"] += 1
        elif e.risk_score < 0.7:
            dist["medium"] += 1
        else:
            dist["high"] += 1
    return dist


def calculate_statistics(events: list[SecurityEvent]) -> dict[str, Any]:
    return {
        "total": len(events),
        "by_severity": severity_counts(events),
        "by_type": event_type_distribution(events),
        "average_risk_score": _mean_risk(events),
        "unique_identifiers": len({e.identifier for e in events}),
    }


# ═══════════════════════════════════════════════════════════════════════════
#  Rankings
# ═══════════════════════════════════════════════════════════════════════════


def top_threats(events: list[SecurityEvent], limit: int = 10) -> list[dict[str, Any]]:
    """Rank ``type:identifier`` pairs by event count.

    ``severity`` is the severity of the first event seen for the pair;
    ``risk_score`` is the maximum seen.  Ties keep first-seen order.
    """
    threats: dict[str, dict[str, Any]] = {}
    for e in events:
        key = f"{e.type}:{e.identifier}"
        entry = threats.get(key)
        if entry is None:
            threats[key] = {"key": key, "count": 1, "severity": e.severity, "risk_score": e.risk_score}
        else:
            entry["count"] += 1
            entry["risk_score"] = max(entry["risk_score"], e.risk_score)
    ranked = sorted(threats.values(), key=lambda t: t["count"], reverse=True)
    return ranked[:limit]


def top_identifiers(events: list[SecurityEvent], limit: int = 10) -> list[dict[str, Any]]:
    counts = Counter(e.identifier for e in events)
    return [{"identifier": ident, "count": n} for ident, n in counts.most_common(limit)]


# ═══════════════════════════════════════════════════════════════════════════
#  Report sections
# ═══════════════════════════════════════════════════════════════════════════


def analyze_risk_trends(events: list[SecurityEvent]) -> dict[str, Any]:
    """Compare mean risk of the older and newer half of the time-sorted events.

    Equal halves report ``decreasing``.
    """
    ordered = sorted(events, key=lambda e: e.timestamp)
    half = len(ordered) // 2
    first = _mean_risk(ordered[:half])
    second = _mean_risk(ordered[half:])
    return {
        "trend": "increasing" if second > first else "decreasing",
        "change": abs(second - first),
        "first_half_average": first,
        "second_half_average": second,
    }


def report_summary(events: list[SecurityEvent]) -> dict[str, Any]:
    high = sum(1 for e in events if e.severity == "high")
    blocked = sum(1 for e in events if e.type == "rate_limit_violation")
    if high > 10:
        level = "high"
    elif high > 5:
        level = "medium"
    else:
        level = "low"
    return {
        "total_events": len(events),
        "high_severity_events": high,
        "blocked_requests": blocked,
        "security_score": max(0, 100 - (high * 10 + blocked * 5)),
        "risk_level": level,
    }


def generate_recommendations(events: list[SecurityEvent]) -> list[str]:
    recs: list[str] = []
    if sum(1 for e in events if e.risk_score > 0.7) > 5:
        recs.append("Consider implementing stricter rate limiting")
    if sum(1 for e in events if e.type == "bot_detection") > 10:
        recs.append("Enhance bot detection capabilities")
    if sum(1 for e in events if e.type == "brute_force_attempt") > 3:
        recs.append("Implement stronger authentication measures")
    recs.append("Regularly review and update security policies")
    recs.append("Monitor for new attack patterns")
    return recs
