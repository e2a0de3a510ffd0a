"""Reporting: write events/alerts/timeline CSV and the TXT report."""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import pandas as pd

from src.contracts.alert import Alert
from src.contracts.event import SecurityEvent
from src.monitor.aggregation import bucket_interval

log = logging.getLogger(__name__)

TIMELINE_SEVERITIES = ["low", "medium", "high", "critical"]


def _atomic_write(path: str | Path, content: str) -> None:
    """Write *content* to *path* via a temp file + ``os.replace``."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


# ═══════════════════════════════════════════════════════════════════════════
#  CSV writers
# ═══════════════════════════════════════════════════════════════════════════


def write_events_csv(events: list[SecurityEvent], path: str | Path) -> None:
    lines = [SecurityEvent.csv_header()]
    lines.extend(e.to_csv_row() for e in events)
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote events → %s (%d rows)", path, len(events))


def write_alerts_csv(alerts: list[Alert], path: str | Path) -> None:
    lines = [Alert.csv_header()]
    lines.extend(a.to_csv_row() for a in alerts)
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote alerts → %s (%d rows)", path, len(alerts))


def timeline_frame(events: list[SecurityEvent], group_by: str = "hour") -> pd.DataFrame:
    """Events per time bucket × severity, plus a ``total`` column.

    The index is the bucket start as a UTC timestamp, named ``bucket``.
    """
    interval = bucket_interval(group_by)
    columns = [*TIMELINE_SEVERITIES, "total"]
    if not events:
        empty = pd.DataFrame(columns=columns, dtype="int64")
        empty.index.name = "bucket"
        return empty

    df = pd.DataFrame(
        {
            "bucket": [e.timestamp // interval * interval for e in events],
            "severity": [e.severity for e in events],
        }
    )
    table = pd.crosstab(df["bucket"], df["severity"])
    extra = sorted(set(table.columns) - set(TIMELINE_SEVERITIES))
    table = table.reindex(columns=TIMELINE_SEVERITIES + extra, fill_value=0)
    table["total"] = table.sum(axis=1)
    table.index = pd.to_datetime(table.index, unit="ms", utc=True)
    table.index.name = "bucket"
    table.columns.name = None
    return table


def write_timeline_csv(events: list[SecurityEvent], path: str | Path, group_by: str = "hour") -> None:
    table = timeline_frame(events, group_by)
    _atomic_write(path, table.to_csv(date_format="%Y-%m-%dT%H:%M:%SZ", lineterminator="\n"))
    log.info("Wrote timeline → %s (%d buckets)", path, len(table))


# ═══════════════════════════════════════════════════════════════════════════
#  TXT report
# ═══════════════════════════════════════════════════════════════════════════


def write_report_txt(report: dict[str, Any], path: str | Path, metrics: dict[str, Any] | None = None) -> None:
    """Render a ``generate_security_report`` dict as plain text."""
    summary = report.get("summary", {})
    stats = report.get("statistics", {})
    trend = report.get("risk_analysis", {})
    lines: list[str] = []

    lines.append("=" * 60)
    lines.append("  Abuse-Mitigation Security Report")
    lines.append("=" * 60)
    lines.append(f"  Report id:        {report.get('report_id', '-')}")
    lines.append(f"  Generated at:     {report.get('generated_at', '-')}")
    lines.append(f"  Time range:       {report.get('time_range_ms', 0) / 3_600_000:.2f} hr")
    lines.append("")

    lines.append("--- Summary ---")
    lines.append(f"  Total events:     {summary.get('total_events', 0)}")
    lines.append(f"  High severity:    {summary.get('high_severity_events', 0)}")
    lines.append(f"  Blocked requests: {summary.get('blocked_requests', 0)}")
    lines.append(f"  Security score:   {summary.get('security_score', 100)}")
    lines.append(f"  Risk level:       {summary.get('risk_level', 'low')}")
    lines.append("")

    lines.append("--- Statistics ---")
    sev_str = ", ".join(f"{k}={v}" for k, v in sorted(stats.get("by_severity", {}).items()))
    lines.append(f"  By severity:      {sev_str}")
    type_str = ", ".join(f"{k}={v}" for k, v in sorted(stats.get("by_type", {}).items()))
    lines.append(f"  By type:          {type_str}")
    lines.append(f"  Avg risk score:   {stats.get('average_risk_score', 0.0):.3f}")
    lines.append(f"  Unique ids:       {stats.get('unique_identifiers', 0)}")
    lines.append("")

    lines.append("--- Risk trend ---")
    lines.append(
        f"  {trend.get('trend', 'decreasing')} "
        f"(first half {trend.get('first_half_average', 0.0):.3f} → "
        f"second half {trend.get('second_half_average', 0.0):.3f})"
    )
    lines.append("")

    lines.append("--- Top threats ---")
    for i, threat in enumerate(report.get("top_threats", [])[:5], 1):
        lines.append(
            f"  {i}. {threat['key']} "
            f"(count={threat['count']}, severity={threat['severity']}, risk={threat['risk_score']:.2f})"
        )
    lines.append("")

    if metrics:
        lines.append("--- Running counters ---")
        for key in ("total_requests", "blocked_requests", "suspicious_requests", "bot_detections", "brute_force_attempts"):
            lines.append(f"  {key + ':':<22}{metrics.get(key, 0)}")
        lines.append("")

    recs = report.get("recommendations", [])
    if recs:
        lines.append("--- Recommendations ---")
        for rec in recs:
            lines.append(f"  * {rec}")
        lines.append("")

    lines.append("=" * 60)
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote report → %s", path)
