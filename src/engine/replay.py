"""Replay — drive a SecurityGuard from a recorded JSONL request log.

Each line is one record::

    {"timestamp": 1767261600000 | "2026-01-01T10:00:00Z",
     "identifier": "203.0.113.7",
     "action": "request" | "auth_failure" | "auth_success" | "captcha",
     "endpoint": "/api/auth/login", "username": "alice", "password": "...",
     "answer": "7", "request_type": "login", "request": {...}}

Records are replayed in timestamp order against a ManualClock, so every
window, block and retention boundary behaves exactly as it would have
live.  Outputs: events.csv, alerts.csv, timeline.csv, report.txt.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from src.engine.orchestrator import SecurityGuard
from src.monitor.aggregation import bucket_interval
from src.monitor.reporter import (
    write_alerts_csv,
    write_events_csv,
    write_report_txt,
    write_timeline_csv,
)
from src.shared.clock import ManualClock
from src.shared.settings import DAY_MS, load_settings

log = logging.getLogger(__name__)

ACTIONS = ("request", "auth_failure", "auth_success", "captcha")


@dataclass(slots=True)
class ReplayRecord:
    timestamp: int  # epoch ms
    identifier: str
    action: str = "request"
    endpoint: str | None = None
    username: str | None = None
    password: str | None = None
    answer: str | None = None
    request_type: str = "request"
    request: dict[str, Any] = field(default_factory=dict)


def parse_timestamp(value: Any) -> int:
    """Epoch milliseconds from an int/float (ms) or an ISO-8601 string."""
    if isinstance(value, bool):
        raise ValueError(f"invalid timestamp: {value!r}")
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise ValueError(f"invalid timestamp: {value!r}")
        return int(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        dt = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    raise ValueError(f"invalid timestamp: {value!r}")


def _parse_record(obj: dict[str, Any]) -> ReplayRecord:
    if not isinstance(obj, dict):
        raise ValueError("record must be a JSON object")
    identifier = obj["identifier"]
    if not identifier:
        raise ValueError("empty identifier")
    action = obj.get("action", "request")
    if action not in ACTIONS:
        raise ValueError(f"unknown action {action!r}")
    request = obj.get("request") or {}
    if not isinstance(request, dict):
        raise ValueError("request must be a JSON object")
    answer = obj.get("answer")
    return ReplayRecord(
        timestamp=parse_timestamp(obj["timestamp"]),
        identifier=str(identifier),
        action=action,
        endpoint=obj.get("endpoint"),
        username=obj.get("username"),
        password=obj.get("password"),
        answer=None if answer is None else str(answer),
        request_type=obj.get("request_type", action),
        request=request,
    )


def load_records(path: str | Path) -> list[ReplayRecord]:
    """Load and time-sort records; malformed lines are skipped with a warning."""
    records: list[ReplayRecord] = []
    with open(path, encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, 1):
            line = line.strip()
            if not line:
                continue
            try:
                records.append(_parse_record(json.loads(line)))
            except (json.JSONDecodeError, KeyError, ValueError) as exc:
                log.warning("Skipping JSONL line %d: %s", line_no, exc)
    records.sort(key=lambda r: r.timestamp)
    log.info("Loaded %d records from JSONL: %s", len(records), path)
    return records


def apply_record(guard: SecurityGuard, record: ReplayRecord) -> Any:
    """Dispatch one record to the matching guard operation."""
    if record.action == "request":
        return guard.perform_security_check(
            record.identifier,
            record.request_type,
            record.request,
            endpoint=record.endpoint,
            username=record.username,
        )
    if record.action == "auth_failure":
        return guard.record_failed_auth(
            record.identifier,
            username=record.username,
            password=record.password,
            endpoint=record.endpoint or "login",
        )
    if record.action == "auth_success":
        return guard.record_successful_auth(record.identifier, record.username, endpoint=record.endpoint or "login")
    if record.answer is None:
        return guard.generate_captcha(record.identifier)
    return guard.verify_captcha(record.identifier, record.answer)


# ═══════════════════════════════════════════════════════════════════════════
#  Replay core
# ═══════════════════════════════════════════════════════════════════════════


def run_replay(
    input_path: str | Path,
    out_dir: str | Path = "out",
    config_path: str | Path | None = None,
    group_by: str = "hour",
    seed: int | None = None,
) -> dict[str, Any]:
    """Replay *input_path* and write the outputs into *out_dir*.

    Returns
    ───────
    dict with keys: records, checks, denied, events, alerts, outputs.
    """
    bucket_interval(group_by)
    settings = load_settings(config_path)
    if seed is not None:
        settings = dataclasses.replace(settings, seed=seed)

    records = load_records(input_path)
    summary: dict[str, Any] = {"records": len(records), "checks": 0, "denied": 0, "events": 0, "alerts": 0, "outputs": {}}
    if not records:
        log.warning("No records loaded from %s — nothing to replay.", input_path)
        return summary

    clock = ManualClock(records[0].timestamp)
    guard = SecurityGuard.from_settings(settings, clock=clock)

    for record in records:
        clock.set(record.timestamp)
        result = apply_record(guard, record)
        if record.action == "request":
            summary["checks"] += 1
            if not result.allowed:
                summary["denied"] += 1

    events = guard.monitor.get_events()
    alerts = guard.monitor.get_alerts()
    span = records[-1].timestamp - records[0].timestamp
    report = guard.generate_security_report(time_range_ms=max(DAY_MS, span + 1))

    out = Path(out_dir)
    out.mkdir(parents=True, exist_ok=True)
    outputs = {
        "events": out / "events.csv",
        "alerts": out / "alerts.csv",
        "timeline": out / "timeline.csv",
        "report": out / "report.txt",
    }
    write_events_csv(events, outputs["events"])
    write_alerts_csv(alerts, outputs["alerts"])
    write_timeline_csv(events, outputs["timeline"], group_by)
    write_report_txt(report, outputs["report"], guard.monitor.get_metrics())

    summary.update(events=len(events), alerts=len(alerts), outputs={k: str(v) for k, v in outputs.items()})
    log.info(
        "Replay complete: %d records, %d checks (%d denied), %d events, %d alerts. Outputs in %s/",
        summary["records"],
        summary["checks"],
        summary["denied"],
        summary["events"],
        summary["alerts"],
        out,
    )
    return summary
