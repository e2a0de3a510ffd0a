"""Модель оповіщення (Alert), яке монітор створює при перевищенні порогу."""

from __future__ import annotations

import csv
import io
from dataclasses import asdict, dataclass, field
from typing import Any

ALERT_CSV_COLUMNS = [
    "id",
    "timestamp",
    "type",
    "severity",
    "message",
    "acknowledged",
    "resolved",
]


@dataclass(slots=True)
class Alert:
    """Оповіщення монітора; після створення змінюються лише прапорці acknowledged/resolved."""

    id: str
    timestamp: int  # epoch ms
    type: str  # high_risk_score | rapid_requests | multiple_suspicious_ips
    severity: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    acknowledged: bool = False
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_csv_row(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow([getattr(self, c) for c in ALERT_CSV_COLUMNS])
        return buf.getvalue().rstrip("\r\n")

    @staticmethod
    def csv_header() -> str:
        return ",".join(ALERT_CSV_COLUMNS)
