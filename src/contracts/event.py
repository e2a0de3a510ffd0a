"""SecurityEvent — the immutable record appended to the monitor's log."""

from __future__ import annotations

import csv
import io
import json
from dataclasses import asdict, dataclass, field
from typing import Any

# CSV column order for events.csv
CSV_COLUMNS: list[str] = [
    "id",
    "timestamp",
    "type",
    "severity",
    "source",
    "identifier",
    "risk_score",
    "details",
]


@dataclass(frozen=True, slots=True)
class SecurityEvent:
    """One ingested security event.

    ``timestamp`` is epoch milliseconds assigned by the monitor at
    ingestion; ``details`` is free-form detector context.
    """

    id: str
    timestamp: int
    type: str = "unknown"
    severity: str = "medium"
    source: str = "unknown"
    identifier: str = "unknown"
    details: dict[str, Any] = field(default_factory=dict)
    risk_score: float = 0.0

    # ── serialisation ─────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_csv_row(self) -> str:
        """Return a single CSV line (no trailing newline)."""
        buf = io.StringIO()
        writer = csv.writer(buf)
        row = [getattr(self, c) for c in CSV_COLUMNS[:-1]]
        row.append(json.dumps(self.details, ensure_ascii=False, default=str, sort_keys=True))
        writer.writerow(row)
        return buf.getvalue().rstrip("\r\n")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str, separators=(",", ":"))

    @staticmethod
    def csv_header() -> str:
        return ",".join(CSV_COLUMNS)
