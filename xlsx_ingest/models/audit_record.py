from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import UTC, datetime

"""AuditRecord model for the export audit log.

Every ensure-table action, batch completion, checkpoint advance and failure
becomes one AuditRecord, serialized as a single JSON line with a fixed key
set (no extra keys).
"""

__all__ = [
    "AuditRecord",
]


@dataclass(frozen=True)
class AuditRecord:
    """Structured audit record for JSON Lines logging.

    Attributes:
        timestamp: ISO8601 UTC timestamp with 'Z' suffix
        level: INFO / WARN / ERROR
        event: Event classification in UPPER_SNAKE_CASE format
        sheet: Sheet name, "" when not sheet-specific
        table: Destination table, "" when not table-specific
        row: Sheet row number (1-based). Use -1 when not row-specific
        message: Human readable description
    """
    timestamp: str
    level: str
    event: str
    sheet: str
    table: str
    row: int
    message: str

    @staticmethod
    def create(
        level: str,
        event: str,
        message: str,
        *,
        sheet: str = "",
        table: str = "",
        row: int = -1,
    ) -> AuditRecord:
        """Create a new AuditRecord stamped with the current UTC time."""
        ts = datetime.now(UTC).isoformat().replace("+00:00", "Z")
        return AuditRecord(
            timestamp=ts,
            level=level,
            event=event,
            sheet=sheet,
            table=table,
            row=row,
            message=message,
        )

    def to_json_line(self) -> str:
        return json.dumps(asdict(self), ensure_ascii=False)
