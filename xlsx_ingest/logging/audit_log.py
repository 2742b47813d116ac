from __future__ import annotations

from pathlib import Path

from xlsx_ingest.models.audit_record import AuditRecord

"""Audit log buffering.

Records are appended in memory and written as JSON Lines on flush(); the
CLI flushes once per run (success or failure). The target file is
append-only and shared across runs.
"""

__all__ = [
    "AuditRecord",
    "AuditLogBuffer",
]


class AuditLogBuffer:
    """In-memory buffer for audit records. Flush appends JSON Lines.

    Single-threaded use only (one export run at a time).
    """
    def __init__(self, file_path: Path | str) -> None:
        self._records: list[AuditRecord] = []
        self._file_path = Path(file_path)

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def records(self) -> list[AuditRecord]:
        return list(self._records)

    def append(self, record: AuditRecord) -> None:
        self._records.append(record)

    def __len__(self) -> int:  # pragma: no cover (trivial)
        return len(self._records)

    def flush(self) -> Path:
        if not self._records:
            return self._file_path
        self._file_path.parent.mkdir(parents=True, exist_ok=True)
        with self._file_path.open("a", encoding="utf-8") as f:
            for r in self._records:
                f.write(r.to_json_line() + "\n")
        self._records.clear()
        return self._file_path
