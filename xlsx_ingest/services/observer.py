from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from xlsx_ingest.db.checkpoint import Checkpoint
from xlsx_ingest.db.schema import TableSchema
from xlsx_ingest.logging.audit_log import AuditLogBuffer
from xlsx_ingest.models.audit_record import AuditRecord

"""Observer interface the orchestrator reports to.

The orchestrator never writes to a log sink directly; it calls an
IngestObserver. LoggingObserver forwards events to the application logger
and to the JSON Lines audit log.
"""

__all__ = [
    "BatchProgress",
    "IngestObserver",
    "LoggingObserver",
    "NullObserver",
]


@dataclass(frozen=True)
class BatchProgress:
    sheet_name: str
    table_name: str
    batch_index: int  # 1-based
    total_batches: int
    first_row: int  # sheet row numbers
    last_row: int
    inserted_rows: int
    duplicate_rows: int
    mismatched_rows: int
    elapsed_seconds: float


class IngestObserver(Protocol):
    def on_table_ensured(self, sheet_name: str, schema: TableSchema) -> None: ...

    def on_batch_complete(self, progress: BatchProgress) -> None: ...

    def on_error(
        self, error: BaseException, *, sheet: str = "", table: str = "", row: int = -1, fatal: bool = True
    ) -> None: ...

    def on_checkpoint_advance(self, checkpoint: Checkpoint) -> None: ...


class NullObserver:
    def on_table_ensured(self, sheet_name: str, schema: TableSchema) -> None:
        pass

    def on_batch_complete(self, progress: BatchProgress) -> None:
        pass

    def on_error(
        self, error: BaseException, *, sheet: str = "", table: str = "", row: int = -1, fatal: bool = True
    ) -> None:
        pass

    def on_checkpoint_advance(self, checkpoint: Checkpoint) -> None:
        pass


class LoggingObserver:
    """Observer writing to a logger and an AuditLogBuffer."""

    def __init__(self, logger: logging.Logger, audit_log: AuditLogBuffer | None = None) -> None:
        self.logger = logger
        self.audit_log = audit_log

    def _audit(
        self, level: str, event: str, message: str, *, sheet: str = "", table: str = "", row: int = -1
    ) -> None:
        if self.audit_log is not None:
            self.audit_log.append(
                AuditRecord.create(level, event, message, sheet=sheet, table=table, row=row)
            )

    def on_table_ensured(self, sheet_name: str, schema: TableSchema) -> None:
        message = f"Table {schema.table_name} created or verified ({len(schema.columns)} columns)"
        self.logger.info(message)
        self._audit("INFO", "TABLE_ENSURED", message, sheet=sheet_name, table=schema.table_name)

    def on_batch_complete(self, progress: BatchProgress) -> None:
        message = (
            f"Processed batch {progress.batch_index}/{progress.total_batches} "
            f"(rows {progress.first_row} to {progress.last_row}) "
            f"inserted={progress.inserted_rows} duplicates={progress.duplicate_rows} "
            f"mismatched={progress.mismatched_rows}"
        )
        self.logger.info(f"sheet={progress.sheet_name} {message}")
        self._audit(
            "INFO", "BATCH_COMPLETE", message, sheet=progress.sheet_name, table=progress.table_name
        )

    def on_error(
        self, error: BaseException, *, sheet: str = "", table: str = "", row: int = -1, fatal: bool = True
    ) -> None:
        event = type(error).__name__
        if fatal:
            self.logger.error(f"{event}: {error}")
            self._audit("ERROR", "EXPORT_FAILED", f"{event}: {error}", sheet=sheet, table=table, row=row)
        else:
            self.logger.warning(f"{event}: {error}")
            self._audit("WARN", "ROW_REJECTED", f"{event}: {error}", sheet=sheet, table=table, row=row)

    def on_checkpoint_advance(self, checkpoint: Checkpoint) -> None:
        message = f"Checkpoint for {checkpoint.table_name} advanced to {checkpoint.timestamp.isoformat()}"
        self.logger.info(message)
        self._audit("INFO", "CHECKPOINT_ADVANCED", message, table=checkpoint.table_name)
