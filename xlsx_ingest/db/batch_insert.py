from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import psycopg2
from psycopg2 import errors as pg_errors

from xlsx_ingest.models.row_data import DuplicateKey, RowData

from .duplicates import build_duplicate_key, fetch_existing_keys, is_duplicate
from .schema import quote_ident

"""Row-at-a-time batch writer with duplicate suppression.

Rows are processed in the order given. Each accepted row is inserted with its
own parameterized INSERT whose column list is the row's keys; no transaction
spans the batch (the connection runs in autocommit), so a failure partway
leaves earlier rows committed.

Policies:
- duplicate (store lookup, earlier row of this batch, or unique violation)
  -> skipped, counted in duplicate_rows
- row columns differ from table_columns -> SchemaMismatchError recorded,
  row skipped, counted in mismatched_rows, batch continues
- any other store error -> StoreWriteError, the run aborts
"""

__all__ = [
    "BatchMetrics",
    "BatchResult",
    "SchemaMismatchError",
    "StoreWriteError",
    "insert_batch",
]

logger = logging.getLogger(__name__)


class StoreWriteError(Exception):
    """A row could not be written for a reason other than a duplicate."""

    def __init__(
        self, message: str, row_number: int = -1, *, inserted_rows: int = 0, skipped_rows: int = 0
    ) -> None:
        super().__init__(message)
        self.row_number = row_number
        # rows of the failing batch already committed / skipped before the error
        self.inserted_rows = inserted_rows
        self.skipped_rows = skipped_rows


class SchemaMismatchError(Exception):
    """A row's column set does not match the destination table."""

    def __init__(self, table: str, row: RowData, table_columns: Sequence[str]) -> None:
        row_cols = set(row.columns)
        expected = set(table_columns)
        super().__init__(
            f"row {row.row_number}: columns do not match table {table} "
            f"(missing={sorted(expected - row_cols)} unexpected={sorted(row_cols - expected)})"
        )
        self.row_number = row.row_number


@dataclass(frozen=True)
class BatchMetrics:
    """Timing for one insert_batch call."""
    batch_size: int
    elapsed_seconds: float
    start_time: float
    end_time: float


@dataclass(frozen=True)
class BatchResult:
    inserted_rows: int
    duplicate_rows: int
    mismatched_rows: int = 0
    inserted_row_numbers: list[int] = field(default_factory=list)
    mismatches: list[SchemaMismatchError] = field(default_factory=list)

    @property
    def skipped_rows(self) -> int:
        return self.duplicate_rows + self.mismatched_rows


def _insert_row(cursor: Any, table: str, row: RowData) -> None:
    cols_sql = ", ".join(quote_ident(c) for c in row.columns)
    placeholders = ", ".join(["%s"] * len(row.columns))
    cursor.execute(
        f"INSERT INTO {quote_ident(table)} ({cols_sql}) VALUES ({placeholders})",
        tuple(row.values.values()),
    )


def insert_batch(
    cursor: Any,
    table: str,
    rows: Sequence[RowData],
    *,
    identity_columns: Sequence[str],
    table_columns: Sequence[str] | None = None,
    strategy: str = "row",
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> BatchResult:
    """Insert rows not already present in `table`.

    Parameters
    ----------
    cursor: psycopg2 cursor (autocommit connection)
    table: destination table
    rows: one batch, in source order
    identity_columns: duplicate-check columns; empty -> every row accepted
    table_columns: destination data columns; None skips the mismatch check
    strategy: "row" (point lookup per row) or "batch" (one lookup per batch)
    metrics_callback: receives BatchMetrics; not called for an empty batch
    """
    if not rows:
        return BatchResult(inserted_rows=0, duplicate_rows=0)

    expected = set(table_columns) if table_columns is not None else None
    existing: set[DuplicateKey] = set()
    if strategy == "batch":
        try:
            existing = fetch_existing_keys(cursor, table, rows, identity_columns)
        except psycopg2.Error as e:
            raise StoreWriteError(f"duplicate lookup failed on {table}: {e}") from e

    accepted: set[DuplicateKey] = set()
    inserted_numbers: list[int] = []
    mismatches: list[SchemaMismatchError] = []
    duplicates = 0

    start_time = time.time()
    try:
        for row in rows:
            if expected is not None and set(row.columns) != expected:
                mismatch = SchemaMismatchError(table, row, table_columns or ())
                logger.debug("%s", mismatch)
                mismatches.append(mismatch)
                continue

            key = build_duplicate_key(row, identity_columns)
            if key is not None:
                # 同一バッチ内の重複はストア照会前に弾く
                if key in accepted or key in existing:
                    duplicates += 1
                    continue
                if strategy == "row":
                    try:
                        found = is_duplicate(cursor, table, row, identity_columns)
                    except psycopg2.Error as e:
                        raise StoreWriteError(
                            f"row {row.row_number}: duplicate lookup failed on {table}: {e}",
                            row.row_number,
                            inserted_rows=len(inserted_numbers),
                            skipped_rows=duplicates + len(mismatches),
                        ) from e
                    if found:
                        duplicates += 1
                        continue

            try:
                _insert_row(cursor, table, row)
            except pg_errors.UniqueViolation:
                logger.debug("row %d: unique violation on %s counted as duplicate", row.row_number, table)
                duplicates += 1
                continue
            except psycopg2.Error as e:
                raise StoreWriteError(
                    f"row {row.row_number}: insert into {table} failed: {e}",
                    row.row_number,
                    inserted_rows=len(inserted_numbers),
                    skipped_rows=duplicates + len(mismatches),
                ) from e

            if key is not None:
                accepted.add(key)
            inserted_numbers.append(row.row_number)
    finally:
        end_time = time.time()
        if metrics_callback is not None:
            metrics_callback(
                BatchMetrics(
                    batch_size=len(rows),
                    elapsed_seconds=end_time - start_time,
                    start_time=start_time,
                    end_time=end_time,
                )
            )

    return BatchResult(
        inserted_rows=len(inserted_numbers),
        duplicate_rows=duplicates,
        mismatched_rows=len(mismatches),
        inserted_row_numbers=inserted_numbers,
        mismatches=mismatches,
    )
