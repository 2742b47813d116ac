from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import psycopg2

from .schema import quote_ident

"""Incremental export checkpoints.

One row per destination table holds the time of the last successful
incremental run. Checkpoints only move forward: advance() keeps the later
of the stored and the proposed timestamp, both in Python and in the upsert.
"""

__all__ = [
    "NO_CHECKPOINT",
    "Checkpoint",
    "CheckpointError",
    "CheckpointStore",
]

logger = logging.getLogger(__name__)

# Returned when a table has never been exported incrementally
NO_CHECKPOINT = datetime.min.replace(tzinfo=UTC)


class CheckpointError(Exception):
    pass


@dataclass(frozen=True)
class Checkpoint:
    table_name: str
    timestamp: datetime


class CheckpointStore:
    """Checkpoint persistence in a table of the destination database."""

    def __init__(self, cursor: Any, table: str = "export_log") -> None:
        self._cursor = cursor
        self._table = quote_ident(table)

    def ensure(self) -> None:
        try:
            self._cursor.execute(
                f"CREATE TABLE IF NOT EXISTS {self._table} ("
                '"table_name" TEXT PRIMARY KEY, '
                '"export_timestamp" TIMESTAMPTZ NOT NULL)'
            )
        except psycopg2.Error as e:
            raise CheckpointError(f"cannot create checkpoint table: {e}") from e

    def read(self, table_name: str) -> datetime:
        """Last checkpoint for table_name, NO_CHECKPOINT if none was recorded."""
        try:
            self._cursor.execute(
                f'SELECT "export_timestamp" FROM {self._table} WHERE "table_name" = %s',
                (table_name,),
            )
            row = self._cursor.fetchone()
        except psycopg2.Error as e:
            raise CheckpointError(f"cannot read checkpoint for {table_name}: {e}") from e
        if row is None or row[0] is None:
            return NO_CHECKPOINT
        ts: datetime = row[0]
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=UTC)
        return ts

    def advance(self, table_name: str, at: datetime) -> Checkpoint:
        """Move the checkpoint of table_name forward to `at` (never backwards)."""
        if at.tzinfo is None:
            raise CheckpointError("checkpoint timestamp must be timezone-aware")
        current = self.read(table_name)
        target = max(current, at)
        try:
            self._cursor.execute(
                f'INSERT INTO {self._table} ("table_name", "export_timestamp") VALUES (%s, %s) '
                f'ON CONFLICT ("table_name") DO UPDATE SET "export_timestamp" = '
                f'GREATEST({self._table}."export_timestamp", EXCLUDED."export_timestamp")',
                (table_name, target),
            )
        except psycopg2.Error as e:
            raise CheckpointError(f"cannot advance checkpoint for {table_name}: {e}") from e
        if target != at:
            logger.warning(
                "checkpoint for %s kept at %s (proposed %s is older)",
                table_name, current.isoformat(), at.isoformat(),
            )
        return Checkpoint(table_name=table_name, timestamp=target)
