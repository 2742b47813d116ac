from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2

"""Destination table management.

Tables are derived from a sheet header: one TEXT column per header name,
plus a surrogate key and created_at / updated_at owned by the store. A header
that already carries created_at or updated_at keeps it as a TEXT data column
and the store-owned column of that name is not added.

ensure_table is "create if absent" only. An existing table is never
altered, so column drift between runs is not detected here; the batch
writer rejects rows whose columns do not match (see fetch_table_columns).
"""

__all__ = [
    "SchemaError",
    "TableSchema",
    "count_rows",
    "ensure_identity_index",
    "ensure_table",
    "fetch_table_columns",
    "quote_ident",
]

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMNS = ("created_at", "updated_at")


class SchemaError(Exception):
    """Raised when a destination table cannot be created or verified."""


@dataclass(frozen=True)
class TableSchema:
    table_name: str
    columns: tuple[str, ...]  # header order, verbatim
    surrogate_key: str

    @property
    def store_columns(self) -> tuple[str, ...]:
        return (self.surrogate_key, *_owned_timestamps(self.columns))


def quote_ident(name: str) -> str:
    """Double-quote an identifier for PostgreSQL."""
    return '"' + name.replace('"', '""') + '"'


def _owned_timestamps(header: Sequence[str]) -> list[str]:
    return [c for c in TIMESTAMP_COLUMNS if c not in header]


def _check_header(table_name: str, header: Sequence[str], surrogate_key: str) -> None:
    if not header:
        raise SchemaError(f"table {table_name}: empty header row")
    for position, name in enumerate(header, start=1):
        if not name:
            raise SchemaError(f"table {table_name}: blank header name in column {position}")
        if name == surrogate_key:
            raise SchemaError(
                f"table {table_name}: header '{name}' collides with the surrogate key column"
            )


def create_table_sql(table_name: str, header: Sequence[str], surrogate_key: str) -> str:
    columns = [f"{quote_ident(surrogate_key)} BIGSERIAL PRIMARY KEY"]
    columns += [f"{quote_ident(h)} TEXT" for h in header]
    columns += [f"{quote_ident(c)} TIMESTAMPTZ NOT NULL DEFAULT now()" for c in _owned_timestamps(header)]
    return f"CREATE TABLE IF NOT EXISTS {quote_ident(table_name)} ({', '.join(columns)})"


def ensure_table(
    cursor: Any,
    table_name: str,
    header: Sequence[str],
    *,
    surrogate_key: str = "row_id",
) -> TableSchema:
    """Create the destination table if absent.

    Duplicate header names are passed through verbatim; the store rejects
    them and that surfaces as SchemaError.
    """
    _check_header(table_name, header, surrogate_key)
    try:
        cursor.execute(create_table_sql(table_name, header, surrogate_key))
    except psycopg2.Error as e:
        raise SchemaError(f"table {table_name}: {e}") from e
    logger.debug("table %s ensured columns=%s", table_name, list(header))
    return TableSchema(table_name=table_name, columns=tuple(header), surrogate_key=surrogate_key)


def fetch_table_columns(cursor: Any, table_name: str, surrogate_key: str = "row_id") -> list[str]:
    """Return the table's data columns in ordinal order (store-owned columns excluded).

    created_at / updated_at count as data columns when they are TEXT, i.e. when
    they came from the sheet header.
    """
    try:
        cursor.execute(
            "SELECT column_name, data_type FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = %s "
            "ORDER BY ordinal_position",
            (table_name,),
        )
        existing = cursor.fetchall()
    except psycopg2.Error as e:
        raise SchemaError(f"table {table_name}: cannot read columns: {e}") from e
    return [
        name
        for name, data_type in existing
        if name != surrogate_key and not (name in TIMESTAMP_COLUMNS and data_type != "text")
    ]


def ensure_identity_index(
    cursor: Any, table_name: str, columns: Sequence[str], *, unique: bool = False
) -> None:
    """Index the identity columns; unique=True turns it into a constraint."""
    if not columns:
        return
    suffix = "identity_uq" if unique else "identity_idx"
    index_name = quote_ident(f"{table_name}_{suffix}")
    cols_sql = ", ".join(quote_ident(c) for c in columns)
    kind = "UNIQUE INDEX" if unique else "INDEX"
    try:
        cursor.execute(
            f"CREATE {kind} IF NOT EXISTS {index_name} ON {quote_ident(table_name)} ({cols_sql})"
        )
    except psycopg2.Error as e:
        raise SchemaError(f"table {table_name}: cannot index identity columns: {e}") from e


def count_rows(cursor: Any, table_name: str) -> int:
    cursor.execute(f"SELECT COUNT(*) FROM {quote_ident(table_name)}")
    row = cursor.fetchone()
    return int(row[0]) if row else 0
