from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from psycopg2.extras import execute_values

from xlsx_ingest.models.row_data import DuplicateKey, RowData

from .schema import quote_ident

"""Duplicate detection against the destination table.

Two rows are duplicates iff the values of the identity columns present in
the row are exactly equal (plain string equality, no normalization). With no
identity columns, nothing is ever a duplicate.

The lookup is authoritative at call time only; it takes no locks. When other
writers may insert concurrently, back the identity columns with a unique
index (identity_index: unique) and let the batch writer treat conflicts as
duplicates.

Two strategies:
- row   : one point lookup per row (is_duplicate)
- batch : one round trip per batch (fetch_existing_keys)

Both need the identity columns indexed to avoid sequential scans at scale.
"""

__all__ = [
    "build_duplicate_key",
    "fetch_existing_keys",
    "is_duplicate",
    "present_identity_columns",
]


def present_identity_columns(row: RowData, identity_columns: Sequence[str]) -> list[str]:
    return [c for c in identity_columns if c in row]


def build_duplicate_key(row: RowData, identity_columns: Sequence[str]) -> DuplicateKey | None:
    """Identity values of the row, or None when no identity column is present."""
    columns = present_identity_columns(row, identity_columns)
    if not columns:
        return None
    return tuple(row.values[c] for c in columns)


def is_duplicate(
    cursor: Any, table_name: str, row: RowData, identity_columns: Sequence[str]
) -> bool:
    columns = present_identity_columns(row, identity_columns)
    if not columns:
        return False
    where = " AND ".join(f"{quote_ident(c)} = %s" for c in columns)
    cursor.execute(
        f"SELECT 1 FROM {quote_ident(table_name)} WHERE {where} LIMIT 1",
        tuple(row.values[c] for c in columns),
    )
    return cursor.fetchone() is not None


def fetch_existing_keys(
    cursor: Any,
    table_name: str,
    rows: Sequence[RowData],
    identity_columns: Sequence[str],
    page_size: int = 1000,
) -> set[DuplicateKey]:
    """Return which identity keys of `rows` already exist, in one round trip per page.

    All rows of a batch come from the same sheet, so the identity columns
    present in the first row apply to every row.
    """
    if not rows:
        return set()
    columns = present_identity_columns(rows[0], identity_columns)
    if not columns:
        return set()
    keys = list(dict.fromkeys(tuple(r.values[c] for c in columns) for r in rows))
    cols_sql = ", ".join(quote_ident(c) for c in columns)
    sql = (
        f"SELECT {cols_sql} FROM {quote_ident(table_name)} "
        f"WHERE ({cols_sql}) IN (VALUES %s)"
    )
    found = execute_values(cursor, sql, keys, page_size=page_size, fetch=True)
    return {tuple(r) for r in found}
