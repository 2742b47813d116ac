# Shared pytest fixtures
from __future__ import annotations

import re
import tempfile
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pandas as pd
import psycopg2
import pytest
from psycopg2 import errors as pg_errors

from xlsx_ingest.logging.init import reset_logging

_IDENT = r'"((?:[^"]|"")+)"'
_PG_TYPES = {"BIGSERIAL": "bigint", "TEXT": "text", "TIMESTAMPTZ": "timestamp with time zone"}


def _unquote(name: str) -> str:
    return name.replace('""', '"')


def _idents(text: str) -> list[str]:
    return [_unquote(m) for m in re.findall(_IDENT, text)]


class FakeCursor:
    """In-memory stand-in for a psycopg2 cursor.

    Understands exactly the statements xlsx_ingest issues: CREATE TABLE /
    INDEX IF NOT EXISTS, information_schema column listing, point lookups,
    single-row INSERT (with the checkpoint upsert), checkpoint SELECT and
    COUNT(*). Everything else raises ProgrammingError.
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[str]] = {}
        self.column_types: dict[str, dict[str, str]] = {}
        self.rows: dict[str, list[dict[str, Any]]] = {}
        self.unique_keys: dict[str, list[tuple[str, ...]]] = {}
        self.queries: list[tuple[str, Any]] = []
        self.fail_when: Callable[[str, Any], BaseException | None] | None = None
        self._result: list[tuple[Any, ...]] = []

    # -- helpers for tests ------------------------------------------------
    def statements(self, prefix: str) -> list[tuple[str, Any]]:
        return [q for q in self.queries if q[0].startswith(prefix)]

    def data_rows(self, table: str) -> list[dict[str, Any]]:
        return self.rows.get(table, [])

    # -- DB-API surface ---------------------------------------------------
    def execute(self, sql: str, params: Sequence[Any] | None = None) -> None:
        self.queries.append((sql, params))
        if self.fail_when is not None:
            error = self.fail_when(sql, params)
            if error is not None:
                raise error
        self._result = []

        m = re.match(rf"^CREATE TABLE IF NOT EXISTS {_IDENT} \((.*)\)$", sql, re.S)
        if m:
            self._create_table(_unquote(m.group(1)), m.group(2))
            return
        m = re.match(rf"^CREATE (UNIQUE )?INDEX IF NOT EXISTS {_IDENT} ON {_IDENT} \((.*)\)$", sql)
        if m:
            if m.group(1):
                self.unique_keys.setdefault(_unquote(m.group(3)), []).append(tuple(_idents(m.group(4))))
            return
        if sql.startswith("SELECT column_name, data_type FROM information_schema.columns"):
            types = self.column_types.get(params[0], {})
            self._result = [(c, types[c]) for c in self.tables.get(params[0], [])]
            return
        m = re.match(rf"^SELECT 1 FROM {_IDENT} WHERE (.*) LIMIT 1$", sql)
        if m:
            table = self._table(_unquote(m.group(1)))
            wanted = dict(zip(_idents(m.group(2)), params, strict=True))
            if any(all(r.get(c) == v for c, v in wanted.items()) for r in self.rows[table]):
                self._result = [(1,)]
            return
        m = re.match(rf"^INSERT INTO {_IDENT} \((.*?)\) VALUES \(.*?\)( ON CONFLICT .*)?$", sql, re.S)
        if m:
            self._insert(_unquote(m.group(1)), _idents(m.group(2)), params, bool(m.group(3)))
            return
        m = re.match(rf'^SELECT "export_timestamp" FROM {_IDENT} WHERE "table_name" = %s$', sql)
        if m:
            table = self._table(_unquote(m.group(1)))
            self._result = [
                (r["export_timestamp"],) for r in self.rows[table] if r["table_name"] == params[0]
            ]
            return
        m = re.match(rf"^SELECT COUNT\(\*\) FROM {_IDENT}$", sql)
        if m:
            self._result = [(len(self.rows[self._table(_unquote(m.group(1)))]),)]
            return
        raise psycopg2.ProgrammingError(f"FakeCursor cannot execute: {sql}")

    def fetchone(self) -> tuple[Any, ...] | None:
        return self._result[0] if self._result else None

    def fetchall(self) -> list[tuple[Any, ...]]:
        return list(self._result)

    # -- execute_values replacement (batch duplicate lookup) --------------
    def select_keys(self, sql: str, keys: Sequence[tuple[Any, ...]]) -> list[tuple[Any, ...]]:
        self.queries.append((sql, list(keys)))
        m = re.match(rf"^SELECT (.*?) FROM {_IDENT} WHERE", sql)
        assert m, sql
        columns = _idents(m.group(1))
        table = self._table(_unquote(m.group(2)))
        existing = {tuple(r.get(c) for c in columns) for r in self.rows[table]}
        return [k for k in keys if tuple(k) in existing]

    # -- internals --------------------------------------------------------
    def _table(self, name: str) -> str:
        if name not in self.tables:
            raise pg_errors.UndefinedTable(f'relation "{name}" does not exist')
        return name

    def _create_table(self, name: str, body: str) -> None:
        defs = [(_unquote(c), t) for c, t in re.findall(rf"{_IDENT} ([A-Z]+)", body)]
        columns = [c for c, _ in defs]
        if len(set(columns)) != len(columns):
            raise pg_errors.DuplicateColumn(f"column specified more than once in {name}")
        if name in self.tables:
            return
        self.tables[name] = columns
        self.column_types[name] = {c: _PG_TYPES.get(t, t.lower()) for c, t in defs}
        self.rows[name] = []

    def _insert(self, name: str, columns: list[str], params: Sequence[Any], upsert: bool) -> None:
        table = self._table(name)
        unknown = [c for c in columns if c not in self.tables[table]]
        if unknown:
            raise pg_errors.UndefinedColumn(f'column "{unknown[0]}" of relation "{name}" does not exist')
        row = dict(zip(columns, params, strict=True))
        if upsert:
            # checkpoint upsert: conflict on the first column, keep GREATEST of the second
            key, value = columns[0], columns[1]
            for existing in self.rows[table]:
                if existing[key] == row[key]:
                    existing[value] = max(existing[value], row[value])
                    return
        for unique in self.unique_keys.get(table, []):
            candidate = tuple(row.get(c) for c in unique)
            if any(tuple(r.get(c) for c in unique) == candidate for r in self.rows[table]):
                raise pg_errors.UniqueViolation(f"duplicate key value violates unique constraint on {name}")
        self.rows[table].append(row)


@pytest.fixture()
def fake_cursor() -> FakeCursor:
    return FakeCursor()


@pytest.fixture()
def fake_execute_values(monkeypatch):
    """Route psycopg2.extras.execute_values used by the duplicate lookup to FakeCursor."""
    import xlsx_ingest.db.duplicates as dup

    calls: list[int] = []

    def _fake(cursor, sql, argslist, template=None, page_size=100, fetch=False):
        calls.append(len(argslist))
        return cursor.select_keys(sql, argslist)

    monkeypatch.setattr(dup, "execute_values", _fake)
    return calls


@pytest.fixture(autouse=True)
def clean_logging():
    reset_logging()
    yield
    reset_logging()


@pytest.fixture()
def temp_workdir(monkeypatch) -> Path:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """sheet_mappings:
  MainData:
    table: main_data
  SupplementaryData:
    table: supplementary_data
    incremental: true
batch_size: 2
gc_interval: 1
duplicate_check_columns: [id, name, date_created]
date_columns: [date_created, updated_at]
audit_log_file: logs/export_log.jsonl
timezone: UTC
database:
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "export.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


def write_workbook(path: Path, sheets: dict[str, list[list[str]]]) -> Path:
    """Write sheets given as raw rows (row 1 = header), every cell as text."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        for name, rows in sheets.items():
            pd.DataFrame(rows).to_excel(writer, sheet_name=name, header=False, index=False)
    return path


@pytest.fixture()
def make_workbook(tmp_path: Path):
    def _make(sheets: dict[str, list[list[str]]], name: str = "export.xlsx") -> Path:
        return write_workbook(tmp_path / name, sheets)

    return _make


@pytest.fixture()
def sample_sheets() -> dict[str, list[list[str]]]:
    return {
        "MainData": [
            ["id", "name", "date_created", "category"],
            ["1", "Alice", "2024-01-01 09:00:00", "Books"],
            ["2", "Bob", "2024-01-02 09:00:00", "Food"],
            ["3", "Carol", "2024-01-03 09:00:00", "Home"],
        ],
        "SupplementaryData": [
            ["id", "name", "date_created", "note"],
            ["10", "X", "2024-03-01 00:00:00", "old"],
            ["11", "Y", "2024-06-01 00:00:00", "new"],
        ],
    }
