from __future__ import annotations

import dataclasses
import json
from pathlib import Path

import pytest

from xlsx_ingest.logging.audit_log import AuditLogBuffer
from xlsx_ingest.models.audit_record import AuditRecord


def test_create_stamps_utc_timestamp():
    record = AuditRecord.create("INFO", "TABLE_ENSURED", "ok", table="t")
    assert record.timestamp.endswith("Z")
    assert "+00:00" not in record.timestamp
    assert record.sheet == ""
    assert record.row == -1


def test_record_is_frozen():
    record = AuditRecord.create("INFO", "X", "m")
    with pytest.raises(dataclasses.FrozenInstanceError):
        record.level = "ERROR"  # type: ignore[misc]


def test_to_json_line_keeps_non_ascii():
    record = AuditRecord.create("WARN", "ROW_REJECTED", "列が一致しません", sheet="シート1", row=3)
    line = record.to_json_line()
    assert "列が一致しません" in line
    assert json.loads(line)["sheet"] == "シート1"


def test_buffer_flush_appends_json_lines(tmp_path: Path):
    path = tmp_path / "nested" / "audit.jsonl"
    buffer = AuditLogBuffer(path)
    buffer.append(AuditRecord.create("INFO", "A", "first"))
    buffer.append(AuditRecord.create("ERROR", "B", "second"))
    assert len(buffer) == 2

    assert buffer.flush() == path
    assert len(buffer) == 0
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event"] for line in lines] == ["A", "B"]

    # later runs append
    buffer.append(AuditRecord.create("INFO", "C", "third"))
    buffer.flush()
    assert len(path.read_text(encoding="utf-8").splitlines()) == 3


def test_flush_empty_buffer_writes_nothing(tmp_path: Path):
    path = tmp_path / "audit.jsonl"
    assert AuditLogBuffer(path).flush() == path
    assert not path.exists()


def test_records_returns_copy(tmp_path: Path):
    buffer = AuditLogBuffer(str(tmp_path / "a.jsonl"))
    buffer.append(AuditRecord.create("INFO", "A", "m"))
    buffer.records.clear()
    assert len(buffer.records) == 1
    assert buffer.file_path == tmp_path / "a.jsonl"
