from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pandas as pd
import pytest

from xlsx_ingest.db.checkpoint import NO_CHECKPOINT
from xlsx_ingest.excel.reader import SheetSource
from xlsx_ingest.services.incremental import (
    DateParseFailure,
    FullScanRequired,
    find_date_column,
    parse_cell_datetime,
    select_new_rows,
)

CANDIDATES = ("date_created", "updated_at")


def _sheet(rows: list[list[str]], name: str = "S") -> SheetSource:
    return SheetSource(sheet_name=name, frame=pd.DataFrame(rows).astype(str))


def test_find_date_column_priority_order():
    assert find_date_column(["updated_at", "date_created"], CANDIDATES) == "date_created"
    assert find_date_column(["id", "updated_at"], CANDIDATES) == "updated_at"
    assert find_date_column(["id", "name"], CANDIDATES) is None


@pytest.mark.parametrize(
    "value,expected",
    [
        ("2024-01-01", datetime(2024, 1, 1, tzinfo=UTC)),
        ("2024-01-01 09:30:00", datetime(2024, 1, 1, 9, 30, tzinfo=UTC)),
        ("2024/03/05", datetime(2024, 3, 5, tzinfo=UTC)),
        ("2024-01-01T09:00:00+09:00", datetime(2024, 1, 1, 0, 0, tzinfo=UTC)),
    ],
)
def test_parse_cell_datetime(value, expected):
    parsed = parse_cell_datetime(value)
    assert parsed == expected
    assert parsed.tzinfo is not None


@pytest.mark.parametrize("value", [None, "", "   ", "not a date", "N/A"])
def test_parse_cell_datetime_unparseable(value):
    assert parse_cell_datetime(value) is None


def test_naive_value_interpreted_in_configured_timezone():
    parsed = parse_cell_datetime("2024-01-01 09:00:00", "Asia/Tokyo")
    assert parsed == datetime(2024, 1, 1, 0, 0, tzinfo=UTC)
    assert parsed.utcoffset() == timedelta(hours=9)


def test_selects_rows_strictly_after_checkpoint():
    sheet = _sheet(
        [
            ["id", "date_created"],
            ["1", "2024-01-01"],
            ["2", "2024-02-01"],
            ["3", "2024-03-01"],
        ]
    )
    checkpoint = datetime(2024, 2, 1, tzinfo=UTC)
    selection = select_new_rows(sheet, checkpoint, candidates=CANDIDATES)
    assert selection.date_column == "date_created"
    # equal to the checkpoint is excluded
    assert [r.row_number for r in selection.rows] == [4]
    assert selection.scanned_rows == 3


def test_no_checkpoint_selects_everything():
    sheet = _sheet([["id", "updated_at"], ["1", "1999-12-31"], ["2", "2030-01-01"]])
    selection = select_new_rows(sheet, NO_CHECKPOINT, candidates=CANDIDATES)
    assert selection.date_column == "updated_at"
    assert [r.row_number for r in selection.rows] == [2, 3]


def test_unparseable_dates_excluded_and_recorded():
    sheet = _sheet(
        [
            ["id", "date_created"],
            ["1", "garbage"],
            ["2", "2024-05-01"],
            ["3", ""],
        ]
    )
    selection = select_new_rows(sheet, NO_CHECKPOINT, candidates=CANDIDATES)
    assert [r.row_number for r in selection.rows] == [3]
    assert selection.unparseable_rows == [2, 4]


@pytest.mark.parametrize(
    "value",
    [
        "2024-03-31 02:30:00",  # spring-forward gap
        "2024-10-27 02:30:00",  # autumn overlap
    ],
)
def test_dst_switch_wall_clock_is_unparseable(value):
    assert parse_cell_datetime(value, "Europe/Berlin") is None


def test_dst_switch_rows_excluded_not_fatal():
    sheet = _sheet(
        [
            ["id", "date_created"],
            ["1", "2024-03-31 02:30:00"],
            ["2", "2024-03-31 03:30:00"],
            ["3", "2024-10-27 02:30:00"],
        ]
    )
    selection = select_new_rows(sheet, NO_CHECKPOINT, candidates=CANDIDATES, timezone="Europe/Berlin")
    assert [r.row_number for r in selection.rows] == [3]
    assert selection.unparseable_rows == [2, 4]


@pytest.mark.parametrize("value", ["now", "today", " Today "])
def test_relative_words_are_unparseable(value):
    assert parse_cell_datetime(value) is None


def test_no_date_column_requires_full_scan():
    sheet = _sheet([["id", "name"], ["1", "a"]], name="Plain")
    with pytest.raises(FullScanRequired, match="Plain"):
        select_new_rows(sheet, NO_CHECKPOINT, candidates=CANDIDATES)


def test_aware_checkpoint_in_other_zone_compares_correctly():
    sheet = _sheet([["id", "date_created"], ["1", "2024-01-01 10:00:00"]])
    checkpoint = datetime(2024, 1, 1, 18, 0, tzinfo=timezone(timedelta(hours=9)))  # 09:00Z
    selection = select_new_rows(sheet, checkpoint, candidates=CANDIDATES)
    assert [r.row_number for r in selection.rows] == [2]


def test_date_parse_failure_carries_row_number():
    err = DateParseFailure("S", 7, "date_created")
    assert err.row_number == 7
    assert "row 7" in str(err)
