from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

import pandas as pd

from xlsx_ingest.excel.reader import SheetSource
from xlsx_ingest.models.row_data import RowData

"""Incremental row selection.

A sheet qualifies for incremental export when it has one of the candidate
date columns (first match in priority order wins). A row is selected iff its
parsed date is strictly later than the last checkpoint. Cells that cannot be
parsed exclude the row; they are counted and logged, never fatal.
"""

__all__ = [
    "DateParseFailure",
    "FullScanRequired",
    "IncrementalSelection",
    "find_date_column",
    "parse_cell_datetime",
    "select_new_rows",
]

logger = logging.getLogger(__name__)

# pandas は "now" / "today" を実行時刻として解釈する
_RELATIVE_TOKENS = frozenset({"now", "today"})


class FullScanRequired(Exception):
    """The sheet has no recognizable date column; export it in full instead."""


class DateParseFailure(Exception):
    """A date cell could not be parsed; the row is excluded from selection."""

    def __init__(self, sheet_name: str, row_number: int, column: str) -> None:
        super().__init__(f"sheet '{sheet_name}' row {row_number}: unparseable {column} value")
        self.row_number = row_number


@dataclass
class IncrementalSelection:
    date_column: str
    rows: list[RowData] = field(default_factory=list)
    unparseable_rows: list[int] = field(default_factory=list)  # sheet row numbers
    scanned_rows: int = 0


def find_date_column(header: Sequence[str], candidates: Sequence[str]) -> str | None:
    for name in candidates:
        if name in header:
            return name
    return None


def parse_cell_datetime(value: str | None, timezone: str = "UTC") -> datetime | None:
    """Best-effort parse of a date-like cell.

    Naive values are interpreted in `timezone`; aware values are converted to
    it. Returns None for empty or unparseable text, for wall-clock times that
    do not exist or are ambiguous in `timezone` (DST switch), and for relative
    words such as "now" that pandas would resolve to the current time.
    """
    if value is None or not value.strip():
        return None
    if value.strip().lower() in _RELATIVE_TOKENS:
        return None
    try:
        with warnings.catch_warnings():
            # dayfirst 推定などの UserWarning は抑止
            warnings.simplefilter("ignore", UserWarning)
            ts = pd.to_datetime(value.strip())
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(ts):
        return None
    if ts.tzinfo is None:
        # 夏時間の切替で存在しない / 重複する壁時計時刻は NaT
        ts = ts.tz_localize(timezone, ambiguous="NaT", nonexistent="NaT")
        if pd.isna(ts):
            return None
    else:
        ts = ts.tz_convert(timezone)
    return ts.to_pydatetime()


def select_new_rows(
    sheet: SheetSource,
    last_checkpoint: datetime,
    *,
    candidates: Sequence[str],
    timezone: str = "UTC",
) -> IncrementalSelection:
    """Rows of `sheet` whose date column is strictly after last_checkpoint.

    Raises:
        FullScanRequired: none of `candidates` is in the sheet header
    """
    date_column = find_date_column(sheet.header, candidates)
    if date_column is None:
        raise FullScanRequired(
            f"sheet '{sheet.sheet_name}' has none of the date columns {list(candidates)}"
        )

    selection = IncrementalSelection(date_column=date_column)
    for row in sheet.iter_rows():
        selection.scanned_rows += 1
        parsed = parse_cell_datetime(row.get(date_column), timezone)
        if parsed is None:
            selection.unparseable_rows.append(row.row_number)
            logger.debug(
                "sheet=%s row=%d unparseable %s=%r excluded",
                sheet.sheet_name, row.row_number, date_column, row.get(date_column),
            )
            continue
        if parsed > last_checkpoint:
            selection.rows.append(row)

    logger.info(
        "sheet=%s found %d new rows after %s (scanned=%d unparseable=%d)",
        sheet.sheet_name,
        len(selection.rows),
        last_checkpoint.isoformat(),
        selection.scanned_rows,
        len(selection.unparseable_rows),
    )
    return selection
