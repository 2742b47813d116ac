from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from xlsx_ingest.models.row_data import RowData

"""Excel workbook reader (row source).

Row 1 of each sheet is the header; rows 2..N are data. Every cell is read as
text (dtype=str, no NA conversion) and empty cells become "". Row numbers
handed out by SheetSource are the original sheet row numbers.
"""

__all__ = [
    "SheetSource",
    "SourceNotFoundError",
    "read_workbook",
]

HEADER_ROW = 1
FIRST_DATA_ROW = 2


class SourceNotFoundError(Exception):
    """Raised when the workbook or a required sheet does not exist."""


@dataclass
class SheetSource:
    """One sheet exposed as a header plus numbered text rows."""
    sheet_name: str
    frame: pd.DataFrame  # raw cells, header row included at index 0

    @property
    def header(self) -> list[str]:
        if self.frame.empty:
            return []
        return [str(c).strip() for c in self.frame.iloc[0].tolist()]

    @property
    def last_row(self) -> int:
        """Sheet row number of the last row (header counts as row 1)."""
        return int(self.frame.shape[0])

    @property
    def total_rows(self) -> int:
        """Number of data rows (header excluded)."""
        return max(self.last_row - 1, 0)

    def row_at(self, row_number: int) -> RowData:
        if row_number < FIRST_DATA_ROW or row_number > self.last_row:
            raise IndexError(f"row {row_number} outside data rows of sheet '{self.sheet_name}'")
        cells = self.frame.iloc[row_number - 1].tolist()
        return RowData(row_number=row_number, values=dict(zip(self.header, cells, strict=False)))

    def rows_between(self, start: int, end: int) -> list[RowData]:
        """Data rows start..end (inclusive sheet row numbers), blank rows skipped."""
        start = max(start, FIRST_DATA_ROW)
        end = min(end, self.last_row)
        header = self.header
        rows: list[RowData] = []
        block = self.frame.iloc[start - 1:end]
        for offset, cells in enumerate(block.itertuples(index=False, name=None)):
            if all(c == "" for c in cells):
                continue
            rows.append(
                RowData(row_number=start + offset, values=dict(zip(header, cells, strict=False)))
            )
        return rows

    def iter_rows(self) -> Iterator[RowData]:
        header = self.header
        for row_number in range(FIRST_DATA_ROW, self.last_row + 1):
            cells = self.frame.iloc[row_number - 1].tolist()
            if all(c == "" for c in cells):
                continue
            yield RowData(row_number=row_number, values=dict(zip(header, cells, strict=False)))


def _as_text_frame(df: pd.DataFrame) -> pd.DataFrame:
    # dtype=str は NaN を残すので空文字へ寄せる
    return df.fillna("").astype(str)


def read_workbook(path: Path, target_sheets: Iterable[str] | None = None) -> dict[str, SheetSource]:
    """Read a workbook returning SheetSource objects keyed by sheet name.

    Parameters
    ----------
    path: Excel ファイルパス
    target_sheets: 対象シート (None なら全シート)。指定シートが無ければ SourceNotFoundError

    Raises
    ------
    SourceNotFoundError: file missing, or a requested sheet is absent
    """
    if not path.exists():
        raise SourceNotFoundError(f"Excel file not found: {path}")

    wanted = list(target_sheets) if target_sheets is not None else None
    sheets: dict[str, SheetSource] = {}
    with pd.ExcelFile(path) as xls:
        available = [str(n) for n in xls.sheet_names]
        if wanted is not None:
            missing = [s for s in wanted if s not in available]
            if missing:
                raise SourceNotFoundError(
                    f"sheet(s) not found in {path.name}: {', '.join(missing)}"
                )
        for name in available:
            if wanted is not None and name not in wanted:
                continue
            df = xls.parse(name, header=None, dtype=str, keep_default_na=False)
            sheets[name] = SheetSource(sheet_name=name, frame=_as_text_frame(df))
    return sheets
