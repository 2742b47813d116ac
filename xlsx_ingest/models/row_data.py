from __future__ import annotations

from dataclasses import dataclass

"""RowData model: one sheet row as named text cells.

Row 1 of a sheet is the header; data rows start at row 2, and row_number
always refers to the original sheet row so that log lines can point back
into the workbook.
"""

__all__ = [
    "DuplicateKey",
    "RowData",
]

DuplicateKey = tuple[str, ...]


@dataclass(frozen=True)
class RowData:
    """Logical representation of a single data row.

    values keeps header order; every value is text (empty cell -> "").
    """
    row_number: int
    values: dict[str, str]

    @property
    def columns(self) -> tuple[str, ...]:
        return tuple(self.values.keys())

    def get(self, column: str, default: str | None = None) -> str | None:
        return self.values.get(column, default)

    def __contains__(self, column: object) -> bool:
        return column in self.values
