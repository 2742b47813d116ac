#!/usr/bin/env python3
"""Generate a synthetic two-sheet workbook for manual and performance runs.

Layout matches what the exporter reads:
- Row 1: header row (id, name, date_created, extra text columns)
- Row 2+: data rows

The secondary sheet gets dates spread over a recent range so that
incremental exports have something to select. --duplicate-ratio repeats
earlier ids to exercise duplicate detection.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import numpy as np
import pandas as pd


def generate_sheet(rows: int, extra_cols: int, seed: int = 42, duplicate_ratio: float = 0.0) -> pd.DataFrame:
    """Build one sheet of synthetic rows.

    Args:
        rows: Number of data rows
        extra_cols: Additional free-text columns after id/name/date_created
        seed: Random seed for reproducible data
        duplicate_ratio: Share of rows (0..1) that repeat an earlier row

    Returns:
        DataFrame whose columns become the header row
    """
    rng = np.random.default_rng(seed)
    ids = np.arange(1, rows + 1)
    date_range = pd.date_range("2024-01-01", "2024-12-31", periods=365)
    data: dict[str, list[object]] = {
        "id": ids.tolist(),
        "name": [f"Item_{rng.integers(1000, 9999)}_{chr(65 + (j % 26))}" for j in range(rows)],
        "date_created": pd.DatetimeIndex(rng.choice(date_range.values, rows))
        .strftime("%Y-%m-%d %H:%M:%S")
        .tolist(),
    }
    categories = ["Electronics", "Clothing", "Books", "Food", "Sports", "Home"]
    for i in range(extra_cols):
        if i % 2 == 0:
            data[f"category_{i}"] = rng.choice(categories, rows).tolist()
        else:
            data[f"amount_{i}"] = np.round(rng.uniform(0.01, 9999.99, rows), 2).tolist()

    df = pd.DataFrame(data)
    if duplicate_ratio > 0 and rows > 1:
        n_dup = int(rows * duplicate_ratio)
        # 後半の行を前半の行で上書き (同一 identity)
        sources = rng.integers(0, rows // 2 or 1, n_dup)
        targets = rng.choice(np.arange(rows // 2, rows), size=min(n_dup, rows - rows // 2), replace=False)
        for src, dst in zip(sources, targets, strict=False):
            df.iloc[dst] = df.iloc[src]
    return df


def create_workbook(
    output_path: Path,
    primary_rows: int,
    secondary_rows: int,
    extra_cols: int,
    sheet_names: tuple[str, str] = ("MainData", "SupplementaryData"),
    seed: int = 42,
    duplicate_ratio: float = 0.0,
) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
        for offset, (name, rows) in enumerate(zip(sheet_names, (primary_rows, secondary_rows), strict=True)):
            df = generate_sheet(rows, extra_cols, seed + offset, duplicate_ratio)
            df.to_excel(writer, sheet_name=name, header=True, index=False)

    print(f"Created Excel file: {output_path}")
    print(f"  {sheet_names[0]}: {primary_rows:,} rows")
    print(f"  {sheet_names[1]}: {secondary_rows:,} rows")
    print(f"  Columns per sheet: {3 + extra_cols}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic workbook for xlsx-ingest",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s data/sample.xlsx
  %(prog)s data/large.xlsx --primary-rows 900000 --secondary-rows 17000
  %(prog)s data/dups.xlsx --duplicate-ratio 0.1
        """,
    )
    parser.add_argument("output", type=Path, help="Output Excel file path")
    parser.add_argument("--primary-rows", type=int, default=10_000, help="Rows in the primary sheet")
    parser.add_argument("--secondary-rows", type=int, default=1_000, help="Rows in the secondary sheet")
    parser.add_argument("--extra-cols", type=int, default=4, help="Extra columns after id/name/date_created")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    parser.add_argument("--duplicate-ratio", type=float, default=0.0, help="Share of repeated rows (0..1)")
    args = parser.parse_args()

    if args.primary_rows <= 0 or args.secondary_rows <= 0:
        print("Error: row counts must be positive", file=sys.stderr)
        return 1
    if args.extra_cols < 0:
        print("Error: --extra-cols must not be negative", file=sys.stderr)
        return 1
    if not 0.0 <= args.duplicate_ratio <= 1.0:
        print("Error: --duplicate-ratio must be within 0..1", file=sys.stderr)
        return 1

    create_workbook(
        args.output,
        args.primary_rows,
        args.secondary_rows,
        args.extra_cols,
        seed=args.seed,
        duplicate_ratio=args.duplicate_ratio,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
