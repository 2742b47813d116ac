from __future__ import annotations

from ..models.export_result import ExportResult

"""Summary rendering for the CLI.

SUMMARY line format:
    SUMMARY mode={full|incremental} success={true|false} inserted={n}
    skipped={n} sheets={n} elapsed_sec={x}
"""


def _format_number(value: float) -> str:
    # Handle very small numbers and integer values appropriately
    if value == 0:
        return "0"
    if value == int(value):
        return str(int(value))
    if value < 0.01:
        # avoid scientific notation
        return f"{value:.6f}".rstrip('0').rstrip('.')
    return f"{value:.2f}".rstrip('0').rstrip('.')


def render_summary_line(result: ExportResult) -> str:
    """Render a SUMMARY line from ExportResult.

    Examples:
        >>> from xlsx_ingest.models.run_state import ExportMode, RunState
        >>> result = ExportResult(
        ...     success=True, mode=ExportMode.FULL, rows_inserted=1000,
        ...     rows_skipped=3, elapsed_seconds=2.0, state=RunState.DONE,
        ... )
        >>> render_summary_line(result)
        'SUMMARY mode=full success=true inserted=1000 skipped=3 sheets=0 elapsed_sec=2'
    """
    return (
        f"SUMMARY mode={result.mode.value} "
        f"success={'true' if result.success else 'false'} "
        f"inserted={result.rows_inserted} "
        f"skipped={result.rows_skipped} "
        f"sheets={len(result.sheet_stats)} "
        f"elapsed_sec={_format_number(result.elapsed_seconds)}"
    )


def render_table_counts(table_counts: dict[str, int]) -> list[str]:
    """Per-table record counts, one `  table: 1,234 records` line each."""
    return [f"  {table}: {count:,} records" for table, count in table_counts.items()]
