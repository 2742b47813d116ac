from __future__ import annotations

import statistics
from dataclasses import dataclass, field

from .run_state import ExportMode, RunState

"""Export result models.

ExportResult is what the orchestrator hands back to the CLI for one run;
SheetStat is the per-sheet breakdown, including batch timing statistics.
"""


@dataclass(frozen=True)
class SheetStat:
    """Per-sheet export statistics.

    skipped_rows = duplicate_rows + mismatched_rows.
    """
    sheet_name: str
    table_name: str
    mode: ExportMode
    inserted_rows: int = 0
    duplicate_rows: int = 0
    mismatched_rows: int = 0
    unparseable_dates: int = 0  # incremental: rows excluded for bad dates
    fell_back_to_full: bool = False  # incremental without date column
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0

    @property
    def skipped_rows(self) -> int:
        return self.duplicate_rows + self.mismatched_rows


@dataclass(frozen=True)
class ExportResult:
    """Structured result of one export invocation."""
    success: bool
    mode: ExportMode
    rows_inserted: int
    rows_skipped: int
    elapsed_seconds: float
    state: RunState
    error: str | None = None
    sheet_stats: list[SheetStat] = field(default_factory=list)
    table_counts: dict[str, int] = field(default_factory=dict)  # 成功時のみ


class BatchStatsAccumulator:
    """Helper class to accumulate batch timing statistics for SheetStat."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Calculate batch statistics.

        Returns:
            tuple: (total_batches, avg_batch_seconds, p95_batch_seconds)
        """
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            # 95th percentile (19th out of 20 quantiles, 0-indexed)
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
