from __future__ import annotations

import gc
import logging
import math
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import replace
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.batch_insert import BatchResult, StoreWriteError, insert_batch
from ..db.checkpoint import CheckpointStore
from ..db.schema import (
    TableSchema,
    count_rows,
    ensure_identity_index,
    ensure_table,
    fetch_table_columns,
)
from ..excel.reader import FIRST_DATA_ROW, SheetSource, read_workbook
from ..models.config_models import ExportConfig, SheetMappingConfig
from ..models.export_result import BatchStatsAccumulator, ExportResult, SheetStat
from ..models.row_data import RowData
from ..models.run_state import ExportMode, RunState
from .incremental import DateParseFailure, FullScanRequired, select_new_rows
from .observer import BatchProgress, IngestObserver, NullObserver
from .progress import ChunkProgress

"""Export orchestration.

Drives one export invocation over a workbook:

- full        : every configured sheet, in config order, chunked from row 2
- incremental : sheets flagged incremental; only rows newer than the table's
                checkpoint, falling back to a full export of the sheet when
                it has no date column. The checkpoint is advanced after the
                sheet completes, also when no new rows were found.

Sheets and chunks are processed strictly sequentially on one cursor; the
duplicate check relies on earlier batches being committed. Every error is
caught at export_all / export_incremental and returned as
ExportResult(success=False). Completed batches are not rolled back.
"""

logger = logging.getLogger(__name__)

Chunk = tuple[int, int, list[RowData]]  # (first_row, last_row, rows)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class IngestionOrchestrator:
    """Runs full and incremental exports against one database cursor.

    Args:
        config: Frozen export configuration
        cursor: psycopg2 cursor of an autocommit connection
        observer: Receives table / batch / error / checkpoint events
        clock: Source of "now" for checkpoints (UTC-aware)
    """

    def __init__(
        self,
        config: ExportConfig,
        cursor: Any,
        observer: IngestObserver | None = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = config
        self.cursor = cursor
        self.observer: IngestObserver = observer or NullObserver()
        self.clock = clock
        self.checkpoints = CheckpointStore(cursor, config.checkpoint_table)
        self.state = RunState.IDLE
        self._inserted = 0
        self._skipped = 0
        self._current_sheet = ""
        self._current_table = ""

    def _transition(self, state: RunState) -> None:
        if state is not self.state:
            logger.debug("state %s -> %s", self.state.value, state.value)
        self.state = state

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------
    def export_all(self, path: Path) -> ExportResult:
        """Full export of every configured sheet (primary first)."""
        return self._run(path, ExportMode.FULL, self.config.sheets, self.run_full)

    def export_incremental(self, path: Path) -> ExportResult:
        """Incremental export of the sheets flagged `incremental`."""
        mappings = self.config.incremental_sheets
        if not mappings:
            logger.warning("no sheet mapping is flagged incremental; nothing to export")
        return self._run(path, ExportMode.INCREMENTAL, mappings, self.run_incremental)

    def _run(
        self,
        path: Path,
        mode: ExportMode,
        mappings: Sequence[SheetMappingConfig],
        runner: Callable[[SheetSource, SheetMappingConfig], SheetStat],
    ) -> ExportResult:
        start = time.perf_counter()
        self._inserted = 0
        self._skipped = 0
        self._current_sheet = ""
        self._current_table = ""
        stats: list[SheetStat] = []
        logger.info(f"Starting {mode.value} export from: {path}")
        try:
            self._transition(RunState.LOADING)
            # 全対象シートの存在確認を書き込み前に行う (SourceNotFoundError)
            sheets = read_workbook(path, target_sheets=[m.sheet_name for m in mappings])
            if mode is ExportMode.INCREMENTAL and mappings:
                self.checkpoints.ensure()
            for mapping in mappings:
                stats.append(runner(sheets[mapping.sheet_name], mapping))
            counts = {s.table_name: count_rows(self.cursor, s.table_name) for s in stats}
        except Exception as e:
            self._transition(RunState.FAILED)
            self.observer.on_error(
                e, sheet=self._current_sheet, table=self._current_table, row=getattr(e, "row_number", -1)
            )
            return ExportResult(
                success=False,
                mode=mode,
                rows_inserted=self._inserted,
                rows_skipped=self._skipped,
                elapsed_seconds=time.perf_counter() - start,
                state=self.state,
                error=str(e),
                sheet_stats=stats,
            )

        self._transition(RunState.DONE)
        elapsed = time.perf_counter() - start
        logger.info(f"{mode.value.capitalize()} export completed successfully in {elapsed:.2f} seconds")
        return ExportResult(
            success=True,
            mode=mode,
            rows_inserted=self._inserted,
            rows_skipped=self._skipped,
            elapsed_seconds=elapsed,
            state=self.state,
            sheet_stats=stats,
            table_counts=counts,
        )

    # ------------------------------------------------------------------
    # Per-sheet operations
    # ------------------------------------------------------------------
    def run_full(self, sheet: SheetSource, mapping: SheetMappingConfig) -> SheetStat:
        """Export every data row of `sheet` in chunks of batch_size."""
        table_columns = self._prepare_table(sheet, mapping)
        logger.info(f"Sheet {sheet.sheet_name} has {sheet.total_rows} data rows")

        batch_size = self.config.batch_size
        total_chunks = math.ceil(sheet.total_rows / batch_size)

        def chunks() -> Iterator[Chunk]:
            for index in range(total_chunks):
                first = index * batch_size + FIRST_DATA_ROW
                last = min(first + batch_size - 1, sheet.last_row)
                yield first, last, sheet.rows_between(first, last)

        return self._write_chunks(sheet, mapping, table_columns, chunks(), total_chunks, ExportMode.FULL)

    def run_incremental(self, sheet: SheetSource, mapping: SheetMappingConfig) -> SheetStat:
        """Export rows newer than the table checkpoint, then advance it."""
        self._current_sheet = sheet.sheet_name
        self._current_table = mapping.table_name
        last_checkpoint = self.checkpoints.read(mapping.table_name)

        self._transition(RunState.FILTERING)
        try:
            selection = select_new_rows(
                sheet,
                last_checkpoint,
                candidates=mapping.date_columns,
                timezone=self.config.timezone,
            )
        except FullScanRequired as e:
            logger.info(f"{e}; performing full export")
            stat = self.run_full(sheet, mapping)
            stat = replace(stat, mode=ExportMode.INCREMENTAL, fell_back_to_full=True)
        else:
            for row_number in selection.unparseable_rows:
                self.observer.on_error(
                    DateParseFailure(sheet.sheet_name, row_number, selection.date_column),
                    sheet=sheet.sheet_name,
                    table=mapping.table_name,
                    row=row_number,
                    fatal=False,
                )
            table_columns = self._prepare_table(sheet, mapping)
            batch_size = self.config.batch_size
            rows = selection.rows
            total_chunks = math.ceil(len(rows) / batch_size)

            def chunks() -> Iterator[Chunk]:
                for index in range(total_chunks):
                    part = rows[index * batch_size:(index + 1) * batch_size]
                    yield part[0].row_number, part[-1].row_number, part

            stat = self._write_chunks(
                sheet, mapping, table_columns, chunks(), total_chunks, ExportMode.INCREMENTAL
            )
            stat = replace(stat, unparseable_dates=len(selection.unparseable_rows))

        self._transition(RunState.CHECKPOINTING)
        checkpoint = self.checkpoints.advance(mapping.table_name, self.clock())
        self.observer.on_checkpoint_advance(checkpoint)
        return stat

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _prepare_table(self, sheet: SheetSource, mapping: SheetMappingConfig) -> list[str]:
        """Ensure the destination table; return its current data columns."""
        self._transition(RunState.LOADING)
        self._current_sheet = sheet.sheet_name
        self._current_table = mapping.table_name
        schema: TableSchema = ensure_table(
            self.cursor, mapping.table_name, sheet.header, surrogate_key=self.config.surrogate_key
        )
        self.observer.on_table_ensured(sheet.sheet_name, schema)
        if self.config.identity_index != "none":
            ensure_identity_index(
                self.cursor,
                mapping.table_name,
                [c for c in mapping.identity_columns if c in schema.columns],
                unique=self.config.identity_index == "unique",
            )
        table_columns = fetch_table_columns(self.cursor, mapping.table_name, self.config.surrogate_key)
        if set(table_columns) != set(schema.columns):
            logger.warning(
                "table %s columns differ from sheet %s header; mismatching rows will be skipped",
                mapping.table_name,
                sheet.sheet_name,
            )
        return table_columns

    def _write_chunks(
        self,
        sheet: SheetSource,
        mapping: SheetMappingConfig,
        table_columns: list[str],
        chunks: Iterator[Chunk],
        total_chunks: int,
        mode: ExportMode,
    ) -> SheetStat:
        accumulator = BatchStatsAccumulator()
        inserted = duplicates = mismatched = 0

        self._transition(RunState.CHUNKING)
        with ChunkProgress(total_chunks, description=sheet.sheet_name) as progress:
            for index, (first_row, last_row, rows) in enumerate(chunks, start=1):
                self._transition(RunState.WRITING)
                batch_start = time.perf_counter()
                try:
                    result: BatchResult = insert_batch(
                        self.cursor,
                        mapping.table_name,
                        rows,
                        identity_columns=mapping.identity_columns,
                        table_columns=table_columns,
                        strategy=self.config.duplicate_strategy,
                        metrics_callback=lambda m: accumulator.add_batch_time(m.elapsed_seconds),
                    )
                except StoreWriteError as e:
                    self._inserted += e.inserted_rows
                    self._skipped += e.skipped_rows
                    raise
                inserted += result.inserted_rows
                duplicates += result.duplicate_rows
                mismatched += result.mismatched_rows
                self._inserted += result.inserted_rows
                self._skipped += result.skipped_rows
                for mismatch in result.mismatches:
                    self.observer.on_error(
                        mismatch,
                        sheet=sheet.sheet_name,
                        table=mapping.table_name,
                        row=mismatch.row_number,
                        fatal=False,
                    )

                self.observer.on_batch_complete(
                    BatchProgress(
                        sheet_name=sheet.sheet_name,
                        table_name=mapping.table_name,
                        batch_index=index,
                        total_batches=total_chunks,
                        first_row=first_row,
                        last_row=last_row,
                        inserted_rows=result.inserted_rows,
                        duplicate_rows=result.duplicate_rows,
                        mismatched_rows=result.mismatched_rows,
                        elapsed_seconds=time.perf_counter() - batch_start,
                    )
                )
                progress.advance(inserted=inserted, skipped=duplicates + mismatched)

                if index % self.config.gc_interval == 0:
                    gc.collect()
                self._transition(RunState.CHUNKING)

        total_batches, avg_batch, p95_batch = accumulator.get_stats()
        return SheetStat(
            sheet_name=sheet.sheet_name,
            table_name=mapping.table_name,
            mode=mode,
            inserted_rows=inserted,
            duplicate_rows=duplicates,
            mismatched_rows=mismatched,
            total_batches=total_batches,
            avg_batch_seconds=avg_batch,
            p95_batch_seconds=p95_batch,
        )
