from __future__ import annotations

from dataclasses import dataclass

"""Config dataclasses for the Excel -> PostgreSQL ingestion pipeline.

The loader in xlsx_ingest/config/loader.py builds these once per process;
every component receives the resulting ExportConfig explicitly and never
reads ambient state.
"""

DEFAULT_BATCH_SIZE = 1000
DEFAULT_GC_INTERVAL = 10
DEFAULT_DUPLICATE_CHECK_COLUMNS: tuple[str, ...] = ("id", "name", "date_created")
DEFAULT_DATE_COLUMNS: tuple[str, ...] = ("date_created", "updated_at")
DEFAULT_CHECKPOINT_TABLE = "export_log"
DEFAULT_SURROGATE_KEY = "row_id"
DEFAULT_AUDIT_LOG_FILE = "logs/export_log.jsonl"

DUPLICATE_STRATEGIES = ("row", "batch")
IDENTITY_INDEX_MODES = ("none", "plain", "unique")


@dataclass(frozen=True)
class DatabaseConfig:
    """Database connection configuration.

    Used as fallback when environment variables are not set.
    Environment variables take precedence over these values.
    """
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class SheetMappingConfig:
    """Mapping of one workbook sheet onto one destination table."""
    sheet_name: str
    table_name: str
    identity_columns: tuple[str, ...]  # 重複判定列 (空なら常に挿入)
    date_columns: tuple[str, ...]  # incremental 用日付列候補 (優先順)
    incremental: bool = False  # incremental モードの対象か


@dataclass(frozen=True)
class ExportConfig:
    """Root configuration object for an export run."""
    sheets: tuple[SheetMappingConfig, ...]  # config order = processing order
    batch_size: int = DEFAULT_BATCH_SIZE
    gc_interval: int = DEFAULT_GC_INTERVAL
    duplicate_strategy: str = "row"
    identity_index: str = "none"
    surrogate_key: str = DEFAULT_SURROGATE_KEY
    checkpoint_table: str = DEFAULT_CHECKPOINT_TABLE
    audit_log_file: str = DEFAULT_AUDIT_LOG_FILE
    timezone: str = "UTC"
    database: DatabaseConfig = DatabaseConfig()

    @property
    def incremental_sheets(self) -> tuple[SheetMappingConfig, ...]:
        return tuple(s for s in self.sheets if s.incremental)

    def sheet(self, sheet_name: str) -> SheetMappingConfig:
        for mapping in self.sheets:
            if mapping.sheet_name == sheet_name:
                return mapping
        raise KeyError(sheet_name)
