"""Domain models for the Excel -> PostgreSQL ingestion pipeline.

This package contains the value objects shared by the reader, the database
layer and the orchestration services.
"""

from .config_models import DatabaseConfig, ExportConfig, SheetMappingConfig
from .export_result import ExportResult, SheetStat
from .row_data import DuplicateKey, RowData
from .run_state import ExportMode, RunState

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ExportConfig",
    "SheetMappingConfig",
    # Processing models
    "DuplicateKey",
    "RowData",
    "ExportMode",
    "RunState",
    # Results
    "ExportResult",
    "SheetStat",
]
