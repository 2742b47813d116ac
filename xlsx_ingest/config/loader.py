from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from xlsx_ingest.models.config_models import (
    DEFAULT_AUDIT_LOG_FILE,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHECKPOINT_TABLE,
    DEFAULT_DATE_COLUMNS,
    DEFAULT_DUPLICATE_CHECK_COLUMNS,
    DEFAULT_GC_INTERVAL,
    DEFAULT_SURROGATE_KEY,
    DatabaseConfig,
    ExportConfig,
    SheetMappingConfig,
)

"""Config loader.

Responsibilities:
- Load YAML config (default: config/export.yml)
- Validate against config_schema.json (shipped next to this module)
- Apply defaults once and freeze the result into ExportConfig

Per-sheet identity_columns / date_columns override the global
duplicate_check_columns / date_columns.
"""

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/export.yml")


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the JSON schema.

    Raises:
        ConfigError: If the schema file is missing or not valid JSON, or the
            config data fails validation (missing keys, wrong types, extra keys).
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")

    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _validate_timezone(name: str) -> None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigError(f"unknown timezone: {name}") from e


def build_config(data: dict[str, Any]) -> ExportConfig:
    """Validate a raw mapping and build the immutable ExportConfig."""
    if not isinstance(data, dict):
        raise ConfigError(f"config root must be a mapping, got {type(data).__name__}")
    _validate_config_schema(data)

    identity_default = tuple(data.get("duplicate_check_columns", DEFAULT_DUPLICATE_CHECK_COLUMNS))
    date_default = tuple(data.get("date_columns", DEFAULT_DATE_COLUMNS))

    sheets: list[SheetMappingConfig] = []
    seen_tables: set[str] = set()
    for sheet_name, mapping in data["sheet_mappings"].items():
        table = mapping["table"]
        if table in seen_tables:
            raise ConfigError(f"table '{table}' is mapped by more than one sheet")
        seen_tables.add(table)
        sheets.append(
            SheetMappingConfig(
                sheet_name=str(sheet_name),
                table_name=table,
                identity_columns=tuple(mapping.get("identity_columns", identity_default)),
                date_columns=tuple(mapping.get("date_columns", date_default)),
                incremental=bool(mapping.get("incremental", False)),
            )
        )

    tz = data.get("timezone", "UTC")
    _validate_timezone(tz)

    db_raw = data.get("database") or {}
    db = DatabaseConfig(
        host=db_raw.get("host"),
        port=db_raw.get("port"),
        user=db_raw.get("user"),
        password=db_raw.get("password"),
        database=db_raw.get("database"),
        dsn=db_raw.get("dsn"),
    )
    return ExportConfig(
        sheets=tuple(sheets),
        batch_size=data.get("batch_size", DEFAULT_BATCH_SIZE),
        gc_interval=data.get("gc_interval", DEFAULT_GC_INTERVAL),
        duplicate_strategy=data.get("duplicate_strategy", "row"),
        identity_index=data.get("identity_index", "none"),
        surrogate_key=data.get("surrogate_key", DEFAULT_SURROGATE_KEY),
        checkpoint_table=data.get("checkpoint_table", DEFAULT_CHECKPOINT_TABLE),
        audit_log_file=data.get("audit_log_file", DEFAULT_AUDIT_LOG_FILE),
        timezone=tz,
        database=db,
    )


def load_config(path: Path) -> ExportConfig:
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    return build_config(data)
