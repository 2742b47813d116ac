from __future__ import annotations

import argparse
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from xlsx_ingest.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from xlsx_ingest.logging.audit_log import AuditLogBuffer
from xlsx_ingest.logging.init import log_summary, setup_logging
from xlsx_ingest.models.audit_record import AuditRecord
from xlsx_ingest.models.config_models import ExportConfig
from xlsx_ingest.services.observer import LoggingObserver
from xlsx_ingest.services.orchestrator import IngestionOrchestrator
from xlsx_ingest.services.summary import render_summary_line, render_table_counts

"""CLI entrypoint.

    python -m xlsx_ingest.cli -f data/export.xlsx -t full|incremental

Exit codes: 0 = export succeeded, 1 = any failure (config, connection,
missing file or sheet, schema, store write).
"""

EXIT_SUCCESS = 0
EXIT_FAILURE = 1


def resolve_dsn(cfg: ExportConfig) -> str:
    """Build the libpq DSN.

    Priority:
        1. DATABASE_URL / PGDSN (after .env has been loaded with override)
        2. PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. the `database` section of the config file
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _db_connection(cfg: ExportConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a cursor on an autocommit psycopg2 connection.

    Autocommit: every row insert commits on its own, so rows written before a
    failure stay in place and a unique violation does not poison the session.
    """
    conn = psycopg2.connect(resolve_dsn(cfg))
    conn.autocommit = True
    try:
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Excel -> PostgreSQL export with duplicate detection")
    p.add_argument("-f", "--file", help="Excel file path")
    p.add_argument(
        "-t", "--type", dest="export_type", choices=("full", "incremental"), default="full",
        help="Export type (full|incremental)",
    )
    p.add_argument("-c", "--config", type=Path, default=DEFAULT_CONFIG_PATH, help="Config YAML path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument("--inspect-data", action="store_true", help="Print sheet headers & first rows then exit")
    return p.parse_args(argv)


def _inspect_data(cfg: ExportConfig, path: Path) -> int:
    from xlsx_ingest.excel.reader import SourceNotFoundError, read_workbook

    try:
        sheets = read_workbook(path, target_sheets=None)
    except SourceNotFoundError as e:
        print(f"inspect: {e}")
        return EXIT_FAILURE
    mapped = {m.sheet_name: m.table_name for m in cfg.sheets}
    print(f"FILE: {path.name}")
    for name, sheet in sheets.items():
        table = mapped.get(name, "<unmapped>")
        print(f"  SHEET: {name} -> {table} rows={sheet.total_rows} cols={sheet.header}")
        sample = [r.values for r in sheet.rows_between(2, 4)]
        print("    sample_rows=", sample)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    # 空リスト [] のとき sys.argv を読まない (テストからの呼び出し)
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    logger = setup_logging(logging.DEBUG if args.debug else logging.INFO)
    logger.debug("debug mode enabled")

    load_dotenv(dotenv_path=Path(".env"), override=True)

    if not args.file:
        logger.error("Excel file path is required (-f/--file)")
        return EXIT_FAILURE
    excel_path = Path(args.file)
    if not excel_path.exists():
        logger.error(f"Excel file not found: {excel_path}")
        return EXIT_FAILURE

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FAILURE

    if args.inspect_data:
        return _inspect_data(cfg, excel_path)

    audit_log = AuditLogBuffer(cfg.audit_log_file)
    observer = LoggingObserver(logger, audit_log)
    try:
        with _db_connection(cfg) as cur:
            orchestrator = IngestionOrchestrator(cfg, cur, observer=observer)
            if args.export_type == "incremental":
                result = orchestrator.export_incremental(excel_path)
            else:
                result = orchestrator.export_all(excel_path)
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        audit_log.append(AuditRecord.create("ERROR", "EXPORT_FAILED", f"database: {e}"))
        return EXIT_FAILURE
    finally:
        audit_log.flush()

    log_summary(render_summary_line(result)[len("SUMMARY "):])
    if not result.success:
        logger.error(f"Export failed: {result.error}")
        return EXIT_FAILURE

    logger.info(f"Export completed successfully! Execution time: {result.elapsed_seconds:.2f} seconds")
    logger.info("Export Statistics:")
    for line in render_table_counts(result.table_counts):
        logger.info(line)
    return EXIT_SUCCESS

