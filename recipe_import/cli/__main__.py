from __future__ import annotations

import argparse
import dataclasses
import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from recipe_import.config.loader import ConfigError, load_config
from recipe_import.db.import_log_store import (
    ImportLogStore,
    JsonLinesImportLogStore,
    PostgresImportLogStore,
)
from recipe_import.db.recipe_sink import InMemoryRecipeSink, PostgresRecipeSink, RecipeSink
from recipe_import.errors import ImportRejectedError, LogStoreError
from recipe_import.logging.error_log import ErrorLogBuffer
from recipe_import.logging.init import log_summary, set_level, setup_logging
from recipe_import.models.config_models import ImportSettings
from recipe_import.models.import_run import ImportRunResult, ImportStatus
from recipe_import.services.engine import StreamingImportEngine
from recipe_import.services.summary import render_summary_line

"""Command line entry point: import one recipe file.

    python -m recipe_import.cli recipes.csv --uploader 42 [--stream] [--dry-run]

Exit codes:
    0  SUCCESS (every row imported)
    2  PARTIAL or FAILED (row errors)
    1  fatal: config error, missing file, rejected file, DB or log store failure
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_CONFIG_PATH = Path("config/import.yml")

_SUFFIX_CONTENT_TYPES = {
    ".csv": "text/csv",
    ".json": "application/json",
}


def _resolve_dsn(settings: ImportSettings) -> str:
    """Connection parameters: .env / process environment first, config as fallback.

    DATABASE_URL or PGDSN is used whole if present; otherwise PGHOST/PGPORT/
    PGUSER/PGPASSWORD/PGDATABASE fill in from the config database section.
    """
    db_cfg = settings.database
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
def _db_connection(settings: ImportSettings) -> Iterator[Any]:  # pragma: no cover (needs a live DB)
    """psycopg2 connection + cursor. The sink commits per chunk; leftovers are committed on exit."""
    conn = psycopg2.connect(_resolve_dsn(settings))
    conn.autocommit = False
    cur = conn.cursor()
    try:
        yield cur
        if not conn.closed:
            conn.commit()
    except Exception:
        if not conn.closed:
            conn.rollback()
        raise
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Bulk recipe importer (CSV / JSON)")
    p.add_argument("file", nargs="?", help="CSV or JSON file to import")
    p.add_argument("--content-type", help="Declared type (text/csv, application/json, csv, json)")
    p.add_argument("--uploader", default="cli", help="Uploader id stored on the run record")
    p.add_argument("--stream", action="store_true", help="Stream the file chunk by chunk")
    p.add_argument("--chunk-size", type=int, help="Rows per chunk (overrides config)")
    p.add_argument("--config", type=Path, help=f"Settings YAML (default: {DEFAULT_CONFIG_PATH})")
    p.add_argument("--dry-run", action="store_true", help="Normalize and count without a database")
    p.add_argument("--recent", action="store_true", help="List the uploader's latest import runs and exit")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    return p.parse_args(argv)


def _load_settings(args: argparse.Namespace) -> ImportSettings:
    if args.config is not None:
        settings = load_config(args.config)
    elif DEFAULT_CONFIG_PATH.exists():
        settings = load_config(DEFAULT_CONFIG_PATH)
    else:
        settings = ImportSettings()
    if args.chunk_size is not None:
        if args.chunk_size < 1:
            raise ConfigError(f"--chunk-size must be >= 1, got {args.chunk_size}")
        settings = dataclasses.replace(settings, chunk_size=args.chunk_size)
    return settings


def infer_content_type(path: Path) -> str:
    suffix = path.suffix.lower()
    return _SUFFIX_CONTENT_TYPES.get(suffix, suffix.lstrip("."))


def _make_log_store(settings: ImportSettings, cursor: Any | None) -> ImportLogStore:
    if settings.log_store == "postgres" and cursor is not None:
        return PostgresImportLogStore(cursor, table=settings.tables.import_logs)
    return JsonLinesImportLogStore(settings.log_directory)


def _run_import(
    engine: StreamingImportEngine,
    path: Path,
    content_type: str,
    args: argparse.Namespace,
) -> ImportRunResult:
    if args.stream:
        with path.open("rb") as f:
            return engine.run_stream(f, content_type, uploader_id=args.uploader, file_name=path.name)
    return engine.run(path.read_bytes(), content_type, uploader_id=args.uploader, file_name=path.name)


def _import_file(args: argparse.Namespace, settings: ImportSettings, logger: logging.Logger) -> int:
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"file not found: {path}")
        return EXIT_FATAL
    content_type = args.content_type or infer_content_type(path)
    error_log = ErrorLogBuffer(settings.log_directory)

    try:
        if args.dry_run:
            sink: RecipeSink = InMemoryRecipeSink()
            engine = StreamingImportEngine(
                sink, _make_log_store(settings, None), settings, error_log=error_log
            )
            result = _run_import(engine, path, content_type, args)
            mode = "dry-run"
        else:
            with _db_connection(settings) as cur:
                sink = PostgresRecipeSink(cur, table=settings.tables.recipes, uploader_id=args.uploader)
                engine = StreamingImportEngine(
                    sink, _make_log_store(settings, cur), settings, error_log=error_log
                )
                result = _run_import(engine, path, content_type, args)
            mode = "live"
    except ImportRejectedError as e:
        logger.error(f"rejected: {e}")
        return EXIT_FATAL
    except LogStoreError as e:
        logger.error(f"log store: {e}")
        return EXIT_FATAL
    except psycopg2.Error as e:
        logger.error(f"database: {e}")
        return EXIT_FATAL

    logger.info(f"mode={mode} imported={result.imported} errors={len(result.errors)}")
    for err in result.errors[:20]:
        logger.warning(f"row={err.row} {err.message}")
    if len(result.errors) > 20:
        logger.warning(f"... {len(result.errors) - 20} more errors (see {error_log.file_path})")

    # log_summary が "SUMMARY " を付与するので先頭を落とす
    log_summary(render_summary_line(path.name, result)[len("SUMMARY "):])

    if result.status is ImportStatus.SUCCESS:
        return EXIT_SUCCESS_ALL
    return EXIT_PARTIAL_FAILURE


def _list_recent(args: argparse.Namespace, settings: ImportSettings, logger: logging.Logger) -> int:
    try:
        if args.dry_run or settings.log_store == "jsonl":
            records = _make_log_store(settings, None).recent(args.uploader)
        else:
            with _db_connection(settings) as cur:
                records = _make_log_store(settings, cur).recent(args.uploader)
    except (LogStoreError, psycopg2.Error) as e:
        logger.error(f"log store: {e}")
        return EXIT_FATAL
    for r in records:
        print(
            f"{r.created_at.isoformat()} {r.status.value:<8} {r.file_name} "
            f"total={r.total_records} ok={r.successful_records} failed={r.failed_records}"
        )
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # [] (テストからの呼び出し) を sys.argv にフォールバックさせない
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    _load_env_file(Path(".env"), override=True)

    try:
        settings = _load_settings(args)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.debug:
        set_level(logging.DEBUG)
        logger.debug("debug mode enabled")

    if args.recent:
        return _list_recent(args, settings, logger)

    if not args.file:
        logger.error("no input file given")
        return EXIT_FATAL

    return _import_file(args, settings, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
