from __future__ import annotations

import argparse
import asyncio
import locale
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, AppConfig, ConfigError, load_config
from ..db.entity_store import EntityBackend, EntityError, InMemoryBackend
from ..db.postgres_store import PostgresBackend
from ..grid.editor import GridEditor
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, setup_logging
from ..models.mapping import CUSTOM_PREFIX
from ..services.importer import ImportSession, ImportSessionError
from ..services.progress import ImportProgress
from ..services.summary import render_summary_line
from ..integrations.outbound import import_summary_email, send_email

"""Command-line client importer.

    python -m clientdesk.cli clients.xlsx [--config PATH] [--debug]
        [--inspect-data] [--map HEADER=TARGET ...] [--export-csv OUT]

Flow: load .env and config, open the backend (PostgreSQL, or in-memory mock
mode when the database is unreachable), upload + parse + auto-map the file,
apply ``--map`` overrides, commit in batches, print the SUMMARY line.

Exit codes: 0 all rows created, 2 some rows failed, 1 fatal error.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

logger = logging.getLogger(__name__)


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _mapping_arg(text: str) -> tuple[str, str | None]:
    header, sep, target = text.partition("=")
    if not sep or not header.strip():
        raise argparse.ArgumentTypeError(f"expected HEADER=TARGET, got {text!r}")
    return header.strip(), target.strip() or None


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="clientdesk", description="Spreadsheet -> client records importer")
    p.add_argument("file", type=Path, help="CSV or Excel file to import")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    p.add_argument(
        "--inspect-data",
        action="store_true",
        help="Print headers, proposed mapping and the first rows, then exit",
    )
    p.add_argument(
        "--map",
        dest="mappings",
        action="append",
        type=_mapping_arg,
        default=[],
        metavar="HEADER=TARGET",
        help="Override the mapping of one header (empty TARGET = custom field)",
    )
    p.add_argument("--export-csv", type=Path, default=None, metavar="OUT", help="Write all clients to a CSV file")
    return p.parse_args(argv)


def _apply_locale(name: str | None) -> None:
    if not name:
        return
    try:
        locale.setlocale(locale.LC_COLLATE, name)
    except locale.Error as e:
        logger.warning("Locale %s not available, using default collation: %s", name, e)


async def _open_backend(cfg: AppConfig) -> tuple[EntityBackend, str]:
    if cfg.backend == "memory" or os.getenv("DISABLE_DB_CONNECT") == "1":
        return InMemoryBackend(), "mock"
    try:
        return await PostgresBackend.connect(cfg.database.resolve_dsn()), "live"
    except EntityError as e:
        logger.info("DB connection failed -> fallback to mock mode: %s", e.message)
        return InMemoryBackend(), "mock"


def _inspect(session: ImportSession) -> None:
    print(f"FILE: {session.source} rows={len(session.rows)} headers={session.headers}")
    for header in session.headers:
        print(f"  {header!r} -> {session.mapping.get(header) or '(custom field)'}")
    for row in session.rows[:3]:
        print("  sample_row=", row.values)


async def _export(backend: EntityBackend, session: ImportSession, out: Path) -> None:
    client = backend.entity("Client")
    editor = GridEditor(client, await client.list())
    for header, target in session.effective_mapping().items():
        if target and target.startswith(CUSTOM_PREFIX):
            slug = target[len(CUSTOM_PREFIX):]
            if not editor.has_column(slug):
                editor.add_column(header, key=slug)
    editor.export_csv(out)
    logger.info("Exported %d client(s) to %s", len(editor.records), out)


async def _run(args: argparse.Namespace, cfg: AppConfig) -> int:
    backend, mode = await _open_backend(cfg)
    error_log = ErrorLogBuffer()
    try:
        session = ImportSession(backend.entity("Client"), cfg.importer, error_log=error_log)
        try:
            await session.load_file(args.file)
        except ImportSessionError as e:
            logger.error("import: %s", e.message)
            error_log.flush()
            return EXIT_FATAL

        if args.inspect_data:
            _inspect(session)
            return EXIT_SUCCESS_ALL

        for header, target in args.mappings:
            try:
                session.update_mapping(header, target)
            except (KeyError, ValueError) as e:
                logger.error("--map %s=%s: %s", header, target or "", e)
                return EXIT_FATAL

        stats = session.stats
        logger.info("mode=%s mapped=%d/%d headers", mode, stats.mapped, stats.total)
        with ImportProgress(len(session.rows)) as progress:
            result = await session.commit(progress)

        log_path = error_log.flush()
        if log_path is not None:
            logger.info("Row errors written to %s", log_path)
        log_summary(render_summary_line(result).removeprefix("SUMMARY "))

        if args.export_csv is not None:
            await _export(backend, session, args.export_csv)
        if cfg.notify_email:
            subject, body = import_summary_email(session.source, result)
            send_email(cfg.notify_email, subject, body)

        return EXIT_PARTIAL_FAILURE if result.has_failures else EXIT_SUCCESS_ALL
    finally:
        await backend.close()


def main(argv: list[str] | None = None) -> int:
    # Only read sys.argv when argv is None; an explicit [] must stay empty.
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    app_logger = setup_logging(debug=args.debug)
    app_logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        app_logger.error(f"config: {e}")
        return EXIT_FATAL
    _apply_locale(cfg.grid.locale)

    return asyncio.run(_run(args, cfg))
