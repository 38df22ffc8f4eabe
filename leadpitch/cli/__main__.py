from __future__ import annotations

import argparse
import asyncio
import logging
import os
import re
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from ..config.loader import DEFAULT_CONFIG_PATH, ConfigError, LeadPitchConfig, load_config, resolve_dsn
from ..db.store import InMemoryStore, PostgresStore
from ..errors import LeadPitchError, QuotaExceededError
from ..logging.error_log import ErrorLogBuffer
from ..logging.init import log_summary, set_debug, setup_logging
from ..models.cleaning_options import CleaningOptions, TextCase
from ..models.dataset import Dataset
from ..models.pitch import GeneratedPitch, PitchStatus, PitchTemplate
from ..providers.openai_generator import OpenAIPitchGenerator
from ..providers.sendgrid import SendGridSender
from ..services.export import export_pitch_history, export_rows
from ..services.importer import ImportService
from ..services.inference import profile_columns
from ..services.outreach import OutreachResult, OutreachService
from ..services.progress import ProgressTracker
from ..services.summary import render_dispatch_summary, render_import_summary

"""CLI entrypoint.

    leadpitch [--config PATH] [--debug] <command> ...

Commands: inspect, import, export, generate, send, test-email, quota.
SOURCE arguments accept either a stored dataset id or a spreadsheet path; a
path is imported first (this is how mock mode chains steps in one run).

Exit codes: 0 success, 2 partial failure (some items failed), 1 fatal.
DISABLE_DB_CONNECT=1 uses the in-memory store instead of PostgreSQL.
"""

EXIT_SUCCESS_ALL = 0
EXIT_PARTIAL_FAILURE = 2
EXIT_FATAL = 1

DEFAULT_USER = "local"

# __name__ is "__main__" under python -m
logger = logging.getLogger("leadpitch.cli")


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv. Values override the process environment."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


@contextmanager
def _open_store(cfg: LeadPitchConfig) -> Iterator[tuple[Any, str]]:
    """Yield (store, mode). mode is "live" (PostgreSQL) or "mock" (in-memory)."""
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield InMemoryStore(default_daily_limit=cfg.default_daily_limit), "mock"
        return
    try:
        conn = psycopg2.connect(resolve_dsn(cfg.database))
    except psycopg2.Error as e:
        logger.warning(f"DB connection failed -> fallback to mock mode: {e}")
        yield InMemoryStore(default_daily_limit=cfg.default_daily_limit), "mock"
        return
    try:
        conn.autocommit = False
        store = PostgresStore(conn, default_daily_limit=cfg.default_daily_limit)
        store.ensure_schema()
        yield store, "live"
    finally:
        conn.close()


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="leadpitch", description="Spreadsheet lead import and pitch outreach")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="YAML config path")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("inspect", help="Print column profiles and sample rows")
    sp.add_argument("file", type=Path)
    sp.add_argument("--rows", type=int, default=3, help="Sample rows to print")

    sp = sub.add_parser("import", help="Clean a spreadsheet and store it as a dataset")
    sp.add_argument("file", type=Path)
    sp.add_argument("--name", help="Dataset name (default: file stem)")
    _add_import_options(sp)

    sp = sub.add_parser("export", help="Export dataset rows (.xlsx/.csv) or pitch history (--pitches)")
    sp.add_argument("source", help="Dataset id or spreadsheet path")
    sp.add_argument("output", type=Path)
    sp.add_argument("--pitches", action="store_true", help="Export pitch history CSV instead of rows")
    sp.add_argument("--user", default=DEFAULT_USER)
    sp.add_argument("--email-column")
    _add_import_options(sp)

    sp = sub.add_parser("generate", help="Generate one pitch per dataset row")
    sp.add_argument("source", help="Dataset id or spreadsheet path")
    _add_generate_options(sp, required=True)
    _add_import_options(sp)

    sp = sub.add_parser("send", help="Email generated pitches within the daily quota")
    sp.add_argument("source", help="Dataset id or spreadsheet path")
    sp.add_argument("--email-column", required=True)
    sp.add_argument("--name-column")
    _add_generate_options(sp, required=False)
    _add_import_options(sp)

    sp = sub.add_parser("test-email", help="Send a test email to verify sender settings")
    sp.add_argument("to")

    sp = sub.add_parser("quota", help="Show today's send allowance")
    sp.add_argument("--user", default=DEFAULT_USER)
    return p


def _add_import_options(sp: argparse.ArgumentParser) -> None:
    sp.add_argument("--columns", help="Comma separated columns to import (default: all)")
    sp.add_argument("--remove-duplicates", action="store_true", default=None)
    sp.add_argument("--keep-empty-rows", action="store_true")
    sp.add_argument("--no-trim", action="store_true")
    sp.add_argument("--no-dates", action="store_true")
    sp.add_argument("--no-numbers", action="store_true")
    sp.add_argument("--case", choices=[c.value for c in TextCase])


def _add_generate_options(sp: argparse.ArgumentParser, *, required: bool) -> None:
    sp.add_argument("--template", type=Path, required=required, help="Template text file with {{column}} placeholders")
    sp.add_argument("--subject", help="Subject template")
    sp.add_argument("--user", default=DEFAULT_USER)
    sp.add_argument("--fill-only", action="store_true", help="Use the filled template without calling the AI provider")


def _cleaning_options(cfg: LeadPitchConfig, args: argparse.Namespace) -> CleaningOptions:
    opts = cfg.cleaning
    if args.remove_duplicates:
        opts = replace(opts, remove_duplicates=True)
    if args.keep_empty_rows:
        opts = replace(opts, remove_empty_rows=False)
    if args.no_trim:
        opts = replace(opts, trim_whitespace=False)
    if args.no_dates:
        opts = replace(opts, convert_dates=False)
    if args.no_numbers:
        opts = replace(opts, parse_numbers=False)
    if args.case:
        opts = opts.with_text_case(args.case)
    return opts


def _selected_columns(args: argparse.Namespace) -> list[str] | None:
    if not args.columns:
        return None
    return [c.strip() for c in args.columns.split(",") if c.strip()]


def _import(store: Any, cfg: LeadPitchConfig, args: argparse.Namespace, path: Path, name: str | None) -> Dataset:
    service = ImportService(store, default_options=cfg.cleaning, page_size=cfg.insert_page_size)
    result = service.import_file(
        path,
        name or path.stem,
        selected_columns=_selected_columns(args),
        options=_cleaning_options(cfg, args),
        user_id=getattr(args, "user", None) or DEFAULT_USER,
    )
    logger.info(
        f"dataset {result.dataset.id} ({result.dataset.name}): "
        f"{result.imported_rows} rows, {result.removed_rows} removed"
    )
    log_summary(
        render_import_summary(
            result.dataset.name,
            result.imported_rows,
            result.parsed_rows,
            len(result.dataset.column_mappings),
            result.elapsed_seconds,
        )[len("SUMMARY "):]
    )
    return result.dataset


def _resolve_dataset(store: Any, cfg: LeadPitchConfig, args: argparse.Namespace) -> Dataset:
    path = Path(args.source)
    if path.is_file():
        return _import(store, cfg, args, path, None)
    dataset = store.get_dataset(args.source)
    if dataset is None:
        raise LeadPitchError(f"dataset not found: {args.source}")
    return dataset


def _inspect(args: argparse.Namespace) -> int:
    service = ImportService(InMemoryStore())
    table = service.load(args.file)
    print(f"FILE: {args.file.name} rows={len(table)} cols={len(table.headers)}")
    for prof in profile_columns(table):
        samples = [v.isoformat() if hasattr(v, "isoformat") else v for v in prof.sample_values]
        print(
            f"  COLUMN: {prof.name} type={prof.inferred_type.value} "
            f"nulls={prof.null_count} unique={prof.unique_count} samples={samples}"
        )
    for row in list(table.records())[: args.rows]:
        print("  ROW:", {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in row.items()})
    return EXIT_SUCCESS_ALL


def _outcome(result: OutreachResult, operation: str) -> int:
    log_summary(render_dispatch_summary(result.summary, operation)[len("SUMMARY "):])
    return EXIT_PARTIAL_FAILURE if result.summary.failed > 0 else EXIT_SUCCESS_ALL


async def _generate(service: OutreachService, dataset: Dataset, store: Any, args: argparse.Namespace) -> OutreachResult:
    template = PitchTemplate(raw_text=args.template.read_text(encoding="utf-8"), name=args.template.stem)
    rows = store.list_rows(dataset.id)
    with ProgressTracker(len(rows), description="Generating", unit="pitch") as progress:
        return await service.generate_pitches(
            template, rows, subject_template=args.subject, user_id=args.user, on_progress=progress
        )


async def _run_outreach(cfg: LeadPitchConfig, store: Any, args: argparse.Namespace, error_log: ErrorLogBuffer) -> int:
    generator = None
    if args.command in ("generate", "send") and args.template is not None and not args.fill_only:
        generator = OpenAIPitchGenerator(
            api_key=cfg.openai_api_key,
            model=cfg.generation.model,
            system_prompt=cfg.generation.system_prompt,
            temperature=cfg.generation.temperature,
            timeout_s=cfg.generation.timeout_seconds,
        )
        if not generator.is_configured:
            logger.error("OPENAI_API_KEY is not set (use --fill-only to skip AI generation)")
            return EXIT_FATAL

    async with SendGridSender(api_key=cfg.sendgrid_api_key) as sender:
        service = OutreachService(
            pitch_store=store,
            quota_store=store,
            sender_config=cfg.sender,
            generator=generator,
            sender=sender,
            batch_size=cfg.dispatch.batch_size,
            batch_delay=cfg.dispatch.batch_delay_seconds,
            generation_delay=cfg.dispatch.generation_delay_seconds,
            error_log=error_log,
        )

        if args.command == "test-email":
            if not sender.is_configured:
                logger.error("SENDGRID_API_KEY is not set")
                return EXIT_FATAL
            if not await sender.validate_api_key():
                logger.error("SENDGRID_API_KEY was rejected by SendGrid (check the key and its mail.send scope)")
                return EXIT_FATAL
            result = await service.send_test_email(args.to)
            if not result.success:
                logger.error(f"test email failed: {result.error}")
                return EXIT_FATAL
            logger.info(f"test email sent to {args.to} (message id {result.message_id})")
            return EXIT_SUCCESS_ALL

        if args.command == "send":
            # 取り込み・生成より先に送信可否を確認する
            if not sender.is_configured:
                logger.error("SENDGRID_API_KEY is not set")
                return EXIT_FATAL
            can_send, remaining, limit = service.can_send(args.user)
            logger.info(f"quota user={args.user} remaining={remaining}/{limit}")
            if not can_send:
                logger.error("Daily send limit reached")
                return EXIT_FATAL

        dataset = _resolve_dataset(store, cfg, args)
        if args.command == "generate":
            return _outcome(await _generate(service, dataset, store, args), "generate")

        exit_code = EXIT_SUCCESS_ALL
        if args.template is not None:
            generated = await _generate(service, dataset, store, args)
            exit_code = _outcome(generated, "generate")
            pitches = [p for p in generated.pitches if p.status is PitchStatus.GENERATED]
        else:
            pitches = [
                p for p in store.list_pitches(args.user)
                if p.dataset_id == dataset.id and p.status in (PitchStatus.GENERATED, PitchStatus.FAILED)
            ]
        pitches = sorted(pitches, key=_row_order)
        with ProgressTracker(len(pitches), description="Sending", unit="email") as progress:
            sent = await service.send_pitches(
                args.user,
                pitches,
                args.email_column,
                name_column=args.name_column,
                subject=args.subject,
                on_progress=progress,
            )
        return max(exit_code, _outcome(sent, "send"))


def _error_type(e: Exception) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", type(e).__name__).upper()


def _row_order(pitch: GeneratedPitch) -> int:
    return pitch.row_index if pitch.row_index is not None else -1


def _export(store: Any, cfg: LeadPitchConfig, args: argparse.Namespace) -> int:
    if args.pitches:
        dataset_id = None if Path(args.source).is_file() else args.source
        pitches = [p for p in store.list_pitches(args.user) if dataset_id is None or p.dataset_id == dataset_id]
        export_pitch_history(pitches, args.output, email_column=args.email_column)
        return EXIT_SUCCESS_ALL
    dataset = _resolve_dataset(store, cfg, args)
    rows = [r.row_data for r in store.list_rows(dataset.id)]
    export_rows(rows, args.output, columns=dataset.columns or None)
    return EXIT_SUCCESS_ALL


def _dispatch(cfg: LeadPitchConfig, args: argparse.Namespace, error_log: ErrorLogBuffer) -> int:
    with _open_store(cfg) as (store, mode):
        logger.debug(f"store mode={mode}")
        if args.command == "import":
            _import(store, cfg, args, args.file, args.name)
            return EXIT_SUCCESS_ALL
        if args.command == "export":
            return _export(store, cfg, args)
        if args.command == "quota":
            quota = store.get_quota(args.user)
            logger.info(f"user={args.user} sent_today={quota.sent_today} limit={quota.daily_limit} remaining={quota.remaining}")
            return EXIT_SUCCESS_ALL
        return asyncio.run(_run_outreach(cfg, store, args, error_log))


def main(argv: list[str] | None = None) -> int:
    app_logger = setup_logging()

    # 空リストが渡された場合に sys.argv を混入させない
    if argv is None:
        argv = sys.argv[1:]
    args = _build_parser().parse_args(argv)
    if args.debug:
        set_debug(True)
        app_logger.debug("debug mode enabled")

    _load_env_file(Path(".env"), override=True)

    if args.command == "inspect":
        try:
            return _inspect(args)
        except LeadPitchError as e:
            app_logger.error(f"inspect: {e}")
            return EXIT_FATAL

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        app_logger.error(f"config: {e}")
        return EXIT_FATAL

    error_log = ErrorLogBuffer()
    try:
        return _dispatch(cfg, args, error_log)
    except QuotaExceededError as e:
        app_logger.error(f"quota: {e}")
        return EXIT_FATAL
    except LeadPitchError as e:
        app_logger.error(f"{args.command}: {e}")
        error_log.record(args.command.upper(), -1, str(getattr(args, "source", getattr(args, "file", ""))), _error_type(e), str(e))
        return EXIT_FATAL
    finally:
        written = error_log.flush()
        if written is not None:
            app_logger.info(f"error log written: {written}")


if __name__ == "__main__":
    raise SystemExit(main())
