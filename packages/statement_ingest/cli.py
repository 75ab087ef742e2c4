# ruff: noqa: I001
"""CLI for the ``statement_ingest`` package.

Command handlers (``cmd_*``) return a process exit code; the Typer commands
below only parse options and delegate. Environment variables (``DATABASE_URL``,
``OPENAI_API_KEY`` and the ``SI_*`` settings) are loaded from a local ``.env``
using ``python-dotenv`` in the root callback.
"""

from __future__ import annotations

import json
import sys
import time
from datetime import timedelta
from pathlib import Path
from typing import Annotated

import typer
from dotenv import load_dotenv
from typer.models import ArgumentInfo

from .banks import detect_bank_name
from .config import IngestSettings
from .logging_setup import configure_logging, get_logger

_logger = get_logger("statement_ingest.cli")


# ---- Command handlers ---------------------------------------------------------


def _build_processor(settings: IngestSettings, *, database_url: str | None):
    import os

    from .ingest.document import OpenAIDocumentExtractor
    from .orchestrator import StatementProcessor
    from .storage import LocalFileStore

    # PDF statements fail with a clear message when no key is configured.
    extractor = (
        OpenAIDocumentExtractor(model=settings.extraction_model)
        if os.getenv("OPENAI_API_KEY")
        else None
    )
    return StatementProcessor(
        file_store=LocalFileStore(settings.storage_root, bucket=settings.storage_bucket),
        extractor=extractor,
        settings=settings,
        database_url=database_url,
    )


def cmd_register(
    file_path: Path,
    *,
    user_id: str,
    bank_name: str | None,
    currency: str,
    process: bool,
    database_url: str | None,
    settings: IngestSettings | None = None,
) -> int:
    """Store a local statement file, register it and optionally process it."""

    from db.client import session_scope
    from .persistence import register_statement
    from .storage import MAX_FILE_SIZE, LocalFileStore, file_type_for

    settings = settings or IngestSettings.from_env()
    try:
        file_type = file_type_for(file_path.name)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    try:
        data = file_path.read_bytes()
    except OSError as e:
        print(f"Error: cannot read {file_path}: {e}", file=sys.stderr)
        return 1
    if len(data) > MAX_FILE_SIZE:
        print(f"Error: {file_path.name} exceeds 20MB limit", file=sys.stderr)
        return 1

    bank = bank_name or detect_bank_name(file_path.name)
    store = LocalFileStore(settings.storage_root, bucket=settings.storage_bucket)
    try:
        key = store.store(f"{user_id}/{int(time.time() * 1000)}_{file_path.name}", data)
        with session_scope(database_url=database_url) as session:
            stmt = register_statement(
                session,
                user_id=user_id,
                bank_name=bank,
                file_url=key,
                file_type=file_type,
                currency=currency.strip().upper(),
            )
            statement_id = stmt.id
    except Exception as e:
        print(f"Error: registration failed: {e}", file=sys.stderr)
        return 1

    _logger.info(
        "register:done statement_id=%s bank=%s file_type=%s", statement_id, bank, file_type
    )
    print(statement_id)
    if not process:
        return 0
    return cmd_process(statement_id, database_url=database_url, settings=settings)


def cmd_process(
    statement_id: str, *, database_url: str | None, settings: IngestSettings | None = None
) -> int:
    settings = settings or IngestSettings.from_env()
    result = _build_processor(settings, database_url=database_url).process(statement_id)
    print(json.dumps(result.to_dict(), ensure_ascii=False))
    return 0 if result.success else 1


def cmd_process_many(
    statement_ids: list[str],
    *,
    concurrency: int | None,
    database_url: str | None,
    settings: IngestSettings | None = None,
) -> int:
    settings = settings or IngestSettings.from_env()
    processor = _build_processor(settings, database_url=database_url)
    try:
        results = processor.process_many(statement_ids, concurrency=concurrency)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    for r in results:
        print(f"{r.statement_id}\t{json.dumps(r.to_dict(), ensure_ascii=False)}")
    return 0 if all(r.success for r in results) else 1


def cmd_status(statement_id: str, *, database_url: str | None) -> int:
    from db.client import session_scope
    from .errors import NotFoundError
    from .persistence import count_statement_transactions, get_statement_snapshot

    try:
        with session_scope(database_url=database_url) as session:
            snap = get_statement_snapshot(session, statement_id)
            count = count_statement_transactions(session, statement_id)
    except NotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    line = f"{snap.id}\t{snap.status}\ttransactions={count}"
    if snap.status == "completed":
        line += (
            f"\tincome={snap.total_income}\texpenses={snap.total_expenses}"
            f"\tnet={snap.net_cashflow}"
        )
    elif snap.status == "failed":
        line += f"\terror={snap.error_message or ''}"
    print(line)
    return 0


def cmd_watch(
    statement_id: str,
    *,
    interval: float,
    stuck_after: float,
    database_url: str | None,
) -> int:
    from .progress import ProgressTracker, poll_statement_status

    tracker = ProgressTracker(
        statement_id,
        poll=lambda sid: poll_statement_status(sid, database_url=database_url),
        poll_interval=interval,
        stuck_after=stuck_after,
    )
    tracker.registered(statement_id)
    state = tracker.wait()
    if state.stuck:
        print(f"{statement_id}\tstuck at {state.percent}%", file=sys.stderr)
        return 2
    suffix = f"\terror={state.error}" if state.error else ""
    print(f"{statement_id}\t{state.status}\t{state.percent}%{suffix}")
    return 0 if state.status == "completed" else 1


def cmd_sweep_stale(
    *,
    older_than_sec: float | None,
    database_url: str | None,
    settings: IngestSettings | None = None,
) -> int:
    settings = settings or IngestSettings.from_env()
    processor = _build_processor(settings, database_url=database_url)
    bound = timedelta(seconds=older_than_sec) if older_than_sec else None
    for sid in processor.fail_stale(older_than=bound):
        print(sid)
    return 0


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="Ingest bank and credit-card statements into the transactions database.",
)

# Module-level argument object to satisfy ruff B008 (no calls in defaults).
STATEMENT_ID_ARG: ArgumentInfo = typer.Argument(..., help="Bank statement id")

DatabaseUrl = Annotated[
    str | None, typer.Option(help="Override DATABASE_URL (falls back to env var).")
]


@app.command("register")
def register_cmd(
    file_path: Annotated[Path, typer.Argument(help="Path to a .csv or .pdf statement")],
    *,
    user_id: Annotated[str, typer.Option(help="Owner of the statement.")],
    bank_name: Annotated[
        str | None, typer.Option(help="Bank name; detected from the file name when omitted.")
    ] = None,
    currency: Annotated[str, typer.Option(help="Statement currency (ISO 4217).")] = "ILS",
    process: Annotated[bool, typer.Option(help="Process right after registering.")] = False,
    database_url: DatabaseUrl = None,
) -> None:
    """Store a statement file and register it in ``processing`` status."""

    raise typer.Exit(
        cmd_register(
            file_path,
            user_id=user_id,
            bank_name=bank_name,
            currency=currency,
            process=process,
            database_url=database_url,
        )
    )


@app.command("process")
def process_cmd(
    statement_id: Annotated[str, STATEMENT_ID_ARG],
    *,
    database_url: DatabaseUrl = None,
) -> None:
    """Process one registered statement and print the result as JSON."""

    raise typer.Exit(cmd_process(statement_id, database_url=database_url))


@app.command("process-many")
def process_many_cmd(
    statement_ids: Annotated[list[str], typer.Argument(help="Statement ids")],
    *,
    concurrency: Annotated[
        int | None, typer.Option(help="Max statements in flight (default SI_MAX_WORKERS).")
    ] = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Process several statements concurrently."""

    raise typer.Exit(
        cmd_process_many(statement_ids, concurrency=concurrency, database_url=database_url)
    )


@app.command("status")
def status_cmd(
    statement_id: Annotated[str, STATEMENT_ID_ARG],
    *,
    database_url: DatabaseUrl = None,
) -> None:
    raise typer.Exit(cmd_status(statement_id, database_url=database_url))


@app.command("watch")
def watch_cmd(
    statement_id: Annotated[str, STATEMENT_ID_ARG],
    *,
    interval: Annotated[float, typer.Option(help="Seconds between polls.")] = 2.0,
    stuck_after: Annotated[
        float, typer.Option(help="Give up and report stuck after this many seconds.")
    ] = 300.0,
    database_url: DatabaseUrl = None,
) -> None:
    """Poll a statement until it completes, fails or looks stuck."""

    raise typer.Exit(
        cmd_watch(
            statement_id,
            interval=interval,
            stuck_after=stuck_after,
            database_url=database_url,
        )
    )


@app.command("sweep-stale")
def sweep_stale_cmd(
    *,
    older_than_sec: Annotated[
        float | None, typer.Option(help="Age bound in seconds (default SI_STALE_AFTER_SEC).")
    ] = None,
    database_url: DatabaseUrl = None,
) -> None:
    """Mark statements stuck in ``processing`` as failed."""

    raise typer.Exit(cmd_sweep_stale(older_than_sec=older_than_sec, database_url=database_url))


@app.callback()
def _root() -> None:
    """Load ``.env`` from the working directory and configure logging."""

    # override=False keeps variables already set in the environment
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)
    configure_logging()


if __name__ == "__main__":  # pragma: no cover - exercised via console script
    app()
