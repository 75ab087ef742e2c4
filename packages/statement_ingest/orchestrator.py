"""Statement Orchestrator: drive one statement through the ingestion pipeline.

Stages run strictly in order::

    pending -> downloading -> parsing -> persisting -> completed | failed

``process`` never raises. Row-level problems are absorbed (counted in
``rows_skipped``); anything else ends the statement in ``failed`` with the
error message stored on the row. The transaction insert and the final
statement update share one database transaction, so a failed write leaves no
rows from that run behind.
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from db.client import session_scope

from . import persistence
from .banks import get_bank_profile
from .categorization import DEFAULT_RULES, OTHER, OTHER_INCOME, CategoryRule, categorize
from .config import IngestSettings
from .errors import NotFoundError, ProcessingTimeout, RowSkipped
from .ingest.delimited import parse_delimited
from .ingest.document import DocumentExtractor, parse_document
from .logging_setup import get_logger, kv
from .models import (
    NormalizedTransaction,
    ParseResult,
    ProcessResult,
    SkippedRow,
    Stage,
    StatementHeader,
)
from .normalizers import normalize_row
from .storage import FileStore

_logger = get_logger("statement_ingest.orchestrator")

type StageListener = Callable[[str, Stage], None]

_ZERO = Decimal("0.00")


@dataclass(frozen=True, slots=True)
class StatementTotals:
    total_income: Decimal
    total_expenses: Decimal
    net_cashflow: Decimal


def compute_totals(transactions: Iterable[NormalizedTransaction]) -> StatementTotals:
    """Sum amounts by direction; ``net = income - expenses`` exactly."""

    income = _ZERO
    expenses = _ZERO
    for tx in transactions:
        if tx.direction == "income":
            income += tx.original_amount
        else:
            expenses += tx.original_amount
    return StatementTotals(income, expenses, income - expenses)


def date_range(transactions: Sequence[NormalizedTransaction]) -> tuple[date, date] | None:
    if not transactions:
        return None
    dates = [tx.transaction_date for tx in transactions]
    return min(dates), max(dates)


def assign_category(
    tx: NormalizedTransaction, *, rules: Sequence[CategoryRule] = DEFAULT_RULES
) -> NormalizedTransaction:
    """Return ``tx`` with its category set.

    Rules run on the description text. A category suggested by the document
    extractor only fills in when no rule matched.
    """

    category = categorize(tx.description or tx.merchant_name, tx.direction, rules=rules)
    if category in (OTHER, OTHER_INCOME) and tx.category_hint:
        category = tx.category_hint
    return dataclasses.replace(tx, category=category)


@dataclass(frozen=True, slots=True)
class _StatementInfo:
    id: str
    bank_name: str
    file_url: str
    file_type: str
    currency: str


class _Deadline:
    def __init__(self, budget_sec: float | None, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._budget = budget_sec
        self._started = clock()

    def check(self, stage: Stage) -> None:
        if self._budget is None:
            return
        elapsed = self._clock() - self._started
        if elapsed > self._budget:
            raise ProcessingTimeout(
                f"Processing exceeded {self._budget:g}s during {stage} ({elapsed:.1f}s elapsed)"
            )


class StatementProcessor:
    """Process registered statements against one database.

    ``extractor`` is only required for ``pdf`` statements; a ``pdf`` statement
    processed without one fails with a clear message.
    """

    def __init__(
        self,
        *,
        file_store: FileStore,
        extractor: DocumentExtractor | None = None,
        settings: IngestSettings | None = None,
        rules: Sequence[CategoryRule] = DEFAULT_RULES,
        database_url: str | None = None,
        on_stage: StageListener | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.file_store = file_store
        self.extractor = extractor
        self.settings = settings or IngestSettings()
        self.rules = tuple(rules)
        self.database_url = database_url
        self.on_stage = on_stage
        self.clock = clock

    # ---- stage notifications -------------------------------------------

    def _emit(self, statement_id: str, stage: Stage) -> None:
        _logger.debug("process:stage statement_id=%s stage=%s", statement_id, stage)
        if self.on_stage is None:
            return
        try:
            self.on_stage(statement_id, stage)
        except Exception as e:  # noqa: BLE001 - listeners must not break a run
            _logger.warning(
                "process:listener_error %s", kv(statement_id=statement_id, stage=stage, error=e)
            )

    # ---- pipeline steps -------------------------------------------------

    def _load(self, statement_id: str) -> _StatementInfo:
        with session_scope(database_url=self.database_url) as session:
            stmt = persistence.load_statement(session, statement_id)
            return _StatementInfo(
                id=stmt.id,
                bank_name=stmt.bank_name,
                file_url=stmt.file_url,
                file_type=stmt.file_type,
                currency=stmt.currency,
            )

    def _parse(self, info: _StatementInfo, content: bytes) -> ParseResult:
        if info.file_type == "csv":
            return parse_delimited(content, bank_name=info.bank_name)
        if info.file_type == "pdf":
            if self.extractor is None:
                raise RuntimeError("PDF extraction is not configured")
            return parse_document(
                content,
                bank_name=info.bank_name,
                statement_currency=info.currency,
                extractor=self.extractor,
            )
        raise ValueError(f"Unsupported file type: {info.file_type!r}")

    def _normalize(
        self, info: _StatementInfo, parsed: ParseResult
    ) -> tuple[list[NormalizedTransaction], list[SkippedRow]]:
        profile = get_bank_profile(info.bank_name)
        skipped = list(parsed.skipped)
        records: list[NormalizedTransaction] = []
        for raw in parsed.rows:
            try:
                tx = normalize_row(
                    raw,
                    statement_currency=info.currency,
                    base_currency=self.settings.base_currency,
                    profile=profile,
                )
            except RowSkipped as skip:
                _logger.info(
                    "process:row_skipped %s",
                    kv(statement_id=info.id, line=raw.line_no, reason=skip.reason),
                )
                skipped.append(SkippedRow(line_no=raw.line_no, reason=skip.reason))
                continue
            records.append(assign_category(tx, rules=self.rules))
        return records, skipped

    def _persist(
        self,
        statement_id: str,
        records: Sequence[NormalizedTransaction],
        totals: StatementTotals,
        rows_skipped: int,
        header: StatementHeader | None = None,
    ) -> int:
        with session_scope(database_url=self.database_url) as session:
            stmt = persistence.load_statement(session, statement_id)
            inserted = persistence.insert_transactions(
                session, statement=stmt, transactions=records
            )
            persistence.complete_statement(
                session,
                statement_id,
                total_income=totals.total_income,
                total_expenses=totals.total_expenses,
                net_cashflow=totals.net_cashflow,
                rows_skipped=rows_skipped,
                date_range=date_range(records),
                header=header,
            )
        return inserted

    def _mark_failed(self, statement_id: str, message: str) -> None:
        try:
            with session_scope(database_url=self.database_url) as session:
                updated = persistence.fail_statement(session, statement_id, message)
        except Exception as e:  # noqa: BLE001 - already on the failure path
            _logger.error("process:mark_failed_error %s", kv(statement_id=statement_id, error=e))
            return
        if not updated:
            _logger.warning("process:mark_failed_noop statement_id=%s", statement_id)

    # ---- public API -----------------------------------------------------

    def process(self, statement_id: str) -> ProcessResult:
        """Run the full pipeline for ``statement_id`` and report the outcome."""

        deadline = _Deadline(self.settings.process_timeout_sec, self.clock)
        stage: Stage = "pending"
        self._emit(statement_id, stage)
        _logger.info("process:start statement_id=%s", statement_id)

        try:
            info = self._load(statement_id)
        except NotFoundError as e:
            _logger.warning("process:not_found statement_id=%s", statement_id)
            self._emit(statement_id, "failed")
            return ProcessResult(
                statement_id=statement_id, success=False, stage="failed", error=str(e)
            )
        except Exception as e:  # noqa: BLE001
            _logger.error("process:load_failed %s", kv(statement_id=statement_id, error=e))
            self._emit(statement_id, "failed")
            return ProcessResult(
                statement_id=statement_id, success=False, stage="failed", error=str(e)
            )

        try:
            stage = "downloading"
            self._emit(statement_id, stage)
            content = self.file_store.fetch(info.file_url)
            deadline.check(stage)

            stage = "parsing"
            self._emit(statement_id, stage)
            parsed = self._parse(info, content)
            records, skipped = self._normalize(info, parsed)
            deadline.check(stage)

            stage = "persisting"
            self._emit(statement_id, stage)
            totals = compute_totals(records)
            inserted = self._persist(
                statement_id, records, totals, len(skipped), header=parsed.header
            )
        except Exception as e:  # noqa: BLE001 - every failure ends as a failed statement
            message = str(e) or type(e).__name__
            _logger.error(
                "process:failed %s",
                kv(
                    statement_id=statement_id,
                    stage=stage,
                    error_type=type(e).__name__,
                    error=message,
                ),
            )
            self._mark_failed(statement_id, message)
            self._emit(statement_id, "failed")
            return ProcessResult(
                statement_id=statement_id, success=False, stage="failed", error=message
            )

        self._emit(statement_id, "completed")
        _logger.info(
            "process:completed statement_id=%s rows=%d skipped=%d income=%s expenses=%s",
            statement_id,
            inserted,
            len(skipped),
            totals.total_income,
            totals.total_expenses,
        )
        return ProcessResult(
            statement_id=statement_id,
            success=True,
            transactions_count=inserted,
            total_income=totals.total_income,
            total_expenses=totals.total_expenses,
            net_cashflow=totals.net_cashflow,
            rows_skipped=len(skipped),
            stage="completed",
        )

    def process_many(
        self, statement_ids: Iterable[str], *, concurrency: int | None = None
    ) -> list[ProcessResult]:
        """Process independent statements concurrently; results keep input order."""

        workers = concurrency or self.settings.max_workers
        if workers < 1:
            raise ValueError("concurrency must be a positive integer")
        ids = list(statement_ids)
        if not ids:
            return []
        with ThreadPoolExecutor(max_workers=min(workers, len(ids))) as pool:
            return list(pool.map(self.process, ids))

    def fail_stale(self, *, older_than: timedelta | None = None) -> list[str]:
        """Mark statements stuck in ``processing`` as failed; return their ids."""

        bound = older_than or timedelta(seconds=self.settings.stale_after_sec)
        with session_scope(database_url=self.database_url) as session:
            ids = persistence.fail_stale_statements(session, older_than=bound)
        for sid in ids:
            _logger.warning("process:stale_failed statement_id=%s", sid)
        return ids


def process(
    statement_id: str,
    *,
    file_store: FileStore,
    extractor: DocumentExtractor | None = None,
    settings: IngestSettings | None = None,
    database_url: str | None = None,
) -> ProcessResult:
    """Convenience wrapper around :meth:`StatementProcessor.process`."""

    return StatementProcessor(
        file_store=file_store,
        extractor=extractor,
        settings=settings,
        database_url=database_url,
    ).process(statement_id)


__all__ = [
    "StatementProcessor",
    "StatementTotals",
    "assign_category",
    "compute_totals",
    "date_range",
    "process",
]
