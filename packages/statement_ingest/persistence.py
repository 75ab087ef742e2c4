# ruff: noqa: I001
"""Persistence integration for statement ingestion.

Functions here read and write the ``bank_statements`` and ``transactions``
tables owned by ``libs/db``. Callers own the session and its transaction
scope (see ``db.client.session_scope``); nothing here commits.

Status transitions are guarded in SQL: a statement only becomes ``completed``
or ``failed`` from ``processing``. Re-running an already completed statement
is tolerated (``completed`` → ``completed``) because the pipeline does not
deduplicate repeated runs; see DESIGN.md.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from db.models.finance import BankStatement, Transaction
from .errors import NotFoundError, PersistenceError
from .models import NormalizedTransaction, StatementHeader


@dataclass(frozen=True, slots=True)
class StatementSnapshot:
    """Pollable view of a statement's processing state."""

    id: str
    status: str
    error_message: str | None
    total_income: Decimal | None
    total_expenses: Decimal | None
    net_cashflow: Decimal | None
    processed_at: datetime | None


def _now() -> datetime:
    return datetime.now(UTC)


def register_statement(
    session: Session,
    *,
    user_id: str,
    bank_name: str,
    file_url: str,
    file_type: str,
    currency: str = "ILS",
    statement_date_from: date | None = None,
    statement_date_to: date | None = None,
) -> BankStatement:
    """Insert a new statement in ``processing`` status and return it (flushed)."""

    today = _now().date()
    stmt = BankStatement(
        id=str(uuid.uuid4()),
        user_id=user_id,
        bank_name=bank_name,
        file_url=file_url,
        file_type=file_type,
        currency=currency,
        statement_date_from=statement_date_from or today,
        statement_date_to=statement_date_to or today,
        status="processing",
    )
    session.add(stmt)
    session.flush()
    return stmt


def load_statement(session: Session, statement_id: str) -> BankStatement:
    """Return the statement row or raise :class:`NotFoundError`."""

    stmt = session.get(BankStatement, statement_id)
    if stmt is None:
        raise NotFoundError(f"Statement not found: {statement_id}")
    return stmt


def build_transaction_payloads(
    statement: BankStatement, transactions: Sequence[NormalizedTransaction]
) -> list[dict[str, Any]]:
    """Map normalized records to ``transactions`` insert payloads.

    Every payload carries the statement reference and owner.
    """

    payloads: list[dict[str, Any]] = []
    for tx in transactions:
        if tx.category is None:
            raise ValueError(f"transaction at line {tx.line_no} has no category")
        payloads.append(
            {
                "id": str(uuid.uuid4()),
                "user_id": statement.user_id,
                "bank_statement_id": statement.id,
                "transaction_date": tx.transaction_date,
                "payment_date": tx.payment_date,
                "merchant_name": tx.merchant_name,
                "category": tx.category,
                "original_amount": tx.original_amount,
                "original_currency": tx.original_currency,
                "base_amount": tx.base_amount,
                "exchange_rate": tx.exchange_rate,
                "fee": tx.fee,
                "transaction_direction": tx.direction,
                "transaction_type": tx.type,
                "source_bank": statement.bank_name,
                "description": tx.description,
            }
        )
    return payloads


def insert_transactions(
    session: Session,
    *,
    statement: BankStatement,
    transactions: Sequence[NormalizedTransaction],
) -> int:
    """Bulk insert ``transactions`` for ``statement`` in a single batch.

    Any database error is re-raised as :class:`PersistenceError`; the caller
    rolls back so no row from the batch survives.
    """

    payloads = build_transaction_payloads(statement, transactions)
    if not payloads:
        return 0
    try:
        session.execute(insert(Transaction), payloads)
        session.flush()
    except Exception as e:
        raise PersistenceError(f"Failed to insert transactions: {e}") from e
    return len(payloads)


def complete_statement(
    session: Session,
    statement_id: str,
    *,
    total_income: Decimal,
    total_expenses: Decimal,
    net_cashflow: Decimal,
    rows_skipped: int,
    date_range: tuple[date, date] | None = None,
    header: StatementHeader | None = None,
) -> None:
    """Mark a statement ``completed`` with totals and a processed timestamp.

    Header fields (card number, card type, statement date and total) are only
    written when the parser reported them.
    """

    now = _now()
    values: dict[str, Any] = {
        "status": "completed",
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net_cashflow": net_cashflow,
        "rows_skipped": rows_skipped,
        "error_message": None,
        "processed_at": now,
        "updated_at": now,
    }
    if date_range is not None:
        values["statement_date_from"], values["statement_date_to"] = date_range
    if header is not None:
        for name in ("card_number", "card_type", "statement_date", "statement_total"):
            value = getattr(header, name)
            if value is not None:
                values[name] = value

    try:
        result = session.execute(
            update(BankStatement)
            .where(
                BankStatement.id == statement_id,
                BankStatement.status.in_(("processing", "completed")),
            )
            .values(**values)
        )
    except Exception as e:
        raise PersistenceError(f"Failed to update statement: {e}") from e
    if result.rowcount != 1:
        raise PersistenceError(f"Statement {statement_id} is not in a completable state")


def fail_statement(session: Session, statement_id: str, message: str) -> bool:
    """Mark a non-completed statement ``failed`` with ``message``.

    Returns False when the statement does not exist or already completed.
    """

    now = _now()
    result = session.execute(
        update(BankStatement)
        .where(
            BankStatement.id == statement_id,
            BankStatement.status.in_(("processing", "failed")),
        )
        .values(status="failed", error_message=message, processed_at=now, updated_at=now)
    )
    return result.rowcount == 1


def fail_stale_statements(
    session: Session,
    *,
    older_than: timedelta,
    now: datetime | None = None,
    message: str | None = None,
) -> list[str]:
    """Fail statements stuck in ``processing`` for longer than ``older_than``.

    Returns the ids that were transitioned.
    """

    cutoff = (now or _now()) - older_than
    ids = list(
        session.scalars(
            select(BankStatement.id).where(
                BankStatement.status == "processing",
                BankStatement.created_at < cutoff,
            )
        )
    )
    reason = message or f"Processing did not finish within {int(older_than.total_seconds())}s"
    return [sid for sid in ids if fail_statement(session, sid, reason)]


def get_statement_snapshot(session: Session, statement_id: str) -> StatementSnapshot:
    stmt = load_statement(session, statement_id)
    return StatementSnapshot(
        id=stmt.id,
        status=stmt.status,
        error_message=stmt.error_message,
        total_income=stmt.total_income,
        total_expenses=stmt.total_expenses,
        net_cashflow=stmt.net_cashflow,
        processed_at=stmt.processed_at,
    )


def count_statement_transactions(session: Session, statement_id: str) -> int:
    return session.scalar(
        select(func.count())
        .select_from(Transaction)
        .where(Transaction.bank_statement_id == statement_id)
    ) or 0


__all__ = [
    "StatementSnapshot",
    "build_transaction_payloads",
    "complete_statement",
    "count_statement_transactions",
    "fail_stale_statements",
    "fail_statement",
    "get_statement_snapshot",
    "insert_transactions",
    "load_statement",
    "register_statement",
]
