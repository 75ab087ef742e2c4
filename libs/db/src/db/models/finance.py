from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    CHAR,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------
# Reference: categories
# ---------------------------


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    icon: Mapped[str | None] = mapped_column(String, nullable=True)
    color: Mapped[str | None] = mapped_column(String, nullable=True)
    # At most one level of nesting; parents have parent_id IS NULL. Depth is
    # enforced by the seed data rather than a recursive constraint.
    parent_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("categories.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


# ---------------------------
# Core: bank_statements
# ---------------------------


class BankStatement(Base):
    __tablename__ = "bank_statements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    bank_name: Mapped[str] = mapped_column(String, nullable=False)
    file_url: Mapped[str] = mapped_column(Text, nullable=False)
    file_type: Mapped[str] = mapped_column(String(8), nullable=False)
    currency: Mapped[str] = mapped_column(CHAR(3), nullable=False, server_default=text("'ILS'"))
    statement_date_from: Mapped[date | None] = mapped_column(Date, nullable=True)
    statement_date_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, server_default=text("'processing'")
    )
    # Totals stay NULL until the statement reaches 'completed'.
    total_income: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    total_expenses: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    net_cashflow: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    rows_skipped: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Card statement header, reported by document extraction only.
    card_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    card_type: Mapped[str | None] = mapped_column(String, nullable=True)
    statement_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    statement_total: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('processing','completed','failed')",
            name="ck_bank_statements_status",
        ),
        CheckConstraint("file_type in ('csv','pdf')", name="ck_bank_statements_file_type"),
    )


# ---------------------------
# Core: transactions
# ---------------------------


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    # Statement is the exclusive parent; deleting a statement that still owns
    # transactions is refused by the database.
    bank_statement_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("bank_statements.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    merchant_name: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    original_currency: Mapped[str] = mapped_column(CHAR(3), nullable=False)
    base_amount: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(18, 6), nullable=True)
    fee: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    transaction_direction: Mapped[str] = mapped_column(String(8), nullable=False)
    transaction_type: Mapped[str] = mapped_column(
        String(8), nullable=False, server_default=text("'regular'")
    )
    source_bank: Mapped[str | None] = mapped_column(String, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        CheckConstraint("original_amount >= 0", name="ck_transactions_amount_non_negative"),
        CheckConstraint(
            "transaction_direction in ('income','expense')",
            name="ck_transactions_direction",
        ),
        CheckConstraint(
            "transaction_type in ('regular','refund')",
            name="ck_transactions_type",
        ),
    )


__all__ = [
    "Base",
    "BankStatement",
    "Category",
    "Transaction",
]
