"""Data models and type aliases for ``statement_ingest``.

Two kinds of records flow through the pipeline:

- :class:`RawRow` is what a Row Parser produced, still as text, tagged with the
  path (``delimited`` or ``document``) it came from.
- :class:`NormalizedTransaction` is the canonical record the orchestrator
  persists, with a parsed date, a non-negative ``Decimal`` amount and explicit
  ``direction``/``type``.

The pydantic models at the bottom validate the JSON returned by the document
extraction capability before any field is trusted.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator

# ---------------------------------------------------------------------------
# Enumerations (kept as string literals; they are stored verbatim in the DB)
# ---------------------------------------------------------------------------

type Direction = Literal["income", "expense"]
type TransactionType = Literal["regular", "refund"]
type FileType = Literal["csv", "pdf"]
type StatementStatus = Literal["processing", "completed", "failed"]
type Stage = Literal["pending", "downloading", "parsing", "persisting", "completed", "failed"]

UNKNOWN_MERCHANT = "Unknown Merchant"


# ---------------------------------------------------------------------------
# Row Parser output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class RawRow:
    """One raw transaction tuple as produced by a Row Parser.

    The five core fields are text exactly as found in the source (after
    trimming). The optional extras are only populated by the document path,
    where the extractor reports them directly.
    """

    source: Literal["delimited", "document"]
    line_no: int
    date_text: str
    description_text: str
    amount_text: str
    currency_text: str | None = None
    direction_text: str | None = None
    type_text: str | None = None
    category_hint: str | None = None
    payment_date_text: str | None = None
    base_amount_text: str | None = None
    exchange_rate_text: str | None = None
    fee_text: str | None = None


@dataclass(frozen=True, slots=True)
class SkippedRow:
    """Diagnostic record for a row that was excluded from a run."""

    line_no: int | None
    reason: str


@dataclass(frozen=True, slots=True)
class StatementHeader:
    """Card statement fields reported alongside the rows (document path only).

    ``card_number`` is masked to the last four digits (``****1234``).
    """

    card_number: str | None = None
    card_type: str | None = None
    statement_date: date | None = None
    statement_total: Decimal | None = None


@dataclass(slots=True)
class ParseResult:
    rows: list[RawRow] = field(default_factory=list)
    skipped: list[SkippedRow] = field(default_factory=list)
    header: StatementHeader | None = None


# ---------------------------------------------------------------------------
# Canonical record
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class NormalizedTransaction:
    """Canonical transaction record ready for categorization and persistence.

    Invariants: ``original_amount >= 0``; ``direction`` and ``type`` are always
    set and independent of each other (an income row may be a refund).
    """

    line_no: int
    transaction_date: date
    merchant_name: str
    original_amount: Decimal
    original_currency: str
    direction: Direction
    type: TransactionType
    description: str | None = None
    base_amount: Decimal | None = None
    exchange_rate: Decimal | None = None
    fee: Decimal | None = None
    payment_date: date | None = None
    category: str | None = None
    category_hint: str | None = None


# ---------------------------------------------------------------------------
# Orchestrator output
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Outcome of one ``process(statement_id)`` call."""

    statement_id: str
    success: bool
    transactions_count: int = 0
    total_income: Decimal = Decimal("0")
    total_expenses: Decimal = Decimal("0")
    net_cashflow: Decimal = Decimal("0")
    rows_skipped: int = 0
    stage: Stage = "pending"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return the wire shape reported to the invoking client."""

        if not self.success:
            return {"success": False, "error": self.error or "Unknown error"}
        return {
            "success": True,
            "transactionsCount": self.transactions_count,
            "totalIncome": float(self.total_income),
            "totalExpenses": float(self.total_expenses),
        }


# ---------------------------------------------------------------------------
# Document extraction DTOs
# ---------------------------------------------------------------------------


class ExtractedTransaction(BaseModel):
    """One transaction object returned by the extraction capability.

    Required: ``transaction_date``, ``merchant``, ``category``,
    ``original_amount``, ``original_currency``, ``amount_ils``, ``type``.
    """

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    transaction_date: str
    payment_date: str | None = None
    merchant: str
    category: str
    original_amount: float
    original_currency: str
    exchange_rate: float | None = None
    amount_ils: float
    fee: float | None = None
    type: Literal["regular", "refund"]

    @field_validator("transaction_date", "merchant", "original_currency")
    @classmethod
    def _non_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("must be a non-empty string")
        return v

    @field_validator("original_amount", "amount_ils", "exchange_rate", "fee")
    @classmethod
    def _finite(cls, v: float | None) -> float | None:
        if v is None:
            return None
        if not math.isfinite(v):
            raise ValueError("must be a finite number")
        return v


class ExtractedStatement(BaseModel):
    """Top-level extraction result. Items stay raw so each is validated alone."""

    model_config = ConfigDict(extra="ignore")

    transactions: list[Any]
    card_last_4: str | None = None
    card_type: str | None = None
    statement_date: str | None = None
    total_amount: float | None = None
