"""Field Normalizer: raw row text → :class:`~statement_ingest.models.NormalizedTransaction`.

Rules
-----
- Dates: ``D/M/YYYY`` (slash separated, day first) → ``YYYY-MM-DD``. ISO dates
  are accepted as-is. Anything else, or an impossible calendar date, rejects
  the row with :class:`~statement_ingest.errors.RowSkipped`.
- Merchant: strip bidirectional control marks, keep the last ``/`` segment,
  drop a leading reference number (digits, dashes, whitespace). An empty
  result becomes ``"Unknown Merchant"``.
- Amounts: only digits, sign and ``.`` are kept before parsing; stored as a
  non-negative magnitude rounded to cents.
- Currency: symbols, local names and ISO codes map to a code. A blank or
  unrecognized label falls back to the statement currency.
- Direction and type are resolved separately: direction from the row's
  direction marker (or the bank's sign convention), type from refund
  vocabulary or the extractor's explicit value.
"""

from __future__ import annotations

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .banks import BankProfile
from .errors import RowSkipped
from .logging_setup import get_logger, kv
from .models import UNKNOWN_MERCHANT, Direction, NormalizedTransaction, RawRow, TransactionType

# LRM/RLM, embedding/override marks, isolates, Arabic letter mark.
_BIDI_RE = re.compile("[\u200e\u200f\u202a-\u202e\u2066-\u2069\u061c]")
_NON_NUMERIC_RE = re.compile(r"[^\d.+\-]")
_REFERENCE_PREFIX_RE = re.compile(r"^[\d\-\s]+")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")

_logger = get_logger("statement_ingest.normalizers")

_CENTS = Decimal("0.01")

_INCOME_MARKERS = frozenset({"זיכוי", "credit", "cr", "income", "crédito", "credito"})
_EXPENSE_MARKERS = frozenset({"חיוב", "debit", "dr", "expense", "débito", "debito"})
_REFUND_KEYWORDS: tuple[str, ...] = ("refund", "החזר", "ביטול עסקה", "reembolso", "estorno")

_CURRENCY_SYMBOLS = {
    "₪": "ILS",
    "NIS": "ILS",
    "שקל": "ILS",
    "שקל חדש": "ILS",
    "שקלים": "ILS",
    'ש"ח': "ILS",
    "ש״ח": "ILS",
    "$": "USD",
    "US$": "USD",
    "€": "EUR",
    "£": "GBP",
}


# ---------------------------------------------------------------------------
# Text helpers
# ---------------------------------------------------------------------------


def strip_bidi(text: str) -> str:
    """Remove bidirectional formatting control characters."""

    return _BIDI_RE.sub("", text)


def clean_merchant(description: str | None) -> str:
    """Return a display merchant name from a raw statement description.

    >>> clean_merchant("117-2712169/SuperMarket Co")
    'SuperMarket Co'
    """

    cleaned = strip_bidi(description or "").strip()
    if "/" in cleaned:
        cleaned = cleaned.rsplit("/", 1)[-1].strip()
    cleaned = _REFERENCE_PREFIX_RE.sub("", cleaned).strip()
    return cleaned or UNKNOWN_MERCHANT


# ---------------------------------------------------------------------------
# Amounts and dates
# ---------------------------------------------------------------------------


def parse_amount(raw: str | None) -> Decimal:
    """Parse a signed amount, ignoring everything but digits, sign and ``.``.

    Raises ``ValueError`` when nothing numeric remains or the value is not a
    finite number.
    """

    s = _NON_NUMERIC_RE.sub("", raw or "")
    if not s:
        raise ValueError(f"amount is empty: {raw!r}")
    try:
        d = Decimal(s)
    except InvalidOperation as exc:
        raise ValueError(f"invalid amount: {raw!r}") from exc
    if not d.is_finite():
        raise ValueError(f"amount is not finite: {raw!r}")
    return d


def _to_cents(d: Decimal) -> Decimal:
    return d.quantize(_CENTS, rounding=ROUND_HALF_UP)


def normalize_date(raw: str | None) -> date:
    """Parse a day-first slash date (or an ISO date) into a :class:`date`.

    Raises ``ValueError`` for anything that is not three components or not a
    real calendar date.
    """

    s = strip_bidi(raw or "").strip()
    if not s:
        raise ValueError("date is empty")
    # Some exports append a time ("05/03/2024 10:22").
    s = s.split()[0]

    iso = _ISO_DATE_RE.match(s)
    if iso:
        year, month, day = (int(p) for p in iso.groups())
        return date(year, month, day)

    parts = s.split("/")
    if len(parts) != 3 or not all(p.strip().isdigit() for p in parts):
        raise ValueError(f"unrecognized date format: {raw!r}")
    day, month, year = (int(p) for p in parts)
    if year < 100:
        year += 2000
    return date(year, month, day)


def format_date(raw: str | None) -> str:
    """Return ``raw`` rewritten as ``YYYY-MM-DD`` (see :func:`normalize_date`)."""

    return normalize_date(raw).isoformat()


def normalize_currency(raw: str | None, *, default: str) -> str:
    """Map a currency cell to an ISO code.

    Known symbols and local names map to their code; three ASCII letters are
    taken as a code. Blank or unrecognized labels fall back to ``default``,
    never rejecting the row.
    """

    if raw is None or not raw.strip():
        return default
    s = " ".join(strip_bidi(raw).split())
    mapped = _CURRENCY_SYMBOLS.get(s) or _CURRENCY_SYMBOLS.get(s.upper())
    if mapped:
        return mapped
    code = s.upper()
    if len(code) == 3 and code.isascii() and code.isalpha():
        return code
    _logger.warning("normalize:currency_unrecognized %s", kv(value=raw, fallback=default))
    return default


# ---------------------------------------------------------------------------
# Direction and type
# ---------------------------------------------------------------------------


def resolve_direction(
    marker: str | None, *, signed_amount: Decimal, profile: BankProfile
) -> Direction:
    """Resolve income/expense from the row's direction marker.

    Without a recognized marker, banks that export signed amounts use the
    sign; otherwise the row is an expense.
    """

    m = " ".join(strip_bidi(marker or "").split()).casefold()
    if m:
        if m in _INCOME_MARKERS or ("credit" in m and "debit" not in m):
            return "income"
        if m in _EXPENSE_MARKERS or "debit" in m:
            return "expense"
    if profile.signed_amounts and signed_amount != 0:
        return "income" if signed_amount > 0 else "expense"
    return "expense"


def resolve_type(description: str | None, type_text: str | None = None) -> TransactionType:
    explicit = (type_text or "").strip().lower()
    if explicit == "refund":
        return "refund"
    if explicit == "regular":
        return "regular"
    lower = (description or "").casefold()
    if any(k in lower for k in _REFUND_KEYWORDS):
        return "refund"
    return "regular"


# ---------------------------------------------------------------------------
# Row normalization
# ---------------------------------------------------------------------------


def _optional_decimal(raw: str | None) -> Decimal | None:
    if raw is None or not raw.strip():
        return None
    try:
        return parse_amount(raw)
    except ValueError:
        return None


def _optional_date(raw: str | None) -> date | None:
    if raw is None or not raw.strip():
        return None
    try:
        return normalize_date(raw)
    except ValueError:
        return None


def normalize_row(
    raw: RawRow,
    *,
    statement_currency: str,
    base_currency: str,
    profile: BankProfile,
) -> NormalizedTransaction:
    """Map one raw row to a canonical record, or raise :class:`RowSkipped`."""

    try:
        tx_date = normalize_date(raw.date_text)
    except ValueError as e:
        raise RowSkipped(f"invalid date {raw.date_text!r}", line_no=raw.line_no) from e
    try:
        signed = parse_amount(raw.amount_text)
    except ValueError as e:
        raise RowSkipped(f"invalid amount {raw.amount_text!r}", line_no=raw.line_no) from e
    currency = normalize_currency(raw.currency_text, default=statement_currency)

    amount = _to_cents(abs(signed))
    exchange_rate = _optional_decimal(raw.exchange_rate_text)
    if exchange_rate is not None:
        exchange_rate = abs(exchange_rate)

    base_amount = _optional_decimal(raw.base_amount_text)
    if base_amount is not None:
        base_amount = _to_cents(abs(base_amount))
    elif currency == base_currency:
        base_amount = amount
    elif exchange_rate is not None:
        base_amount = _to_cents(amount * exchange_rate)

    fee = _optional_decimal(raw.fee_text)
    description = strip_bidi(raw.description_text).strip() or None

    return NormalizedTransaction(
        line_no=raw.line_no,
        transaction_date=tx_date,
        merchant_name=clean_merchant(raw.description_text),
        original_amount=amount,
        original_currency=currency,
        direction=resolve_direction(raw.direction_text, signed_amount=signed, profile=profile),
        type=resolve_type(raw.description_text, raw.type_text),
        description=description,
        base_amount=base_amount,
        exchange_rate=exchange_rate,
        fee=_to_cents(abs(fee)) if fee is not None else None,
        payment_date=_optional_date(raw.payment_date_text),
        category_hint=raw.category_hint,
    )


__all__ = [
    "clean_merchant",
    "format_date",
    "normalize_currency",
    "normalize_date",
    "normalize_row",
    "parse_amount",
    "resolve_direction",
    "resolve_type",
    "strip_bidi",
]
