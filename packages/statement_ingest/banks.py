"""Per-bank delimited-export profiles.

Each :class:`BankProfile` records how one bank's export tool lays out its CSV:
the header vocabulary for every logical column (matched exactly, after
trimming and case folding) and the positional index to fall back on when the
header does not name the column. New banks are added by appending a profile
to :data:`BANK_PROFILES`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

# Logical columns understood by the delimited Row Parser.
COLUMNS: tuple[str, ...] = ("date", "description", "amount", "currency", "direction")

# Columns a data row must contain to be usable; the rest fall back to defaults.
REQUIRED_COLUMNS: tuple[str, ...] = ("date", "description", "amount")

_ENGLISH_ALIASES: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "date": ("date", "transaction date"),
        "description": ("description", "details", "merchant"),
        "amount": ("amount", "transaction amount"),
        "currency": ("currency",),
        "direction": ("direction", "debit/credit", "credit/debit"),
    }
)


def _aliases(**extra: tuple[str, ...]) -> Mapping[str, tuple[str, ...]]:
    merged = {col: extra.get(col, ()) + _ENGLISH_ALIASES[col] for col in COLUMNS}
    return MappingProxyType(merged)


@dataclass(frozen=True, slots=True)
class BankProfile:
    """Header vocabulary and positional fallbacks for one bank's CSV export.

    Attributes
    ----------
    name:
        Canonical bank name stored on the statement (``bank_name``).
    header_aliases:
        Logical column → accepted header strings. Matching is exact after
        ``strip()`` and ``casefold()``; no substring matching.
    fallback_positions:
        Logical column → 0-based index used when no header matched. ``None``
        means the export has no such column.
    signed_amounts:
        When True and no direction marker is recognized, a negative amount
        means ``expense`` and a positive one ``income``.
    default_currency:
        Currency assumed when neither the row nor the statement declares one.
    """

    name: str
    header_aliases: Mapping[str, tuple[str, ...]]
    fallback_positions: Mapping[str, int | None]
    signed_amounts: bool = False
    default_currency: str = "ILS"
    filename_markers: tuple[str, ...] = field(default=())


ONE_ZERO = BankProfile(
    name="One Zero",
    header_aliases=_aliases(
        # "תאריך תנועה" (transaction date), never "תאריך ערך" (value date)
        date=("תאריך תנועה",),
        description=("תיאור",),
        amount=("סכום פעולה",),
        currency=("מטבע",),
        direction=("חיוב/זיכוי",),
    ),
    fallback_positions=MappingProxyType(
        {"date": 0, "description": 3, "amount": 4, "currency": 5, "direction": 6}
    ),
    default_currency="ILS",
    filename_markers=("One_Zero", "OneZero"),
)

MILLENNIUM_BCP = BankProfile(
    name="Millennium BCP",
    header_aliases=_aliases(
        date=("data lançamento", "data lancamento", "data mov."),
        description=("descrição", "descricao", "descritivo"),
        amount=("montante", "valor"),
        currency=("moeda",),
        direction=("tipo",),
    ),
    fallback_positions=MappingProxyType(
        {"date": 0, "description": 2, "amount": 3, "currency": None, "direction": None}
    ),
    signed_amounts=True,
    default_currency="EUR",
    filename_markers=("Millennium", "BCP"),
)

UNKNOWN_BANK = BankProfile(
    name="Unknown Bank",
    header_aliases=_aliases(),
    fallback_positions=ONE_ZERO.fallback_positions,
    default_currency="ILS",
)

BANK_PROFILES: tuple[BankProfile, ...] = (ONE_ZERO, MILLENNIUM_BCP)


def get_bank_profile(bank_name: str | None) -> BankProfile:
    """Return the profile for ``bank_name`` (case-insensitive), else the generic one."""

    key = (bank_name or "").strip().casefold()
    for profile in BANK_PROFILES:
        if profile.name.casefold() == key:
            return profile
    return UNKNOWN_BANK


def detect_bank_name(file_name: str) -> str:
    """Guess the bank from an uploaded file's name (user can override)."""

    for profile in BANK_PROFILES:
        if any(marker in file_name for marker in profile.filename_markers):
            return profile.name
    return UNKNOWN_BANK.name


__all__ = [
    "BANK_PROFILES",
    "BankProfile",
    "COLUMNS",
    "MILLENNIUM_BCP",
    "ONE_ZERO",
    "REQUIRED_COLUMNS",
    "UNKNOWN_BANK",
    "detect_bank_name",
    "get_bank_profile",
]
