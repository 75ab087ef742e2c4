"""Rule-based categorization of normalized transactions.

The categorizer is a pure function of ``(merchant_text, direction)`` over an
ordered, immutable rule table. Matching is case-insensitive substring search;
the first rule whose direction applies and whose keywords hit wins. Without a
hit, income falls back to ``"Other Income"`` and expenses to ``"Other"``.

Callers may inject their own rule table (e.g., per locale); the default table
pairs Hebrew terms with their English equivalents.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .models import Direction

OTHER = "Other"
OTHER_INCOME = "Other Income"


@dataclass(frozen=True, slots=True)
class CategoryRule:
    """Keyword set → category, optionally restricted to one direction."""

    keywords: frozenset[str]
    category: str
    direction: Direction | None = None

    def matches(self, text: str, direction: Direction) -> bool:
        if self.direction is not None and self.direction != direction:
            return False
        return any(k in text for k in self.keywords)


def rule(category: str, *keywords: str, direction: Direction | None = None) -> CategoryRule:
    """Build a :class:`CategoryRule` with keywords folded for matching."""

    if not keywords:
        raise ValueError(f"rule for {category!r} needs at least one keyword")
    return CategoryRule(
        keywords=frozenset(k.casefold() for k in keywords),
        category=category,
        direction=direction,
    )


DEFAULT_RULES: tuple[CategoryRule, ...] = (
    rule("Salary", "salary", "payroll", "משכורת", "שכר", direction="income"),
    rule(
        "Credit Card Payment",
        "credit card",
        "isracard",
        "ישראכרט",
        "כאל כרטיסי",
        "כ.א.ל",
        "max it",
        direction="expense",
    ),
    rule("Loan Payment", "loan", "mortgage", "הלוואה", "משכנתא", direction="expense"),
    # Merchant rules precede fees so "coffee" is not read as "fee".
    rule("Groceries", "supermarket", "grocery", "shufersal", "שופרסל", "רמי לוי", "victory"),
    rule("Food & Dining", "restaurant", "cafe", "coffee", "wolt", "מסעדה", "קפה"),
    rule("Transportation", "uber", "gett", "rav-kav", "רב קו", "fuel", "דלק"),
    rule("Bank Fees", "fee", "commission", "עמלה", "דמי", direction="expense"),
    rule("Transfer", "transfer", "העברה"),
)


def categorize(
    merchant_text: str | None,
    direction: Direction,
    *,
    rules: Sequence[CategoryRule] = DEFAULT_RULES,
) -> str:
    """Return the category label for ``merchant_text`` and ``direction``.

    Deterministic and side-effect free: identical inputs always yield the same
    label.
    """

    text = " ".join((merchant_text or "").split()).casefold()
    if text:
        for r in rules:
            if r.matches(text, direction):
                return r.category
    return OTHER_INCOME if direction == "income" else OTHER


def category_labels(rules: Iterable[CategoryRule] = DEFAULT_RULES) -> list[str]:
    """Every label ``categorize`` can return for ``rules``, in rule order."""

    labels = list(dict.fromkeys(r.category for r in rules))
    for fallback in (OTHER_INCOME, OTHER):
        if fallback not in labels:
            labels.append(fallback)
    return labels


__all__ = [
    "CategoryRule",
    "DEFAULT_RULES",
    "OTHER",
    "OTHER_INCOME",
    "categorize",
    "category_labels",
    "rule",
]
