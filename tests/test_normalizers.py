from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

import pytest

from statement_ingest.banks import MILLENNIUM_BCP, ONE_ZERO
from statement_ingest.errors import RowSkipped
from statement_ingest.models import RawRow
from statement_ingest.normalizers import (
    clean_merchant,
    format_date,
    normalize_currency,
    normalize_date,
    normalize_row,
    parse_amount,
    resolve_direction,
    resolve_type,
)

LRM = "\u200e"
RLM = "\u200f"


def _raw(**kw) -> RawRow:
    base = {
        "source": "delimited",
        "line_no": 2,
        "date_text": "05/03/2024",
        "description_text": "SuperMarket Co",
        "amount_text": "100",
    }
    base.update(kw)
    return RawRow(**base)


# ---- dates -------------------------------------------------------------------


def test_day_first_date_rewritten_to_iso():
    assert format_date("05/03/2024") == "2024-03-05"


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("5/3/2024", date(2024, 3, 5)),
        ("31/12/23", date(2023, 12, 31)),
        ("2024-03-05", date(2024, 3, 5)),
        (f"{RLM}05/03/2024{LRM}", date(2024, 3, 5)),
        ("05/03/2024 10:22", date(2024, 3, 5)),
    ],
)
def test_normalize_date_accepted_forms(raw: str, expected: date):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize("raw", ["", "05/03", "05-03-2024", "March 5 2024", "32/01/2024"])
def test_normalize_date_rejects_unusable_dates(raw: str):
    with pytest.raises(ValueError):
        normalize_date(raw)


# ---- merchant ----------------------------------------------------------------


def test_clean_merchant_keeps_last_segment_and_strips_bidi():
    assert clean_merchant(f"{RLM}117-2712169/SuperMarket Co{LRM}") == "SuperMarket Co"


def test_clean_merchant_strips_reference_prefix_without_separator():
    assert clean_merchant("4471 - 22 Cafe Nimrod") == "Cafe Nimrod"


@pytest.mark.parametrize("raw", [None, "", "   ", "117-2712169", f"{RLM}{LRM}", "abc/ 123 "])
def test_clean_merchant_empty_becomes_unknown(raw):
    assert clean_merchant(raw) == "Unknown Merchant"


# ---- amounts / currency --------------------------------------------------------


def test_parse_amount_ignores_symbols_and_grouping():
    assert parse_amount("₪1,234.50") == Decimal("1234.50")
    assert parse_amount("-45.90") == Decimal("-45.90")


@pytest.mark.parametrize("raw", [None, "", "abc", "--", "1.2.3"])
def test_parse_amount_rejects_non_numeric(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_normalize_currency_symbols_codes_and_default():
    assert normalize_currency("₪", default="EUR") == "ILS"
    assert normalize_currency("usd", default="ILS") == "USD"
    assert normalize_currency(None, default="EUR") == "EUR"
    assert normalize_currency("US$", default="ILS") == "USD"
    assert normalize_currency(" nis ", default="EUR") == "ILS"
    assert normalize_currency("שקל  חדש", default="EUR") == "ILS"
    assert normalize_currency("שקל", default="EUR") == "ILS"


@pytest.mark.parametrize("label", ["dollars", "מטבע זר", "₿", "12"])
def test_unrecognized_currency_falls_back_to_statement_currency(label: str, caplog):
    caplog.set_level(logging.WARNING, logger="statement_ingest.normalizers")
    assert normalize_currency(label, default="ILS") == "ILS"
    assert "normalize:currency_unrecognized" in caplog.text


def test_row_with_unrecognized_currency_is_kept():
    tx = normalize_row(
        _raw(amount_text="5000", currency_text="שקלים חדשים", direction_text="זיכוי"),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert tx.original_currency == "ILS"
    assert tx.original_amount == Decimal("5000.00")
    assert tx.base_amount == Decimal("5000.00")
    assert tx.direction == "income"


# ---- direction / type ------------------------------------------------------------


def test_direction_from_hebrew_markers():
    assert resolve_direction("זיכוי", signed_amount=Decimal("5"), profile=ONE_ZERO) == "income"
    assert resolve_direction("חיוב", signed_amount=Decimal("5"), profile=ONE_ZERO) == "expense"


def test_direction_defaults_to_expense_without_marker():
    assert resolve_direction(None, signed_amount=Decimal("5"), profile=ONE_ZERO) == "expense"


def test_direction_from_sign_for_signed_exports():
    assert resolve_direction(None, signed_amount=Decimal("-3"), profile=MILLENNIUM_BCP) == "expense"
    assert resolve_direction(None, signed_amount=Decimal("3"), profile=MILLENNIUM_BCP) == "income"


def test_type_is_independent_of_direction():
    assert resolve_type("החזר כספי") == "refund"
    assert resolve_type("Amazon REFUND 1234") == "refund"
    assert resolve_type("Amazon", "refund") == "refund"
    assert resolve_type("refund for order", "regular") == "regular"
    assert resolve_type("Amazon") == "regular"


# ---- whole rows ----------------------------------------------------------------


def test_normalize_row_produces_non_negative_amount_and_base_amount():
    tx = normalize_row(
        _raw(amount_text="-1,234.567", currency_text="₪", direction_text="חיוב"),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert tx.original_amount == Decimal("1234.57")
    assert tx.original_currency == "ILS"
    assert tx.base_amount == Decimal("1234.57")
    assert tx.direction == "expense"
    assert tx.type == "regular"
    assert tx.transaction_date == date(2024, 3, 5)


def test_income_refund_keeps_both_attributes():
    tx = normalize_row(
        _raw(description_text="ביטול עסקה / Shop", direction_text="זיכוי"),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert tx.direction == "income"
    assert tx.type == "refund"
    assert tx.merchant_name == "Shop"


def test_base_amount_from_exchange_rate_and_absent_otherwise():
    converted = normalize_row(
        _raw(amount_text="10", currency_text="USD", exchange_rate_text="3.7"),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert converted.base_amount == Decimal("37.00")
    assert converted.exchange_rate == Decimal("3.7")

    foreign = normalize_row(
        _raw(amount_text="10", currency_text="USD"),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert foreign.base_amount is None


def test_extractor_supplied_base_amount_wins():
    tx = normalize_row(
        _raw(
            source="document",
            amount_text="10",
            currency_text="USD",
            exchange_rate_text="3.7",
            base_amount_text="38.12",
            fee_text="1.5",
            payment_date_text="2024-04-10",
        ),
        statement_currency="ILS",
        base_currency="ILS",
        profile=ONE_ZERO,
    )
    assert tx.base_amount == Decimal("38.12")
    assert tx.fee == Decimal("1.50")
    assert tx.payment_date == date(2024, 4, 10)


def test_statement_currency_used_when_row_has_none():
    tx = normalize_row(
        _raw(amount_text="-45.90"),
        statement_currency="EUR",
        base_currency="ILS",
        profile=MILLENNIUM_BCP,
    )
    assert tx.original_currency == "EUR"
    assert tx.direction == "expense"
    assert tx.base_amount is None


@pytest.mark.parametrize(
    "overrides",
    [
        {"date_text": "2024/03"},
        {"amount_text": "n/a"},
    ],
)
def test_normalize_row_rejects_bad_fields(overrides):
    with pytest.raises(RowSkipped) as exc:
        normalize_row(
            _raw(**overrides), statement_currency="ILS", base_currency="ILS", profile=ONE_ZERO
        )
    assert exc.value.line_no == 2
