"""Instructions and strict ``response_format`` for document extraction.

This module builds:
- The system instructions for the extraction task.
- The user text sent alongside the PDF (bank name, currency hints).
- The strict JSON Schema ``format`` object for the OpenAI Responses API.
"""

from __future__ import annotations

from typing import Any

# Fields every extracted transaction must carry; rows missing any are dropped.
REQUIRED_TRANSACTION_FIELDS: tuple[str, ...] = (
    "transaction_date",
    "merchant",
    "category",
    "original_amount",
    "original_currency",
    "amount_ils",
    "type",
)

SUGGESTED_CATEGORIES: tuple[str, ...] = (
    "Transportation",
    "Accommodation",
    "Shopping",
    "Food & Dining",
    "Services",
    "Entertainment",
    "Travel",
    "Co-working",
    "Health & Wellness",
    "Technology",
    "Other",
)


def build_system_instructions() -> str:
    return (
        "You are a financial transaction parser. Extract ALL transactions from the attached "
        "bank or credit card statement. Statements may be in Hebrew and may contain "
        "international transactions in multiple currencies. Never invent transactions. "
        "Output JSON only that conforms to the specified schema."
    )


def build_user_text(*, bank_name: str, statement_currency: str) -> str:
    categories = ", ".join(SUGGESTED_CATEGORIES)
    return (
        f"Issuer: {bank_name}. Statement currency: {statement_currency}.\n"
        "For each transaction extract:\n"
        "- transaction_date and payment_date (YYYY-MM-DD)\n"
        "- merchant (clean, standardized English name)\n"
        "- original_amount and original_currency (ISO code: USD, EUR, ILS)\n"
        "- exchange_rate when applicable, otherwise null\n"
        "- amount_ils: the final charged amount in ILS\n"
        "- type: 'refund' for refunds/credits, otherwise 'regular'\n"
        "- fee: any transaction fee, otherwise null\n"
        f"- category, choosing from: {categories}\n"
        "Also report card_last_4, card_type, statement_date and total_amount when present."
    )


def build_response_format() -> dict[str, Any]:
    """Return the strict JSON Schema ``format`` object for extraction.

    Strict mode requires every property to be listed in ``required``; optional
    values are therefore nullable rather than omitted.
    """

    nullable_number = {"type": ["number", "null"]}
    nullable_string = {"type": ["string", "null"]}
    transaction = {
        "type": "object",
        "properties": {
            "transaction_date": {"type": "string"},
            "payment_date": nullable_string,
            "merchant": {"type": "string"},
            "category": {"type": "string"},
            "original_amount": {"type": "number"},
            "original_currency": {"type": "string"},
            "exchange_rate": nullable_number,
            "amount_ils": {"type": "number"},
            "fee": nullable_number,
            "type": {"type": "string", "enum": ["regular", "refund"]},
        },
        "additionalProperties": False,
    }
    transaction["required"] = list(transaction["properties"])  # type: ignore[arg-type]

    return {
        "type": "json_schema",
        "name": "statement_transactions",
        "schema": {
            "type": "object",
            "properties": {
                "card_last_4": nullable_string,
                "card_type": nullable_string,
                "statement_date": nullable_string,
                "total_amount": nullable_number,
                "transactions": {"type": "array", "items": transaction},
            },
            "required": [
                "card_last_4",
                "card_type",
                "statement_date",
                "total_amount",
                "transactions",
            ],
            "additionalProperties": False,
        },
        "strict": True,
    }
