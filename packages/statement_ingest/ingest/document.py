"""Row Parser for unstructured documents (PDF statements).

The document bytes are handed to an extraction capability together with
instructions and a strict output schema. The capability's answer is never
trusted as-is: the top-level shape is validated, then each transaction object
is validated on its own. Objects missing required fields raise
:class:`~statement_ingest.errors.ExtractionError`, are logged and dropped, and
processing continues with the rest.
"""

from __future__ import annotations

import base64
import json
import math
from collections.abc import Mapping
from decimal import Decimal
from typing import Any, Protocol

from openai import OpenAI
from pydantic import ValidationError

from ..config import DEFAULT_EXTRACTION_MODEL
from ..errors import ExtractionError
from ..logging_setup import get_logger, kv
from ..models import (
    ExtractedStatement,
    ExtractedTransaction,
    ParseResult,
    RawRow,
    SkippedRow,
    StatementHeader,
)
from ..normalizers import normalize_date
from . import prompting

_logger = get_logger("statement_ingest.ingest.document")


class DocumentExtractor(Protocol):
    """Extraction capability: bytes + instructions + schema → JSON mapping."""

    def extract(
        self,
        content: bytes,
        *,
        instructions: str,
        user_text: str,
        response_format: Mapping[str, Any],
    ) -> Mapping[str, Any]: ...


def _extract_response_json_mapping(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON mapping from an OpenAI Responses SDK result.

    Prefer ``resp.output_text``; fall back to ``resp.output[0].content[0].text``.
    Raise ``ValueError`` if no text is found or it is not valid JSON.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        output = getattr(resp, "output", None)
        if output:
            content = getattr(output[0], "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")

    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError("Model output was not valid JSON per the requested schema") from e
    if not isinstance(decoded, Mapping):
        raise ValueError("Invalid extraction response: expected a JSON object at top level")
    return decoded


class OpenAIDocumentExtractor:
    """Extraction capability backed by the OpenAI Responses API.

    The PDF is sent inline as an ``input_file`` data URL. A client may be
    injected (tests pass a stub); otherwise one is created per call from the
    environment (``OPENAI_API_KEY``).
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_EXTRACTION_MODEL,
        client: OpenAI | None = None,
        filename: str = "statement.pdf",
    ) -> None:
        self._model = model
        self._client = client
        self._filename = filename

    def _get_client(self) -> OpenAI:
        return self._client if self._client is not None else OpenAI()

    def extract(
        self,
        content: bytes,
        *,
        instructions: str,
        user_text: str,
        response_format: Mapping[str, Any],
    ) -> Mapping[str, Any]:
        encoded = base64.b64encode(content).decode("ascii")
        resp = self._get_client().responses.create(
            model=self._model,
            instructions=instructions,
            input=[
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "input_file",
                            "filename": self._filename,
                            "file_data": f"data:application/pdf;base64,{encoded}",
                        },
                        {"type": "input_text", "text": user_text},
                    ],
                }
            ],
            text={"format": dict(response_format)},
        )
        return _extract_response_json_mapping(resp)


def _text(value: float | None) -> str | None:
    if value is None:
        return None
    # Plain notation; str(1e-05) would not survive amount parsing.
    return format(Decimal(str(value)), "f")


def to_raw_row(index: int, item: Any) -> RawRow:
    """Validate one extracted object and convert it to a :class:`RawRow`.

    Raises :class:`ExtractionError` naming the offending fields.
    """

    if not isinstance(item, Mapping):
        raise ExtractionError("transaction is not an object", index=index)
    try:
        tx = ExtractedTransaction.model_validate(item)
    except ValidationError as e:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
        raise ExtractionError(
            "missing or invalid fields: " + ", ".join(fields), index=index
        ) from e

    # Card statements list charges; a refund is money coming back.
    direction = "credit" if tx.type == "refund" else "debit"
    return RawRow(
        source="document",
        line_no=index,
        date_text=tx.transaction_date,
        description_text=tx.merchant,
        amount_text=format(Decimal(str(tx.original_amount)), "f"),
        currency_text=tx.original_currency,
        direction_text=direction,
        type_text=tx.type,
        category_hint=tx.category or None,
        payment_date_text=tx.payment_date,
        base_amount_text=_text(tx.amount_ils),
        exchange_rate_text=_text(tx.exchange_rate),
        fee_text=_text(tx.fee),
    )


def statement_header(statement: ExtractedStatement) -> StatementHeader | None:
    """Return the card header fields of ``statement``, or None when none were reported.

    An unreadable ``statement_date`` is logged and left empty; it never fails
    the statement.
    """

    last4 = (statement.card_last_4 or "").strip()
    statement_date = None
    if statement.statement_date:
        try:
            statement_date = normalize_date(statement.statement_date)
        except ValueError:
            _logger.warning(
                "parse_document:statement_date_ignored %s", kv(value=statement.statement_date)
            )
    total = statement.total_amount
    if total is not None and not math.isfinite(total):
        total = None
    header = StatementHeader(
        card_number=f"****{last4[-4:]}" if last4 else None,
        card_type=(statement.card_type or "").strip() or None,
        statement_date=statement_date,
        statement_total=Decimal(_text(abs(total))) if total is not None else None,
    )
    if header == StatementHeader():
        return None
    return header


def parse_document(
    content: bytes,
    *,
    bank_name: str,
    statement_currency: str,
    extractor: DocumentExtractor,
) -> ParseResult:
    """Extract raw rows from a document via ``extractor``.

    Capability failures and a malformed top-level response propagate (they are
    statement-level failures); individual bad rows are dropped and recorded.
    """

    body = extractor.extract(
        content,
        instructions=prompting.build_system_instructions(),
        user_text=prompting.build_user_text(
            bank_name=bank_name, statement_currency=statement_currency
        ),
        response_format=prompting.build_response_format(),
    )
    try:
        statement = ExtractedStatement.model_validate(body)
    except ValidationError as e:
        raise ValueError(f"Invalid extraction response: {e.error_count()} error(s)") from e

    result = ParseResult()
    for index, item in enumerate(statement.transactions):
        try:
            result.rows.append(to_raw_row(index, item))
        except ExtractionError as err:
            _logger.warning("parse_document:row_dropped %s", kv(index=index, reason=err.reason))
            result.skipped.append(SkippedRow(line_no=index, reason=err.reason))
    result.header = statement_header(statement)

    _logger.info(
        "parse_document:done bank=%s rows=%d dropped=%d",
        bank_name,
        len(result.rows),
        len(result.skipped),
    )
    return result


__all__ = [
    "DocumentExtractor",
    "OpenAIDocumentExtractor",
    "parse_document",
    "statement_header",
    "to_raw_row",
]
