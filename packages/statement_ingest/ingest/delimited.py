"""Row Parser for delimited-text bank exports.

Contract
--------
- Content is UTF-8 (a leading BOM is tolerated), comma separated, and may
  contain right-to-left text. Parsing follows RFC 4180 quoting via the stdlib
  :mod:`csv` module, so quoted fields may contain commas.
- The first non-blank record is the header. Column positions come from exact
  header matches against the bank profile's vocabulary, and fall back
  column-by-column to the profile's positional defaults.
- Fewer than two non-blank records raises :class:`~statement_ingest.errors.FormatError`.
- A data row with fewer than :data:`MIN_FIELDS` fields, fewer fields than the
  highest required column index, or an unparseable amount is skipped and
  recorded in :attr:`ParseResult.skipped`; the run continues.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Sequence

from ..banks import COLUMNS, REQUIRED_COLUMNS, BankProfile, get_bank_profile
from ..errors import FormatError, RowSkipped
from ..logging_setup import get_logger, kv
from ..models import ParseResult, RawRow, SkippedRow
from ..normalizers import parse_amount, strip_bidi

MIN_FIELDS = 4

_logger = get_logger("statement_ingest.ingest.delimited")


def _decode(content: bytes | str) -> str:
    if isinstance(content, str):
        return content.lstrip("\ufeff")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise FormatError(f"statement is not valid UTF-8 text: {e}") from e


def _norm_header(value: str) -> str:
    return " ".join(strip_bidi(value).split()).casefold()


def resolve_columns(header: Sequence[str], profile: BankProfile) -> dict[str, int | None]:
    """Map each logical column to a field index for ``profile``.

    Header names win; a column the header does not name gets the profile's
    positional fallback (possibly ``None``).
    """

    normalized = [_norm_header(h) for h in header]
    resolved: dict[str, int | None] = {}
    for col in COLUMNS:
        aliases = {a.casefold() for a in profile.header_aliases.get(col, ())}
        idx = next((i for i, h in enumerate(normalized) if h in aliases), None)
        resolved[col] = idx if idx is not None else profile.fallback_positions.get(col)
    return resolved


def _optional_field(fields: Sequence[str], idx: int | None) -> str | None:
    if idx is None or idx >= len(fields):
        return None
    value = fields[idx].strip()
    return value or None


def _row_from_fields(
    fields: Sequence[str], columns: dict[str, int | None], *, line_no: int
) -> RawRow:
    if len(fields) < MIN_FIELDS:
        raise RowSkipped(f"insufficient columns ({len(fields)})", line_no=line_no)
    required: dict[str, str] = {}
    for col in REQUIRED_COLUMNS:
        idx = columns[col]
        if idx is None or idx >= len(fields):
            raise RowSkipped(
                f"missing {col} column (fields={len(fields)}, index={idx})", line_no=line_no
            )
        required[col] = fields[idx].strip()

    amount_text = required["amount"]
    try:
        parse_amount(amount_text)
    except ValueError as e:
        raise RowSkipped(f"invalid amount {amount_text!r}", line_no=line_no) from e

    return RawRow(
        source="delimited",
        line_no=line_no,
        date_text=required["date"],
        description_text=required["description"],
        amount_text=amount_text,
        currency_text=_optional_field(fields, columns["currency"]),
        direction_text=_optional_field(fields, columns["direction"]),
    )


def parse_delimited(content: bytes | str, *, bank_name: str | None) -> ParseResult:
    """Parse a delimited export into raw rows for the declared bank."""

    text = _decode(content)
    reader = csv.reader(io.StringIO(text))
    records: list[tuple[int, list[str]]] = []
    for fields in reader:
        if not any(f.strip() for f in fields):
            continue
        records.append((reader.line_num, fields))

    if len(records) < 2:
        raise FormatError(
            f"statement has {len(records)} non-blank line(s); need a header and at least one row"
        )

    profile = get_bank_profile(bank_name)
    _, header = records[0]
    columns = resolve_columns(header, profile)
    _logger.info(
        "parse_delimited:start bank=%s records=%d columns=%s",
        profile.name,
        len(records) - 1,
        columns,
    )

    result = ParseResult()
    for line_no, fields in records[1:]:
        try:
            result.rows.append(_row_from_fields(fields, columns, line_no=line_no))
        except RowSkipped as skip:
            _logger.info("parse_delimited:row_skipped %s", kv(line=line_no, reason=skip.reason))
            result.skipped.append(SkippedRow(line_no=line_no, reason=skip.reason))

    _logger.info(
        "parse_delimited:done rows=%d skipped=%d", len(result.rows), len(result.skipped)
    )
    return result


__all__ = ["MIN_FIELDS", "parse_delimited", "resolve_columns"]
