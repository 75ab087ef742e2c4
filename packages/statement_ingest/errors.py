"""Error taxonomy for statement ingestion.

Row-level errors (:class:`RowSkipped`, :class:`ExtractionError`) are absorbed
by the pipeline: the row is dropped, logged and counted. Statement-level
errors abort the run and end with the statement in ``failed`` status and the
error message stored verbatim.

Classes derive from the closest built-in so callers can keep catching
``ValueError`` / ``LookupError`` / ``RuntimeError`` generically.
"""

from __future__ import annotations


class FormatError(ValueError):
    """Input is too short or malformed to contain any transaction row."""


class RowSkipped(ValueError):
    """A single data row could not be used (too few fields, bad amount/date)."""

    def __init__(self, reason: str, *, line_no: int | None = None) -> None:
        self.reason = reason
        self.line_no = line_no
        where = f"line {line_no}: " if line_no is not None else ""
        super().__init__(f"{where}{reason}")


class ExtractionError(ValueError):
    """An extracted document row is missing required fields or is malformed."""

    def __init__(self, reason: str, *, index: int | None = None) -> None:
        self.reason = reason
        self.index = index
        where = f"item {index}: " if index is not None else ""
        super().__init__(f"{where}{reason}")


class NotFoundError(LookupError):
    """The statement id does not exist."""


class DownloadError(RuntimeError):
    """The raw statement file could not be fetched from storage."""


class PersistenceError(RuntimeError):
    """The bulk transaction write (or the final statement update) failed."""


class ProcessingTimeout(RuntimeError):
    """The wall-clock budget for one statement run was exceeded."""


__all__ = [
    "DownloadError",
    "ExtractionError",
    "FormatError",
    "NotFoundError",
    "PersistenceError",
    "ProcessingTimeout",
    "RowSkipped",
]
