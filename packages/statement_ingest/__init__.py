"""Public interface for the ``statement_ingest`` package.

Re-exports the pipeline entry points and record types as the stable import
surface; there is no runtime logic here.
"""

from .banks import BankProfile, detect_bank_name, get_bank_profile
from .categorization import DEFAULT_RULES, CategoryRule, categorize
from .config import IngestSettings
from .errors import (
    DownloadError,
    ExtractionError,
    FormatError,
    NotFoundError,
    PersistenceError,
    ProcessingTimeout,
    RowSkipped,
)
from .models import NormalizedTransaction, ParseResult, ProcessResult, RawRow, StatementHeader
from .normalizers import clean_merchant, format_date, normalize_row
from .orchestrator import StatementProcessor, compute_totals, process
from .progress import ProgressState, ProgressTracker, reduce_progress

__all__ = [
    # Pipeline
    "StatementProcessor",
    "process",
    "compute_totals",
    "normalize_row",
    "categorize",
    "clean_merchant",
    "format_date",
    "detect_bank_name",
    "get_bank_profile",
    # Progress
    "ProgressState",
    "ProgressTracker",
    "reduce_progress",
    # Models / config
    "BankProfile",
    "CategoryRule",
    "DEFAULT_RULES",
    "IngestSettings",
    "NormalizedTransaction",
    "ParseResult",
    "ProcessResult",
    "RawRow",
    "StatementHeader",
    # Errors
    "DownloadError",
    "ExtractionError",
    "FormatError",
    "NotFoundError",
    "PersistenceError",
    "ProcessingTimeout",
    "RowSkipped",
]
