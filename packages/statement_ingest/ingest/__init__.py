"""Row Parsers: delimited text (CSV exports) and documents (PDF via extraction)."""

from .delimited import parse_delimited, resolve_columns
from .document import DocumentExtractor, OpenAIDocumentExtractor, parse_document

__all__ = [
    "DocumentExtractor",
    "OpenAIDocumentExtractor",
    "parse_delimited",
    "parse_document",
    "resolve_columns",
]
