"""Logging for ``statement_ingest``.

Entrypoints call :func:`configure_logging` once; library modules only ever
call :func:`get_logger` with a dotted name under ``statement_ingest`` and never
attach handlers themselves.

Log lines are ``event:key=value`` pairs (``process:failed statement_id=...``).
:func:`kv` renders the pairs so values containing spaces, such as error
messages, stay a single token for grep and log shippers.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Any

ROOT_LOGGER = "statement_ingest"
LEVEL_ENV = "STATEMENT_INGEST_LOG_LEVEL"
DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

_CONFIGURED = False


def resolve_level(level: int | str | None) -> int:
    """Return a numeric level from an int, a level name or ``LEVEL_ENV``.

    Unknown names resolve to ``INFO``.
    """

    if level is None:
        level = os.getenv(LEVEL_ENV) or logging.INFO
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name.isdigit():
        return int(name)
    mapped = logging.getLevelNamesMapping().get(name)
    return mapped if mapped is not None else logging.INFO


def configure_logging(
    level: int | str | None = None,
    *,
    stream: IO[str] | None = None,
    fmt: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """Send package records to ``stream`` (stderr by default); idempotent.

    The package logger stops propagating once configured so records are not
    printed twice when the host also configures the root logger.
    """

    global _CONFIGURED
    logger = logging.getLogger(ROOT_LOGGER)
    if _CONFIGURED:
        return logger

    for h in [h for h in logger.handlers if isinstance(h, logging.NullHandler)]:
        logger.removeHandler(h)

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)
    logger.setLevel(resolve_level(level))
    logger.propagate = False
    _CONFIGURED = True
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return ``logging.getLogger(name)``.

    Before :func:`configure_logging` runs the package logger only holds a
    ``NullHandler`` and still propagates, so host applications (and pytest's
    ``caplog``) see every record.
    """

    root = logging.getLogger(ROOT_LOGGER)
    if not _CONFIGURED and not root.handlers:
        root.addHandler(logging.NullHandler())
    return logging.getLogger(name)


def kv(**fields: Any) -> str:
    """Render ``key=value`` pairs; values with whitespace or quotes are repr-quoted.

    >>> kv(statement_id="s1", error="Failed to download file")
    "statement_id=s1 error='Failed to download file'"
    """

    parts = []
    for key, value in fields.items():
        text = "" if value is None else str(value)
        if not text or any(c.isspace() or c in "'\"=" for c in text):
            text = repr(text)
        parts.append(f"{key}={text}")
    return " ".join(parts)


__all__ = ["configure_logging", "get_logger", "kv", "resolve_level"]
