"""Pytest configuration for test isolation.

Every test gets its own SQLite database file and storage root under
``tmp_path``. Cached engines are disposed afterwards so one test's database
never leaks into another, and the package logger is reset in case a CLI test
configured it (``configure_logging`` disables propagation, which would hide
records from ``caplog``).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pytest

from db.client import dispose_engines
from statement_ingest import logging_setup
from statement_ingest.storage import LocalFileStore
from tests.helpers.db import bootstrap_sqlite_db


@dataclass
class Workspace:
    database_url: str
    storage_root: Path
    store: LocalFileStore

    def put(self, key: str, data: bytes | str) -> str:
        raw = data.encode("utf-8") if isinstance(data, str) else data
        return self.store.store(key, raw)


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for key in list(os.environ):
        if key.startswith("SI_") or key in {"DATABASE_URL", "STATEMENT_INGEST_LOG_LEVEL"}:
            monkeypatch.delenv(key, raising=False)
    yield
    dispose_engines()
    pkg_logger = logging.getLogger("statement_ingest")
    for h in list(pkg_logger.handlers):
        pkg_logger.removeHandler(h)
    pkg_logger.propagate = True
    pkg_logger.setLevel(logging.NOTSET)
    logging_setup._CONFIGURED = False


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    url = bootstrap_sqlite_db(tmp_path / "db" / "test.sqlite3")
    root = tmp_path / "storage"
    return Workspace(database_url=url, storage_root=root, store=LocalFileStore(root))
