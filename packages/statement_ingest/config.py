"""Runtime settings resolved from environment variables.

Entrypoints load a local ``.env`` (``python-dotenv``) before calling
:meth:`IngestSettings.from_env`; library code receives settings explicitly and
never reads the environment on its own.

Variables
---------
- ``DATABASE_URL``: SQLAlchemy URL (read by ``db.client``).
- ``SI_STORAGE_ROOT``: directory holding uploaded statement files.
- ``SI_STORAGE_BUCKET``: bucket name used in public file URLs.
- ``SI_EXTRACTION_MODEL``: model used for PDF extraction.
- ``SI_BASE_CURRENCY``: the user's base currency (ISO 4217).
- ``SI_PROCESS_TIMEOUT_SEC``: wall-clock budget per statement (unset = none).
- ``SI_STALE_AFTER_SEC``: age after which a ``processing`` statement is stuck.
- ``SI_MAX_WORKERS``: concurrency cap for ``process_many``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BUCKET = "bank-statements"
DEFAULT_BASE_CURRENCY = "ILS"
DEFAULT_EXTRACTION_MODEL = "gpt-5"
DEFAULT_STALE_AFTER_SEC = 15 * 60
DEFAULT_MAX_WORKERS = 4


def _env_float(env: Mapping[str, str], key: str) -> float | None:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return None
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be a number, got {raw!r}") from e
    return value if value > 0 else None


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ValueError(f"{key} must be an integer, got {raw!r}") from e
    return max(1, value)


@dataclass(frozen=True, slots=True)
class IngestSettings:
    storage_root: Path = Path("./storage")
    storage_bucket: str = DEFAULT_BUCKET
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    base_currency: str = DEFAULT_BASE_CURRENCY
    process_timeout_sec: float | None = None
    stale_after_sec: float = DEFAULT_STALE_AFTER_SEC
    max_workers: int = DEFAULT_MAX_WORKERS

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> IngestSettings:
        e = os.environ if env is None else env
        return cls(
            storage_root=Path(e.get("SI_STORAGE_ROOT") or "./storage"),
            storage_bucket=(e.get("SI_STORAGE_BUCKET") or DEFAULT_BUCKET).strip(),
            extraction_model=(e.get("SI_EXTRACTION_MODEL") or DEFAULT_EXTRACTION_MODEL).strip(),
            base_currency=(e.get("SI_BASE_CURRENCY") or DEFAULT_BASE_CURRENCY).strip().upper(),
            process_timeout_sec=_env_float(e, "SI_PROCESS_TIMEOUT_SEC"),
            stale_after_sec=_env_float(e, "SI_STALE_AFTER_SEC") or DEFAULT_STALE_AFTER_SEC,
            max_workers=_env_int(e, "SI_MAX_WORKERS", DEFAULT_MAX_WORKERS),
        )


__all__ = ["IngestSettings"]
