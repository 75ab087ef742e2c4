"""Raw statement file fetch (object storage collaborator).

A statement's ``file_url`` is either a bucket-relative path
(``<user_id>/<name>.csv``) or a public URL containing ``/<bucket>/``. Both
resolve to the same object key. Every failure surfaces as
:class:`~statement_ingest.errors.DownloadError`; retries are the caller's
concern.
"""

from __future__ import annotations

import urllib.error
import urllib.request
from pathlib import Path
from typing import Protocol

from .config import DEFAULT_BUCKET
from .errors import DownloadError
from .logging_setup import get_logger

MAX_FILE_SIZE = 20 * 1024 * 1024
ALLOWED_SUFFIXES: dict[str, str] = {".csv": "csv", ".pdf": "pdf"}

_logger = get_logger("statement_ingest.storage")


class FileStore(Protocol):
    def fetch(self, file_url: str) -> bytes: ...


def resolve_storage_path(file_url: str, *, bucket: str = DEFAULT_BUCKET) -> str:
    """Return the bucket-relative object key for ``file_url``.

    Raises ``ValueError`` when a URL does not reference ``bucket``.
    """

    url = file_url.strip()
    marker = f"/{bucket}/"
    if "://" in url:
        if marker not in url:
            raise ValueError(f"Invalid file URL format (no '{marker}' segment): {file_url!r}")
        url = url.split(marker, 1)[1]
    key = url.lstrip("/")
    if not key or any(part == ".." for part in key.split("/")):
        raise ValueError(f"Invalid storage path: {file_url!r}")
    return key


def file_type_for(name: str) -> str:
    """Return ``"csv"`` or ``"pdf"`` for an upload name, else raise ``ValueError``."""

    suffix = Path(name).suffix.lower()
    try:
        return ALLOWED_SUFFIXES[suffix]
    except KeyError:
        raise ValueError(f"{name} must be CSV or PDF") from None


class LocalFileStore:
    """Bucket stored as a directory tree under ``root``."""

    def __init__(self, root: Path, *, bucket: str = DEFAULT_BUCKET) -> None:
        self.root = Path(root)
        self.bucket = bucket

    def path_for(self, file_url: str) -> Path:
        return self.root / resolve_storage_path(file_url, bucket=self.bucket)

    def fetch(self, file_url: str) -> bytes:
        try:
            path = self.path_for(file_url)
            data = path.read_bytes()
        except (OSError, ValueError) as e:
            raise DownloadError(f"Failed to download file: {e}") from e
        _logger.info("storage:fetched path=%s bytes=%d", path, len(data))
        return data

    def store(self, key: str, data: bytes) -> str:
        """Write ``data`` under ``key`` and return the bucket-relative path."""

        if len(data) > MAX_FILE_SIZE:
            raise ValueError(f"{key} exceeds {MAX_FILE_SIZE // (1024 * 1024)}MB limit")
        rel = resolve_storage_path(key, bucket=self.bucket)
        target = self.root / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_name(target.name + ".tmp")
        tmp.write_bytes(data)
        tmp.replace(target)
        return rel


class HttpFileStore:
    """Fetch files over HTTP(S), e.g. from signed storage URLs."""

    def __init__(self, *, timeout: float = 30.0, headers: dict[str, str] | None = None) -> None:
        self.timeout = timeout
        self.headers = dict(headers or {})

    def fetch(self, file_url: str) -> bytes:
        req = urllib.request.Request(file_url, method="GET")
        for k, v in self.headers.items():
            req.add_header(k, v)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = resp.read(MAX_FILE_SIZE + 1)
        except urllib.error.HTTPError as e:
            raise DownloadError(f"Failed to download file: {e.code} {e.reason}") from e
        except (urllib.error.URLError, OSError) as e:
            raise DownloadError(f"Failed to download file: {e}") from e
        if not data:
            raise DownloadError("No file data received")
        if len(data) > MAX_FILE_SIZE:
            raise DownloadError("Failed to download file: exceeds size limit")
        return data


__all__ = [
    "ALLOWED_SUFFIXES",
    "FileStore",
    "HttpFileStore",
    "LocalFileStore",
    "MAX_FILE_SIZE",
    "file_type_for",
    "resolve_storage_path",
]
