"""Client-side progress tracking for uploaded statements.

Each uploaded file moves through fixed milestones::

    0 upload started -> 30 uploaded -> 50 stored -> 70 registered -> 100 terminal

Updates arrive from two unreliable sources, a push channel (stage events from
the processor) and a fallback poll of the statement row. Both feed the same
reducer, :func:`reduce_progress`, which orders updates by status rank
(``uploading < processing < completed/failed``) so neither source can move a
file backwards. Terminal states are sticky.
"""

from __future__ import annotations

import dataclasses
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Literal

from db.client import session_scope

from .errors import NotFoundError
from .logging_setup import get_logger
from .models import Stage
from .persistence import get_statement_snapshot

_logger = get_logger("statement_ingest.progress")

type UploadStatus = Literal["uploading", "processing", "completed", "failed"]
type UpdateSource = Literal["local", "push", "poll"]

UPLOAD_STARTED = 0
UPLOADED = 30
STORED = 50
REGISTERED = 70
DONE = 100

_RANK: dict[str, int] = {"uploading": 0, "processing": 1, "completed": 2, "failed": 2}
_DEFAULT_PERCENT: dict[str, int] = {
    "uploading": UPLOAD_STARTED,
    "processing": REGISTERED,
    "completed": DONE,
    "failed": DONE,
}


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    status: UploadStatus
    percent: int | None = None
    error: str | None = None
    statement_id: str | None = None
    source: UpdateSource = "local"


@dataclass(frozen=True, slots=True)
class ProgressState:
    """What the UI shows for one file."""

    file_name: str
    status: UploadStatus = "uploading"
    percent: int = UPLOAD_STARTED
    statement_id: str | None = None
    error: str | None = None
    stuck: bool = False

    @property
    def terminal(self) -> bool:
        return self.status in ("completed", "failed")


def reduce_progress(state: ProgressState, update: ProgressUpdate) -> ProgressState:
    """Apply ``update`` to ``state`` and return the new state.

    Lower-ranked updates are ignored; equal-rank updates can only raise the
    percentage. Once terminal, only a missing error message may be filled in.
    """

    if state.terminal:
        if update.status == state.status and state.error is None and update.error:
            return dataclasses.replace(state, error=update.error)
        return state

    rank, new_rank = _RANK[state.status], _RANK[update.status]
    if new_rank < rank:
        return state

    percent = update.percent if update.percent is not None else _DEFAULT_PERCENT[update.status]
    percent = max(state.percent, min(DONE, max(0, percent)))
    if update.status in ("completed", "failed"):
        percent = DONE

    error = update.error or state.error

    return dataclasses.replace(
        state,
        status=update.status,
        percent=percent,
        statement_id=update.statement_id or state.statement_id,
        error=error,
        stuck=False,
    )


def update_from_stage(statement_id: str, stage: Stage) -> ProgressUpdate:
    """Translate an orchestrator stage event into a push update."""

    if stage == "completed":
        return ProgressUpdate("completed", statement_id=statement_id, source="push")
    if stage == "failed":
        return ProgressUpdate("failed", statement_id=statement_id, source="push")
    return ProgressUpdate("processing", REGISTERED, statement_id=statement_id, source="push")


def poll_statement_status(
    statement_id: str, *, database_url: str | None = None
) -> ProgressUpdate:
    """Read the statement row and express it as a poll update."""

    try:
        with session_scope(database_url=database_url) as session:
            snap = get_statement_snapshot(session, statement_id)
    except NotFoundError as e:
        return ProgressUpdate("failed", error=str(e), statement_id=statement_id, source="poll")

    if snap.status == "completed":
        return ProgressUpdate("completed", statement_id=statement_id, source="poll")
    if snap.status == "failed":
        return ProgressUpdate(
            "failed",
            error=snap.error_message or "Processing failed",
            statement_id=statement_id,
            source="poll",
        )
    return ProgressUpdate("processing", REGISTERED, statement_id=statement_id, source="poll")


class ProgressTracker:
    """Track one file; accepts push updates and polls as a fallback.

    ``stuck_after`` bounds how long a registered statement may stay below 100%
    before :meth:`wait` gives up and flags the state as ``stuck``.
    """

    def __init__(
        self,
        file_name: str,
        *,
        poll: Callable[[str], ProgressUpdate],
        poll_interval: float = 2.0,
        stuck_after: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._state = ProgressState(file_name=file_name)
        self._lock = threading.Lock()
        self._poll = poll
        self._poll_interval = poll_interval
        self._stuck_after = stuck_after
        self._clock = clock
        self._sleep = sleep
        self._registered_at: float | None = None

    @property
    def state(self) -> ProgressState:
        with self._lock:
            return self._state

    def apply(self, update: ProgressUpdate) -> ProgressState:
        with self._lock:
            before = self._state
            self._state = reduce_progress(before, update)
            if self._state.statement_id and self._registered_at is None:
                self._registered_at = self._clock()
            after = self._state
        if after != before:
            _logger.debug(
                "progress:update file=%s source=%s status=%s percent=%d",
                after.file_name,
                update.source,
                after.status,
                after.percent,
            )
        return after

    def uploaded(self) -> ProgressState:
        return self.apply(ProgressUpdate("uploading", UPLOADED))

    def stored(self) -> ProgressState:
        return self.apply(ProgressUpdate("uploading", STORED))

    def registered(self, statement_id: str) -> ProgressState:
        return self.apply(ProgressUpdate("processing", REGISTERED, statement_id=statement_id))

    def fail(self, error: str) -> ProgressState:
        return self.apply(ProgressUpdate("failed", error=error))

    def stage_listener(self) -> Callable[[str, Stage], None]:
        """Return a callback suitable for ``StatementProcessor(on_stage=...)``."""

        def _on_stage(statement_id: str, stage: Stage) -> None:
            if statement_id == self.state.statement_id:
                self.apply(update_from_stage(statement_id, stage))

        return _on_stage

    def poll_once(self) -> ProgressState:
        current = self.state
        if current.terminal or current.statement_id is None:
            return current
        return self.apply(self._poll(current.statement_id))

    def wait(self) -> ProgressState:
        """Poll until the state is terminal or the stuck bound is exceeded."""

        while True:
            current = self.poll_once()
            if current.terminal:
                return current
            if current.statement_id is None:
                raise RuntimeError("cannot wait for a file that has not been registered")
            started = self._registered_at if self._registered_at is not None else self._clock()
            if self._clock() - started >= self._stuck_after:
                with self._lock:
                    if not self._state.terminal:
                        self._state = dataclasses.replace(self._state, stuck=True)
                    current = self._state
                _logger.warning(
                    "progress:stuck file=%s statement_id=%s percent=%d",
                    current.file_name,
                    current.statement_id,
                    current.percent,
                )
                return current
            self._sleep(self._poll_interval)


__all__ = [
    "DONE",
    "REGISTERED",
    "STORED",
    "UPLOADED",
    "UPLOAD_STARTED",
    "ProgressState",
    "ProgressTracker",
    "ProgressUpdate",
    "poll_statement_status",
    "reduce_progress",
    "update_from_stage",
]
