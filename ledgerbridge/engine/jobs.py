"""
Single-slot background job tracking.

Each job kind owns one slot holding at most one ``asyncio.Task``. Starting
a job while it runs returns the current snapshot unchanged; otherwise the
state is reset and the engine is launched in the background. Progress and
the terminal ``done``/``error`` state are written to a lock-guarded state
object, and readers always get copies.

State lives in memory only. After a restart every slot is ``idle`` again;
row statuses in the local store remain authoritative.
"""

import asyncio
import threading
from datetime import datetime
from typing import Awaitable, Callable, Optional

import structlog

from ledgerbridge.models.enums import JobKind, JobStatus
from ledgerbridge.models.jobs import CategorizeJobState, JobState, SyncJobState

logger = structlog.get_logger(__name__)


ProgressCallback = Callable[[dict[str, int]], None]
JobRunner = Callable[[int, ProgressCallback], Awaitable[dict[str, int]]]

STATE_TYPES: dict[JobKind, type[JobState]] = {
    JobKind.CATEGORIZE: CategorizeJobState,
    JobKind.SYNC: SyncJobState,
}


class JobTracker:
    """
    Tracks one kind of background job.

    Attributes:
        kind: Job kind of this slot
    """

    def __init__(self, kind: JobKind, runner: JobRunner):
        """
        Args:
            kind: Job kind of this slot
            runner: Coroutine function ``runner(limit, on_progress) -> counters``
        """
        self.kind = kind
        self._runner = runner
        self._state_type = STATE_TYPES[kind]
        self._state: JobState = self._state_type()
        self._lock = threading.Lock()
        self._task: Optional[asyncio.Task] = None

    def get(self) -> JobState:
        """Return a snapshot of the current state."""
        with self._lock:
            return self._state.model_copy()

    def _apply(self, counters: dict, **changes) -> None:
        fields = self._state_type.model_fields
        update = {key: value for key, value in counters.items() if key in fields}
        update.update(changes)
        with self._lock:
            self._state = self._state.model_copy(update=update)

    def _on_progress(self, counters: dict[str, int]) -> None:
        self._apply(counters)

    async def start(self, limit: int) -> JobState:
        """
        Start the job unless one is already running.

        Returns:
            The existing snapshot when running, else the fresh running snapshot
        """
        with self._lock:
            if self._state.status == JobStatus.RUNNING:
                logger.info("job_already_running", kind=self.kind.value)
                return self._state.model_copy()
            self._state = self._state_type(
                status=JobStatus.RUNNING,
                started_at=datetime.utcnow(),
            )
            snapshot = self._state.model_copy()

        self._task = asyncio.create_task(self._run(limit))
        logger.info("job_started", kind=self.kind.value, limit=limit)
        return snapshot

    async def _run(self, limit: int) -> None:
        try:
            result = await self._runner(limit, self._on_progress)
        except asyncio.CancelledError:
            self._apply(
                {},
                status=JobStatus.ERROR,
                error="Job cancelled",
                finished_at=datetime.utcnow(),
            )
            logger.warning("job_cancelled", kind=self.kind.value)
            raise
        except Exception as e:
            self._apply(
                {},
                status=JobStatus.ERROR,
                error=str(e) or type(e).__name__,
                finished_at=datetime.utcnow(),
            )
            logger.error(
                "job_failed",
                kind=self.kind.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        self._apply(result, status=JobStatus.DONE, finished_at=datetime.utcnow())
        logger.info("job_finished", kind=self.kind.value, **result)

    async def wait(self) -> JobState:
        """Await the in-flight task, if any, and return the final snapshot."""
        if self._task is not None:
            await self._task
        return self.get()
