"""
Build state machine — pending → processing → {completed, failed}.

The machine owns the in-memory view of one job and writes every
transition through to the job store.  Progress never decreases while
processing; terminal states are final.
"""
import asyncio
import logging
from typing import Any, Optional

from packager.exceptions import InvalidTransitionError
from packager.io.job_store import JobStore
from packager.io.schema import JobStatus

logger = logging.getLogger(__name__)


class BuildStateMachine:
    """Drives one job through its lifecycle and persists each step."""

    def __init__(
        self,
        job_id: str,
        job_store: JobStore,
        status: JobStatus = JobStatus.PENDING,
        progress: int = 0,
    ):
        self.job_id = job_id
        self.job_store = job_store
        self._status = status
        self._progress = progress
        self.stage: Optional[str] = None

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def progress(self) -> int:
        return self._progress

    async def _persist(self, status: JobStatus, progress: int, **extra: Any) -> None:
        await asyncio.to_thread(
            self.job_store.update_status, self.job_id, status, progress, **extra
        )

    def _require(self, *allowed: JobStatus) -> None:
        if self._status not in allowed:
            raise InvalidTransitionError(
                f"Job {self.job_id} is {self._status.value}; "
                f"expected one of {[s.value for s in allowed]}"
            )

    async def start(self) -> None:
        """pending → processing at progress 0."""
        self._require(JobStatus.PENDING)
        await self._persist(JobStatus.PROCESSING, self._progress)
        self._status = JobStatus.PROCESSING
        logger.info("[build %s] processing", self.job_id)

    async def advance(self, stage: str, progress: int, **extra: Any) -> None:
        """Record entry into *stage*.

        Progress is clamped to ``[current, 99]`` so it stays
        non-decreasing and 100 is reserved for completion.
        """
        self._require(JobStatus.PROCESSING)
        value = max(0, min(int(progress), 99))
        if value < self._progress:
            logger.warning(
                "[build %s] stage %s asked for progress %s below current %s; keeping %s",
                self.job_id, stage, progress, self._progress, self._progress,
            )
            value = self._progress
        await self._persist(JobStatus.PROCESSING, value, **extra)
        self._progress = value
        self.stage = stage
        logger.info("[build %s] %s (%s%%)", self.job_id, stage, value)

    async def complete(
        self,
        output_file_path: Optional[str],
        download_url: Optional[str],
        file_size: Optional[int],
    ) -> None:
        """processing → completed at progress 100.

        The store write happens before the in-memory state changes so a
        failed write can still be turned into ``failed``.
        """
        self._require(JobStatus.PROCESSING)
        await self._persist(
            JobStatus.COMPLETED,
            100,
            output_file_path=output_file_path,
            download_url=download_url,
            file_size=file_size,
        )
        self._status = JobStatus.COMPLETED
        self._progress = 100
        self.stage = "completed"
        logger.info("[build %s] completed (%s bytes)", self.job_id, file_size)

    async def fail(self, message: str) -> None:
        """pending|processing → failed, capturing *message* verbatim."""
        self._require(JobStatus.PENDING, JobStatus.PROCESSING)
        await self._persist(JobStatus.FAILED, self._progress, error_message=message)
        self._status = JobStatus.FAILED
        logger.error("[build %s] failed at %s: %s", self.job_id, self.stage, message)
