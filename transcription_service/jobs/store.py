"""Job state store: the single source of truth for polling clients.

JobStore is the abstract seam; InMemoryJobStore is the default backend.
Every mutation validates the state machine, so an illegal transition or a
second terminal write raises JobStateError instead of corrupting a record.
Reads return deep copies, so callers never observe a half-applied write.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any

from transcription_service.jobs.models import (
    FlaggedSegment,
    Job,
    JobResult,
    JobStatus,
    JobStep,
    can_transition,
)
from transcription_service.utils.errors import JobStateError

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Abstract job store keyed by job id."""

    @abstractmethod
    async def create(self, job: Job) -> None:
        """Insert a new job. Raises JobStateError if the id already exists."""

    @abstractmethod
    async def get(self, job_id: str) -> Job | None:
        """Return a snapshot of the job, or None if unknown."""

    @abstractmethod
    async def append_step(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        message: str,
        **extra: Any,
    ) -> Job:
        """Move the job to `status` and append a step entry."""

    @abstractmethod
    async def complete(
        self,
        job_id: str,
        result: JobResult,
        flagged_segments: Iterable[FlaggedSegment],
        quality_score: float,
        message: str = "Transcription completed",
    ) -> Job:
        """Terminal write: record the result and move to completed."""

    @abstractmethod
    async def fail(
        self,
        job_id: str,
        error: str,
        error_code: str,
    ) -> Job:
        """Terminal write: record the error and move to failed."""

    @abstractmethod
    async def purge_expired(self, now: datetime | None = None) -> int:
        """Drop terminal jobs older than the retention period. Returns the count."""


class InMemoryJobStore(JobStore):
    """Process-local job store with per-record locking and TTL eviction.

    Args:
        ttl_seconds: How long a finished job stays queryable.
    """

    def __init__(self, ttl_seconds: float = 24 * 3600.0) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._jobs: dict[str, Job] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def _require(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobStateError(f"Unknown job '{job_id}'", job_id=job_id)
        return job

    def _check_transition(self, job: Job, status: JobStatus) -> None:
        if not can_transition(job.status, status):
            raise JobStateError(
                f"Illegal transition {job.status} -> {status}",
                job_id=job.id,
                current_status=job.status,
            )

    def _record(
        self,
        job: Job,
        status: JobStatus,
        progress: int,
        message: str,
        extra: dict[str, Any],
    ) -> None:
        if not 0 <= progress <= 100:
            raise JobStateError(f"Progress {progress} out of range", job_id=job.id)
        if progress < job.progress:
            raise JobStateError(
                f"Progress may not decrease ({job.progress} -> {progress})",
                job_id=job.id,
                current_status=job.status,
            )
        now = datetime.now(UTC)
        job.status = status
        job.progress = progress
        job.updated_at = now
        job.steps.append(
            JobStep(
                step=str(status),
                message=message,
                progress=progress,
                timestamp=now,
                extra=extra,
            )
        )

    async def create(self, job: Job) -> None:
        if job.id in self._jobs:
            raise JobStateError(f"Job '{job.id}' already exists", job_id=job.id)
        self._jobs[job.id] = copy.deepcopy(job)
        self._locks[job.id] = asyncio.Lock()

    async def get(self, job_id: str) -> Job | None:
        lock = self._locks.get(job_id)
        if lock is None:
            return None
        async with lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    async def append_step(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        message: str,
        **extra: Any,
    ) -> Job:
        job = self._require(job_id)
        async with self._locks[job_id]:
            if status.is_terminal:
                raise JobStateError(
                    "Use complete() or fail() for terminal states",
                    job_id=job_id,
                    current_status=job.status,
                )
            self._check_transition(job, status)
            self._record(job, status, progress, message, extra)
            return copy.deepcopy(job)

    async def complete(
        self,
        job_id: str,
        result: JobResult,
        flagged_segments: Iterable[FlaggedSegment],
        quality_score: float,
        message: str = "Transcription completed",
    ) -> Job:
        job = self._require(job_id)
        async with self._locks[job_id]:
            self._check_transition(job, JobStatus.COMPLETED)
            self._record(job, JobStatus.COMPLETED, 100, message, {})
            job.result = result
            job.flagged_segments = list(flagged_segments)
            job.quality_score = quality_score
            job.finished_at = job.updated_at
            return copy.deepcopy(job)

    async def fail(
        self,
        job_id: str,
        error: str,
        error_code: str,
    ) -> Job:
        job = self._require(job_id)
        async with self._locks[job_id]:
            self._check_transition(job, JobStatus.FAILED)
            failed_step = job.last_step or str(JobStatus.PENDING)
            self._record(
                job,
                JobStatus.FAILED,
                job.progress,
                error,
                {"failed_step": failed_step, "error_code": str(error_code)},
            )
            job.error = error
            job.error_code = str(error_code)
            job.finished_at = job.updated_at
            return copy.deepcopy(job)

    async def purge_expired(self, now: datetime | None = None) -> int:
        cutoff = (now or datetime.now(UTC)) - self._ttl
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_at is not None and job.finished_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
            del self._locks[job_id]
        if expired:
            logger.info("Evicted %d expired jobs", len(expired))
        return len(expired)
