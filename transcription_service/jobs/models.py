"""Job data models and the job state machine.

pending -> downloading -> transcribing -> completed                 (direct)
pending -> downloading -> transcoding -> transcribing
        -> [merging] -> completed                                   (chunked)

Any non-terminal state may move to failed. A step may also be appended
without changing status (e.g. per-chunk progress while transcribing).
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class JobStatus(StrEnum):
    PENDING = "pending"
    DOWNLOADING = "downloading"
    TRANSCODING = "transcoding"
    TRANSCRIBING = "transcribing"
    MERGING = "merging"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.DOWNLOADING}),
    JobStatus.DOWNLOADING: frozenset({JobStatus.TRANSCRIBING, JobStatus.TRANSCODING}),
    JobStatus.TRANSCODING: frozenset({JobStatus.TRANSCRIBING}),
    JobStatus.TRANSCRIBING: frozenset({JobStatus.MERGING, JobStatus.COMPLETED}),
    JobStatus.MERGING: frozenset({JobStatus.COMPLETED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def can_transition(current: JobStatus, new: JobStatus) -> bool:
    """Whether a job in `current` may move to `new`."""
    if current.is_terminal:
        return False
    if new == JobStatus.FAILED or new == current:
        return True
    return new in ALLOWED_TRANSITIONS[current]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_job_id() -> str:
    return f"job_{uuid.uuid4().hex}"


@dataclass
class JobStep:
    """One entry of a job's append-only audit trail."""

    step: str
    message: str
    progress: int
    timestamp: datetime = field(default_factory=_utcnow)
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.extra,
            "step": self.step,
            "message": self.message,
            "progress": self.progress,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class FlaggedSegment:
    """A segment the quality scorer marked as suspect.

    start/end are seconds in the source timeline, even on the chunked path.
    """

    start: float
    end: float
    text: str
    confidence_score: float | None
    flag_type: str
    chunk_index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if self.chunk_index is None:
            del data["chunk_index"]
        return data


@dataclass
class JobResult:
    """Final transcript and figures, present only on completed jobs."""

    transcription: str
    chunks_count: int
    successful_chunks: int
    failed_chunks: int
    duration_seconds: float
    audio_duration_seconds: float | None
    source_duration_sec: float | None = None
    language_detected: str | None = None
    segments_count: int = 0
    was_transcoded: bool = False
    original_format: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Job:
    """One transcription request and its tracked lifecycle."""

    audio_url: str
    language: str = "he"
    recording_id: str | None = None
    optimize_for: str = "accuracy"
    id: str = field(default_factory=new_job_id)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    steps: list[JobStep] = field(default_factory=list)
    result: JobResult | None = None
    error: str | None = None
    error_code: str | None = None
    flagged_segments: list[FlaggedSegment] = field(default_factory=list)
    quality_score: float | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None

    @property
    def last_step(self) -> str | None:
        return self.steps[-1].step if self.steps else None

    @property
    def flagged_count(self) -> int:
        return len(self.flagged_segments)
