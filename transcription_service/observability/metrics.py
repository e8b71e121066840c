"""Job metrics collection and reporting.

Provides the JobMetrics dataclass, a StageTimer context manager for
measuring pipeline stage durations, and log_job_metrics() for emitting
one structured JSON line per finished job.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class JobMetrics:
    """All metrics collected for a single transcription job."""

    job_id: str
    status: str
    route: str
    audio_format: str
    source_size_bytes: int
    audio_duration_seconds: float
    processing_wall_time_seconds: float
    chunks_count: int = 0
    failed_chunks: int = 0
    flagged_count: int = 0
    quality_score: float | None = None
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_code: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a pipeline stage.

    When given a timings dict, the elapsed time is stored under the stage
    name on success, or under "_<stage>_failed" when the block raises.

    Usage:
        with StageTimer("download", timings):
            await fetch()
    """

    def __init__(
        self, stage_name: str, timings: dict[str, float] | None = None
    ) -> None:
        self.stage_name = stage_name
        self.start_time: datetime | None = None
        self.end_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._timings = timings
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        elapsed = time.monotonic() - self._mono_start
        self.end_time = datetime.now(UTC)
        self.duration_seconds = elapsed
        if self._timings is not None:
            if exc_type is not None:
                self._timings[f"_{self.stage_name}_failed"] = elapsed
            else:
                self._timings[self.stage_name] = elapsed


def log_job_metrics(metrics: JobMetrics) -> None:
    """Emit job metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated JobMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "job_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry, ensure_ascii=False))
