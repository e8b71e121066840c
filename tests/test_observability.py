"""Tests for structured logging and per-job metrics."""

import json
import logging
import sys
import time

import pytest

from transcription_service.observability.logger import StructuredJsonFormatter
from transcription_service.observability.metrics import (
    JobMetrics,
    StageTimer,
    log_job_metrics,
)


def _record(msg="hello", level=logging.INFO, exc_info=None, **extra):
    record = logging.LogRecord(
        name="transcription_service.test",
        level=level,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    """Verify structured JSON log output."""

    def test_output_is_valid_json(self) -> None:
        parsed = json.loads(StructuredJsonFormatter().format(_record()))

        assert parsed["message"] == "hello"
        assert parsed["severity"] == "INFO"
        assert parsed["logger"] == "transcription_service.test"
        assert "timestamp" in parsed

    def test_severity_levels(self) -> None:
        formatter = StructuredJsonFormatter()
        parsed = json.loads(formatter.format(_record(level=logging.ERROR)))
        assert parsed["severity"] == "ERROR"

    def test_includes_job_context(self) -> None:
        record = _record(job_id="job_1", stage="transcribing", progress=40, error_code=None)
        parsed = json.loads(StructuredJsonFormatter().format(record))

        assert parsed["job_id"] == "job_1"
        assert parsed["stage"] == "transcribing"
        assert parsed["progress"] == 40
        assert "error_code" not in parsed

    def test_non_ascii_preserved(self) -> None:
        output = StructuredJsonFormatter().format(_record(msg="שלום"))
        assert "שלום" in output

    def test_exception_included(self) -> None:
        try:
            raise ValueError("bad chunk")
        except ValueError:
            record = _record(level=logging.ERROR, exc_info=sys.exc_info())

        parsed = json.loads(StructuredJsonFormatter().format(record))
        assert parsed["exception"] == "bad chunk"


class TestStageTimer:
    """Tests for StageTimer."""

    def test_records_duration(self):
        timings: dict[str, float] = {}
        with StageTimer("download", timings) as timer:
            time.sleep(0.01)

        assert timer.duration_seconds >= 0.01
        assert timings["download"] == timer.duration_seconds
        assert timer.start_time is not None and timer.end_time is not None

    def test_records_failure_under_separate_key(self):
        timings: dict[str, float] = {}
        with pytest.raises(RuntimeError):
            with StageTimer("transcode", timings):
                raise RuntimeError("boom")

        assert "transcode" not in timings
        assert "_transcode_failed" in timings


class TestLogJobMetrics:
    """Tests for log_job_metrics()."""

    def test_emits_single_json_line(self, capsys):
        metrics = JobMetrics(
            job_id="job_1",
            status="completed",
            route="chunked",
            audio_format="wav",
            source_size_bytes=40_000_000,
            audio_duration_seconds=5400.0,
            processing_wall_time_seconds=310.2,
            chunks_count=2,
            flagged_count=3,
            quality_score=85.0,
            stage_timings={"transcode": 40.0},
        )

        log_job_metrics(metrics)

        lines = capsys.readouterr().out.strip().splitlines()
        assert len(lines) == 1
        entry = json.loads(lines[0])
        assert entry["metric_type"] == "job_completion"
        assert entry["severity"] == "INFO"
        assert entry["route"] == "chunked"
        assert entry["chunks_count"] == 2
        assert entry["stage_timings"] == {"transcode": 40.0}
        assert entry["error_code"] is None
