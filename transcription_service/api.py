"""HTTP surface: start / status / result multiplexed over one endpoint.

Request bodies are JSON objects with an `action` field ("start" when
omitted). Every response is a JSON object with `success` and, on errors,
an `error_code` the client can branch on.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from transcription_service.config import ServiceConfig
from transcription_service.jobs.models import Job, JobStatus
from transcription_service.jobs.orchestrator import JobOrchestrator
from transcription_service.utils.errors import ErrorCode

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 25.0


def _error(status_code: int, error_code: ErrorCode, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "error_code": error_code, **extra},
    )


def status_payload(job: Job) -> dict[str, Any]:
    """Status view of a job: progress and steps, never the flagged segments."""
    payload: dict[str, Any] = {
        "success": True,
        "job_id": job.id,
        "status": job.status,
        "progress": job.progress,
        "steps": [step.to_dict() for step in job.steps],
        "flagged_count": job.flagged_count,
        "created_at": job.created_at.isoformat(),
    }
    if job.status == JobStatus.FAILED:
        payload["error"] = job.error
        payload["error_code"] = job.error_code
    if job.quality_score is not None:
        payload["quality_score"] = job.quality_score
    return payload


def result_payload(job: Job) -> tuple[int, dict[str, Any]]:
    """Result view of a job with the HTTP status it should be served with."""
    if job.status == JobStatus.FAILED:
        return 400, {
            "success": False,
            "job_id": job.id,
            "error": job.error,
            "error_code": job.error_code,
            "steps": [step.to_dict() for step in job.steps],
        }

    if job.status != JobStatus.COMPLETED or job.result is None:
        return 202, {
            "success": False,
            "job_id": job.id,
            "error_code": ErrorCode.JOB_IN_PROGRESS,
            "status": job.status,
            "progress": job.progress,
        }

    result = job.result
    return 200, {
        "success": True,
        "job_id": job.id,
        "transcription": result.transcription,
        "chunks_count": result.chunks_count,
        "successful_chunks": result.successful_chunks,
        "failed_chunks": result.failed_chunks,
        "duration_seconds": result.duration_seconds,
        "audio_duration_seconds": result.audio_duration_seconds,
        "source_duration_sec": result.source_duration_sec,
        "quality_score": job.quality_score,
        "flagged_count": job.flagged_count,
        "flagged_segments": [seg.to_dict() for seg in job.flagged_segments],
        "segments_count": result.segments_count,
        "language_detected": result.language_detected,
        "was_transcoded": result.was_transcoded,
        "original_format": result.original_format,
        "metadata": result.metadata,
    }


async def _handle_start(orchestrator: JobOrchestrator, body: dict[str, Any]) -> JSONResponse:
    audio_url = body.get("audio_url")
    if not audio_url or not isinstance(audio_url, str):
        return _error(400, ErrorCode.MISSING_URL, "audio_url is required")

    job = await orchestrator.start(
        audio_url,
        recording_id=body.get("recording_id"),
        language=body.get("language"),
        optimize_for=body.get("optimize_for"),
    )
    return JSONResponse(
        content={
            "success": True,
            "job_id": job.id,
            "status": job.status,
            "message": "Transcription job started. Poll with action=status.",
        }
    )


async def _lookup(
    orchestrator: JobOrchestrator, body: dict[str, Any]
) -> Job | JSONResponse:
    job_id = body.get("job_id")
    if not job_id or not isinstance(job_id, str):
        return _error(400, ErrorCode.MISSING_JOB_ID, "job_id is required")
    job = await orchestrator.store.get(job_id)
    if job is None:
        return _error(404, ErrorCode.JOB_NOT_FOUND, f"Job '{job_id}' not found")
    return job


async def _handle_status(orchestrator: JobOrchestrator, body: dict[str, Any]) -> JSONResponse:
    job = await _lookup(orchestrator, body)
    if isinstance(job, JSONResponse):
        return job
    return JSONResponse(content=status_payload(job))


async def _handle_result(orchestrator: JobOrchestrator, body: dict[str, Any]) -> JSONResponse:
    job = await _lookup(orchestrator, body)
    if isinstance(job, JSONResponse):
        return job
    status_code, payload = result_payload(job)
    return JSONResponse(status_code=status_code, content=payload)


ACTIONS = {
    "start": _handle_start,
    "status": _handle_status,
    "result": _handle_result,
}


def create_app(
    orchestrator: JobOrchestrator | None = None,
    config: ServiceConfig | None = None,
) -> FastAPI:
    """Build the FastAPI app.

    When no orchestrator is given, one is wired from `config` (or the
    environment) at startup. An injected orchestrator is available
    immediately, which lets tests drive the app without the lifespan.
    """
    if config is None:
        config = orchestrator.config if orchestrator else ServiceConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if getattr(app.state, "orchestrator", None) is None:
            app.state.orchestrator = JobOrchestrator.from_config(config)
        current: JobOrchestrator = app.state.orchestrator
        janitor = asyncio.create_task(
            current.run_janitor(config.job_sweep_interval_seconds)
        )
        logger.info("Transcription service ready")
        try:
            yield
        finally:
            janitor.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await janitor
            if current.active_jobs:
                logger.info("Draining %d in-flight jobs", current.active_jobs)
                try:
                    async with asyncio.timeout(SHUTDOWN_TIMEOUT_SECONDS):
                        await current.drain()
                except TimeoutError:
                    logger.warning("Shutdown drain timed out; cancelling remaining jobs")
            await current.aclose()

    app = FastAPI(title="transcription-service", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/")
    @app.post("/transcription-job")
    async def transcription_job(request: Request) -> JSONResponse:
        try:
            body = json.loads(await request.body() or b"{}")
        except ValueError:
            return _error(400, ErrorCode.INVALID_REQUEST, "Request body must be valid JSON")
        if not isinstance(body, dict):
            return _error(400, ErrorCode.INVALID_REQUEST, "Request body must be a JSON object")

        action = body.get("action") or "start"
        handler = ACTIONS.get(action) if isinstance(action, str) else None
        if handler is None:
            return _error(
                400,
                ErrorCode.UNKNOWN_ACTION,
                f"Unknown action '{action}'. Use: {', '.join(ACTIONS)}",
            )
        return await handler(request.app.state.orchestrator, body)

    return app
