"""Job orchestrator: turns one start request into a supervised background run.

Orchestrates: download -> detect format -> direct transcription, or
transcode-and-split -> per-chunk transcription -> merge -> score -> store
-> best-effort recording callback.

Each job is driven by exactly one asyncio task. The task's supervisor is
the only place a job is marked failed, and the store refuses a second
terminal write, so a job always ends in exactly one terminal state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from transcription_service.asr.interface import SpeechEngine, Transcription
from transcription_service.asr.merge import ChunkTranscript, merge_chunk_transcripts
from transcription_service.asr.prompts import prompt_for_language
from transcription_service.asr.quality import flag_segments, quality_score
from transcription_service.asr.registry import get_speech_engine
from transcription_service.audio.fetcher import (
    FetchedAudio,
    fetch_audio,
    is_transient_fetch_error,
)
from transcription_service.audio.format_detect import (
    AudioFormat,
    analyze_audio,
    detect_format,
)
from transcription_service.callbacks.recording_client import RecordingClient
from transcription_service.config import MB, ServiceConfig
from transcription_service.jobs.models import FlaggedSegment, Job, JobResult, JobStatus
from transcription_service.jobs.store import InMemoryJobStore, JobStore
from transcription_service.observability.metrics import (
    JobMetrics,
    StageTimer,
    log_job_metrics,
)
from transcription_service.transcoding.client import Chunk, TranscodingClient
from transcription_service.utils.errors import (
    ASRError,
    ErrorCode,
    FormatError,
    JobStateError,
    PipelineError,
)
from transcription_service.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

# Progress milestones reported to pollers
PROGRESS_DOWNLOADING = 10
PROGRESS_TRANSCODING = 20
PROGRESS_DIRECT_TRANSCRIBING = 30
PROGRESS_CHUNKS_START = 40
PROGRESS_CHUNKS_SPAN = 50
PROGRESS_MERGING = 95


@dataclass
class _JobRun:
    """Mutable bookkeeping for one background run, used for metrics."""

    job_id: str
    wall_start: float = field(default_factory=time.monotonic)
    stage_timings: dict[str, float] = field(default_factory=dict)
    route: str = "unknown"
    audio_format: str = "unknown"
    size_bytes: int = 0


@dataclass
class _Outcome:
    result: JobResult
    flagged: list[FlaggedSegment]
    quality_score: float


def _error_message(exc: BaseException) -> str:
    """Client-facing message: the exception text without the job prefix."""
    if exc.args and isinstance(exc.args[0], str) and exc.args[0]:
        return exc.args[0]
    return str(exc) or type(exc).__name__


@retry_with_backoff(max_retries=2, base_delay=1.0, retryable=is_transient_fetch_error)
async def _fetch_chunk_audio(
    client: httpx.AsyncClient, url: str, timeout: float, job_id: str
) -> FetchedAudio:
    """Download chunk or normalized audio, retrying transient failures."""
    return await fetch_audio(client, url, timeout, job_id=job_id)


class JobOrchestrator:
    """Creates jobs and drives each one through the pipeline in the background.

    Args:
        store: Job state store shared with the polling API.
        engine: Speech engine used for every transcription call.
        config: Service configuration (thresholds, timeouts, chunking).
        http_client: Client for source and chunk downloads.
        transcoding_client: Enables the chunked path when provided.
        recording_client: Enables the recording callback when provided.
    """

    def __init__(
        self,
        store: JobStore,
        engine: SpeechEngine,
        config: ServiceConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        transcoding_client: TranscodingClient | None = None,
        recording_client: RecordingClient | None = None,
    ) -> None:
        self._store = store
        self._engine = engine
        self._config = config or ServiceConfig()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=30.0)
        self._transcoding = transcoding_client
        self._recording = recording_client
        self._tasks: dict[str, asyncio.Task[None]] = {}

    @classmethod
    def from_config(cls, config: ServiceConfig) -> JobOrchestrator:
        """Wire the production collaborators described by `config`."""
        http_client = httpx.AsyncClient(timeout=30.0)
        engine = get_speech_engine(
            config.speech_provider,
            api_key=config.openai_api_key,
            model=config.whisper_model,
            timeout=config.engine_timeout_seconds,
        )
        transcoding = None
        if config.transcoding_enabled:
            transcoding = TranscodingClient(
                config.transcoding_service_url,
                token=config.transcoding_service_token,
                timeout=config.transcoding_timeout_seconds,
                client=http_client,
            )
        else:
            logger.warning(
                "TRANSCODING_SERVICE_URL not set; large or non-native files will fail"
            )
        recording = None
        if config.recording_callback_enabled:
            recording = RecordingClient(
                config.recording_api_url,
                token=config.recording_api_token,
                client=http_client,
            )
        orchestrator = cls(
            store=InMemoryJobStore(ttl_seconds=config.job_ttl_seconds),
            engine=engine,
            config=config,
            http_client=http_client,
            transcoding_client=transcoding,
            recording_client=recording,
        )
        orchestrator._owns_http = True
        return orchestrator

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def config(self) -> ServiceConfig:
        return self._config

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    async def start(
        self,
        audio_url: str,
        recording_id: str | None = None,
        language: str | None = None,
        optimize_for: str | None = None,
    ) -> Job:
        """Create a pending job and launch its background run.

        Returns immediately; progress is observable through the store.
        """
        job = Job(
            audio_url=audio_url,
            recording_id=recording_id,
            language=language or "he",
            optimize_for=optimize_for or "accuracy",
        )
        await self._store.create(job)

        task = asyncio.create_task(self._supervise(job.id), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))

        logger.info(
            "Started transcription job for %s",
            audio_url[:100],
            extra={"job_id": job.id, "stage": str(JobStatus.PENDING), "progress": 0},
        )
        return job

    async def drain(self) -> None:
        """Wait for every in-flight job to reach a terminal state."""
        while True:
            pending = [t for t in self._tasks.values() if not t.done()]
            if not pending:
                return
            await asyncio.wait(pending)

    async def cancel_all(self) -> None:
        """Cancel in-flight jobs; each is recorded as failed."""
        for task in list(self._tasks.values()):
            task.cancel()
        await self.drain()

    async def aclose(self) -> None:
        await self.cancel_all()
        if self._transcoding is not None:
            await self._transcoding.close()
        if self._recording is not None:
            await self._recording.close()
        await self._engine.aclose()
        if self._owns_http:
            await self._http.aclose()

    async def run_janitor(self, interval_seconds: float) -> None:
        """Periodically evict expired jobs. Runs until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self._store.purge_expired()
            except Exception:
                logger.error("Job eviction sweep failed", exc_info=True)

    # -- supervision --

    async def _supervise(self, job_id: str) -> None:
        run = _JobRun(job_id=job_id)
        try:
            await self._process(run)
        except asyncio.CancelledError:
            await self._record_failure(run, "Job cancelled", ErrorCode.PROCESSING_ERROR)
            raise
        except PipelineError as exc:
            await self._record_failure(run, _error_message(exc), exc.error_code, exc)
        except Exception as exc:
            await self._record_failure(
                run, _error_message(exc), ErrorCode.PROCESSING_ERROR, exc
            )

    async def _record_failure(
        self,
        run: _JobRun,
        message: str,
        error_code: ErrorCode,
        exc: BaseException | None = None,
    ) -> None:
        logger.error(
            "Job failed (%s): %s",
            error_code,
            message,
            exc_info=exc,
            extra={"job_id": run.job_id, "error_code": error_code},
        )
        try:
            job = await self._store.fail(run.job_id, message, error_code)
        except JobStateError:
            logger.warning(
                "Job already terminal; failure not recorded",
                extra={"job_id": run.job_id},
            )
            return

        self._emit_metrics(run, job)
        await self._notify_failure(job)

    async def _advance(
        self, job_id: str, status: JobStatus, progress: int, message: str, **extra: Any
    ) -> None:
        await self._store.append_step(job_id, status, progress, message, **extra)
        logger.info(
            "%s (%d%%): %s",
            status,
            progress,
            message,
            extra={"job_id": job_id, "stage": str(status), "progress": progress},
        )

    # -- pipeline --

    async def _process(self, run: _JobRun) -> None:
        job = await self._store.get(run.job_id)
        if job is None:
            raise JobStateError(f"Job '{run.job_id}' vanished", job_id=run.job_id)

        await self._advance(
            job.id, JobStatus.DOWNLOADING, PROGRESS_DOWNLOADING, "Downloading source audio"
        )
        with StageTimer("download", run.stage_timings):
            audio = await fetch_audio(
                self._http,
                job.audio_url,
                self._config.download_timeout_seconds,
                job_id=job.id,
            )

        audio_format = detect_format(job.audio_url, audio.content_type)
        run.audio_format = audio_format.extension
        run.size_bytes = audio.size_bytes
        metadata = analyze_audio(audio_format, audio.size_bytes, audio.content_type)
        metadata["optimize_for"] = job.optimize_for
        logger.info(
            "Downloaded %s MB, format %s",
            metadata["file_size_mb"],
            audio_format.extension,
            extra={"job_id": job.id, "stage": str(JobStatus.DOWNLOADING)},
        )

        if audio.size_bytes <= self._config.max_direct_size_bytes and audio_format.native:
            run.route = "direct"
            outcome = await self._transcribe_direct(job, audio, audio_format, run)
        else:
            transcoding = self._require_transcoding(job, audio, audio_format)
            run.route = "chunked"
            outcome = await self._transcribe_chunked(job, audio_format, run, transcoding)

        outcome.result.metadata = metadata
        final = await self._store.complete(
            job.id, outcome.result, outcome.flagged, outcome.quality_score
        )
        logger.info(
            "Transcription completed: %d chars, quality %.1f, %d flagged",
            len(outcome.result.transcription),
            outcome.quality_score,
            len(outcome.flagged),
            extra={"job_id": job.id, "stage": str(JobStatus.COMPLETED), "progress": 100},
        )
        self._emit_metrics(run, final)
        await self._notify_completion(final)

    def _require_transcoding(
        self, job: Job, audio: FetchedAudio, audio_format: AudioFormat
    ) -> TranscodingClient:
        if self._transcoding is not None:
            return self._transcoding
        if audio_format.needs_conversion:
            raise FormatError(
                f"Format '{audio_format.extension}' requires conversion but no "
                "transcoding service is configured",
                job_id=job.id,
                error_code=ErrorCode.NEEDS_CONVERSION,
                audio_format=audio_format.extension,
            )
        raise FormatError(
            f"File is {audio.size_bytes / MB:.1f} MB, above the "
            f"{self._config.max_direct_size_bytes / MB:.0f} MB direct limit, and no "
            "transcoding service is configured",
            job_id=job.id,
            error_code=ErrorCode.FILE_TOO_LARGE,
            audio_format=audio_format.extension,
        )

    async def _transcribe_bytes(
        self, job: Job, data: bytes, filename: str
    ) -> Transcription:
        timeout = self._config.engine_timeout_seconds
        try:
            async with asyncio.timeout(timeout):
                return await self._engine.transcribe(
                    data,
                    filename,
                    job.language,
                    prompt=prompt_for_language(job.language),
                )
        except TimeoutError as exc:
            raise ASRError(
                f"Speech engine call exceeded {timeout:.0f}s",
                job_id=job.id,
                provider=self._engine.name,
            ) from exc

    async def _transcribe_direct(
        self, job: Job, audio: FetchedAudio, audio_format: AudioFormat, run: _JobRun
    ) -> _Outcome:
        await self._advance(
            job.id,
            JobStatus.TRANSCRIBING,
            PROGRESS_DIRECT_TRANSCRIBING,
            "Transcribing audio",
            format=audio_format.extension,
            size_bytes=audio.size_bytes,
        )
        with StageTimer("transcribe", run.stage_timings) as timer:
            transcription = await self._transcribe_bytes(
                job, audio.data, f"audio.{audio_format.extension}"
            )
        return self._single_outcome(
            transcription,
            wall_seconds=timer.duration_seconds,
            source_duration=transcription.duration,
            was_transcoded=False,
            original_format=audio_format.extension,
        )

    def _single_outcome(
        self,
        transcription: Transcription,
        wall_seconds: float,
        source_duration: float | None,
        was_transcoded: bool,
        original_format: str,
    ) -> _Outcome:
        flagged = flag_segments(transcription.segments)
        score = quality_score(len(flagged), len(transcription.segments), method="ratio")
        result = JobResult(
            transcription=transcription.text,
            chunks_count=1,
            successful_chunks=1,
            failed_chunks=0,
            duration_seconds=round(wall_seconds, 3),
            audio_duration_seconds=transcription.duration,
            source_duration_sec=source_duration,
            language_detected=transcription.language,
            segments_count=len(transcription.segments),
            was_transcoded=was_transcoded,
            original_format=original_format,
        )
        return _Outcome(result=result, flagged=flagged, quality_score=score)

    async def _transcribe_chunked(
        self,
        job: Job,
        audio_format: AudioFormat,
        run: _JobRun,
        transcoding: TranscodingClient,
    ) -> _Outcome:
        config = self._config

        await self._advance(
            job.id,
            JobStatus.TRANSCODING,
            PROGRESS_TRANSCODING,
            "Sending audio to transcoding service",
            format=audio_format.extension,
        )
        with StageTimer("transcode", run.stage_timings):
            transcoded = await transcoding.transcode_and_split(
                source_url=job.audio_url,
                job_id=job.id,
                chunk_duration_sec=config.chunk_duration_sec,
                overlap_sec=config.chunk_overlap_sec,
                output_format=config.chunk_output_format,
                target_bitrate=config.chunk_target_bitrate,
            )

        if not transcoded.chunks:
            await self._advance(
                job.id,
                JobStatus.TRANSCRIBING,
                PROGRESS_CHUNKS_START,
                "Transcribing normalized audio",
            )
            with StageTimer("transcribe", run.stage_timings) as timer:
                normalized = await _fetch_chunk_audio(
                    self._http,
                    transcoded.normalized_url,
                    config.chunk_download_timeout_seconds,
                    job.id,
                )
                transcription = await self._transcribe_bytes(
                    job, normalized.data, f"audio.{config.chunk_output_format}"
                )
            return self._single_outcome(
                transcription,
                wall_seconds=timer.duration_seconds,
                source_duration=transcoded.source_duration_sec,
                was_transcoded=True,
                original_format=audio_format.extension,
            )

        chunks = transcoded.chunks
        await self._advance(
            job.id,
            JobStatus.TRANSCRIBING,
            PROGRESS_CHUNKS_START,
            f"Transcribing {len(chunks)} chunks",
            chunks_count=len(chunks),
        )
        with StageTimer("transcribe", run.stage_timings) as timer:
            transcripts = await self._transcribe_chunks(job, chunks)

        await self._advance(
            job.id, JobStatus.MERGING, PROGRESS_MERGING, "Merging chunk transcripts"
        )
        with StageTimer("merge", run.stage_timings):
            text = merge_chunk_transcripts(transcripts, overlap_sec=config.chunk_overlap_sec)

        succeeded = sorted((t for t in transcripts if not t.error), key=lambda t: t.index)
        flagged: list[FlaggedSegment] = []
        segments_count = 0
        for transcript in succeeded:
            segments_count += len(transcript.segments)
            flagged.extend(
                flag_segments(
                    (seg.shifted(transcript.start_sec) for seg in transcript.segments),
                    chunk_index=transcript.index,
                )
            )

        result = JobResult(
            transcription=text,
            chunks_count=len(chunks),
            successful_chunks=len(succeeded),
            failed_chunks=len(transcripts) - len(succeeded),
            duration_seconds=round(timer.duration_seconds, 3),
            audio_duration_seconds=sum(t.duration or 0.0 for t in succeeded),
            source_duration_sec=transcoded.source_duration_sec,
            language_detected=next(
                (t.language for t in succeeded if t.language), None
            ),
            segments_count=segments_count,
            was_transcoded=True,
            original_format=audio_format.extension,
        )
        score = quality_score(len(flagged), segments_count, method="penalty")
        return _Outcome(result=result, flagged=flagged, quality_score=score)

    async def _transcribe_chunks(
        self, job: Job, chunks: list[Chunk]
    ) -> list[ChunkTranscript]:
        """Transcribe chunks with at most `chunk_concurrency` in flight.

        Results come back in input order regardless of completion order.
        """
        total = len(chunks)
        semaphore = asyncio.Semaphore(self._config.chunk_concurrency)
        progress_lock = asyncio.Lock()
        done = 0

        async def run_one(chunk: Chunk) -> ChunkTranscript:
            nonlocal done
            async with semaphore:
                transcript = await self._transcribe_chunk(job, chunk)
            async with progress_lock:
                done += 1
                outcome = "failed" if transcript.error else "done"
                await self._advance(
                    job.id,
                    JobStatus.TRANSCRIBING,
                    PROGRESS_CHUNKS_START + (done * PROGRESS_CHUNKS_SPAN) // total,
                    f"Chunk {chunk.index + 1} of {total} {outcome}",
                    chunk_index=chunk.index,
                    chunk_failed=transcript.error,
                )
            return transcript

        return list(await asyncio.gather(*(run_one(chunk) for chunk in chunks)))

    async def _transcribe_chunk(self, job: Job, chunk: Chunk) -> ChunkTranscript:
        """Transcribe one chunk; any failure becomes a failed ChunkTranscript."""
        try:
            audio = await _fetch_chunk_audio(
                self._http,
                chunk.url,
                self._config.chunk_download_timeout_seconds,
                job.id,
            )
            transcription = await self._transcribe_bytes(
                job,
                audio.data,
                f"chunk_{chunk.index}.{self._config.chunk_output_format}",
            )
        except Exception as exc:
            logger.warning(
                "Chunk %d failed, continuing with remaining chunks: %s",
                chunk.index,
                exc,
                exc_info=True,
                extra={"job_id": job.id, "stage": str(JobStatus.TRANSCRIBING)},
            )
            return ChunkTranscript.failed(
                chunk.index, chunk.start_sec, chunk.end_sec, _error_message(exc)
            )

        return ChunkTranscript(
            index=chunk.index,
            start_sec=chunk.start_sec,
            end_sec=chunk.end_sec,
            text=transcription.text,
            segments=transcription.segments,
            duration=transcription.duration,
            language=transcription.language,
        )

    # -- reporting --

    def _emit_metrics(self, run: _JobRun, job: Job) -> None:
        result = job.result
        log_job_metrics(
            JobMetrics(
                job_id=job.id,
                status=str(job.status),
                route=run.route,
                audio_format=run.audio_format,
                source_size_bytes=run.size_bytes,
                audio_duration_seconds=(result.audio_duration_seconds or 0.0)
                if result
                else 0.0,
                processing_wall_time_seconds=time.monotonic() - run.wall_start,
                chunks_count=result.chunks_count if result else 0,
                failed_chunks=result.failed_chunks if result else 0,
                flagged_count=job.flagged_count,
                quality_score=job.quality_score,
                stage_timings=run.stage_timings,
                error_code=job.error_code,
                error_message=job.error,
            )
        )

    async def _notify_completion(self, job: Job) -> None:
        if not job.recording_id or job.result is None:
            return
        if self._recording is None:
            logger.info(
                "Recording callback not configured; skipping recording %s",
                job.recording_id,
                extra={"job_id": job.id},
            )
            return
        try:
            await self._recording.mark_transcribed(
                job.recording_id, job.result.transcription
            )
            saved = await self._recording.create_corrections(
                job.recording_id, job.flagged_segments
            )
            logger.info(
                "Updated recording %s (%d corrections filed)",
                job.recording_id,
                saved,
                extra={"job_id": job.id},
            )
        except Exception:
            logger.error(
                "Failed to update recording %s",
                job.recording_id,
                exc_info=True,
                extra={"job_id": job.id},
            )

    async def _notify_failure(self, job: Job) -> None:
        if not job.recording_id or self._recording is None:
            return
        failed_step = job.steps[-1].extra.get("failed_step") if job.steps else None
        try:
            await self._recording.mark_failed(
                job.recording_id, job.error or "", job.error_code, failed_step
            )
        except Exception:
            logger.error(
                "Failed to update recording %s with error",
                job.recording_id,
                exc_info=True,
                extra={"job_id": job.id},
            )
