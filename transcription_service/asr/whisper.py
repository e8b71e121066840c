"""OpenAI Whisper speech engine.

Sends in-memory audio to the transcriptions endpoint with
response_format=verbose_json, which carries per-segment avg_logprob and
no_speech_prob used by the quality scorer.
"""

from __future__ import annotations

import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from transcription_service.asr.interface import Segment, SpeechEngine, Transcription
from transcription_service.audio.format_detect import FORMATS_BY_EXTENSION
from transcription_service.utils.errors import ASRError, ErrorCode

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "whisper-1"


def classify_engine_error(exc: Exception) -> ErrorCode:
    """Map an engine exception to an error code.

    Structured SDK exception types are checked first; message substrings are
    only a fallback for errors the API reports as a generic 400.
    """
    if isinstance(exc, openai.RateLimitError):
        return ErrorCode.RATE_LIMIT
    if isinstance(exc, openai.APIStatusError) and exc.status_code == 429:
        return ErrorCode.RATE_LIMIT

    message = str(exc).lower()
    if "invalid file format" in message:
        return ErrorCode.INVALID_FORMAT
    if "could not be decoded" in message:
        return ErrorCode.DECODE_ERROR
    if "rate limit" in message:
        return ErrorCode.RATE_LIMIT
    return ErrorCode.OPENAI_ERROR


def _as_dict(obj: Any) -> dict[str, Any]:
    if isinstance(obj, dict):
        return obj
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    return dict(vars(obj))


def _mime_for(filename: str) -> str:
    _, _, ext = filename.rpartition(".")
    audio_format = FORMATS_BY_EXTENSION.get(ext.lower())
    return audio_format.mime_type if audio_format else "application/octet-stream"


class WhisperEngine(SpeechEngine):
    """OpenAI Whisper transcription engine.

    Args:
        api_key: OpenAI API key.
        model: Transcription model name.
        timeout: Per-request timeout in seconds.
        max_retries: SDK-level retries for connection errors, 429 and 5xx.
        client: Pre-built AsyncOpenAI client (tests, custom base URLs).
    """

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        timeout: float = 600.0,
        max_retries: int = 2,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ValueError("api_key is required")
        self._model = model
        self._client = client or AsyncOpenAI(
            api_key=api_key, timeout=timeout, max_retries=max_retries
        )

    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        language: str,
        prompt: str | None = None,
    ) -> Transcription:
        """Transcribe audio via the OpenAI transcriptions API.

        Raises:
            ASRError: With RATE_LIMIT, INVALID_FORMAT, DECODE_ERROR or
                OPENAI_ERROR as error_code.
        """
        params: dict[str, Any] = {
            "file": (filename, audio, _mime_for(filename)),
            "model": self._model,
            "language": language,
            "response_format": "verbose_json",
        }
        if prompt:
            params["prompt"] = prompt

        try:
            response = await self._client.audio.transcriptions.create(**params)
        except openai.OpenAIError as exc:
            error_code = classify_engine_error(exc)
            logger.error("Whisper request failed (%s): %s", error_code, exc)
            raise ASRError(
                f"Transcription failed: {exc}",
                error_code=error_code,
                provider=self.name,
            ) from exc

        return self._convert_response(response)

    def _convert_response(self, response: Any) -> Transcription:
        """Convert a verbose_json response into the internal Transcription model."""
        body = _as_dict(response)
        segments = [
            Segment(
                start=float(seg.get("start") or 0.0),
                end=float(seg.get("end") or 0.0),
                text=seg.get("text") or "",
                avg_logprob=seg.get("avg_logprob"),
                no_speech_prob=seg.get("no_speech_prob"),
            )
            for seg in (_as_dict(s) for s in body.get("segments") or [])
        ]
        duration = body.get("duration")
        return Transcription(
            text=body.get("text") or "",
            segments=segments,
            duration=float(duration) if duration is not None else None,
            language=body.get("language"),
        )

    async def aclose(self) -> None:
        await self._client.close()
