"""Client for the external transcode-and-split service.

The service fetches the source itself, converts it to a target codec and
bitrate, and either returns one normalized file or a list of time-bounded
chunks with absolute offsets into the source.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from transcription_service.utils.errors import ErrorCode, TranscodeError

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    """A time-bounded slice of the source audio."""

    index: int
    start_sec: float
    end_sec: float
    url: str


@dataclass
class TranscodeResult:
    """Parsed reply of the transcoding service."""

    chunks: list[Chunk] = field(default_factory=list)
    normalized_url: str | None = None
    source_duration_sec: float | None = None


class TranscodingClient:
    """HTTP client for POST {base}/transcode-and-split.

    Args:
        base_url: Service base URL.
        token: Service token, sent in the X-SERVICE-TOKEN header.
        timeout: Request timeout in seconds; transcoding a long recording
            happens inside this single call.
        client: Shared httpx client; one is created when omitted.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 900.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.token = token or ""
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        return {
            "X-SERVICE-TOKEN": self.token,
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def transcode_and_split(
        self,
        source_url: str,
        job_id: str,
        chunk_duration_sec: int,
        overlap_sec: float,
        output_format: str,
        target_bitrate: int,
    ) -> TranscodeResult:
        """Ask the service to normalize and split a source.

        Returns:
            TranscodeResult with either chunks or a normalized URL.

        Raises:
            TranscodeError: TRANSCODING_UNAVAILABLE when the service cannot
                be reached, TRANSCODING_FAILED on non-2xx, a logical failure,
                or a reply with neither chunks nor a normalized URL.
        """
        payload = {
            "sourceUrl": source_url,
            "jobId": job_id,
            "chunkDurationSec": chunk_duration_sec,
            "overlapSec": overlap_sec,
            "outputFormat": output_format,
            "targetBitrate": target_bitrate,
        }
        url = f"{self.base_url}/transcode-and-split"
        try:
            response = await self._client.post(
                url, headers=self._headers(), json=payload, timeout=self._timeout
            )
        except httpx.HTTPError as exc:
            raise TranscodeError(
                f"Transcoding service unreachable: {exc}",
                job_id=job_id,
                error_code=ErrorCode.TRANSCODING_UNAVAILABLE,
            ) from exc

        if not response.is_success:
            raise TranscodeError(
                f"Transcoding service returned HTTP {response.status_code}: "
                f"{response.text[:500]}",
                job_id=job_id,
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise TranscodeError(
                "Transcoding service returned invalid JSON", job_id=job_id
            ) from exc

        if not isinstance(body, dict):
            raise TranscodeError(
                "Transcoding service returned a non-object JSON body", job_id=job_id
            )
        if not body.get("success"):
            raise TranscodeError(
                body.get("error") or "Transcoding failed", job_id=job_id
            )

        result = self._parse_result(body, job_id)
        logger.info(
            "Transcoding returned %d chunks (normalized=%s)",
            len(result.chunks),
            bool(result.normalized_url),
            extra={"job_id": job_id, "stage": "transcoding"},
        )
        return result

    def _parse_result(self, body: dict[str, Any], job_id: str) -> TranscodeResult:
        try:
            chunks = [
                Chunk(
                    index=int(item["index"]),
                    start_sec=float(item.get("startSec") or 0.0),
                    end_sec=float(item.get("endSec") or 0.0),
                    url=item["url"],
                )
                for item in body.get("chunks") or []
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise TranscodeError(
                f"Malformed chunk in transcoding reply: {exc}", job_id=job_id
            ) from exc

        normalized_url = body.get("normalizedUrl")
        if not chunks and not normalized_url:
            raise TranscodeError(
                "Transcoding reply contained no audio", job_id=job_id
            )

        source_info = body.get("sourceInfo") or {}
        duration = source_info.get("durationSec")
        return TranscodeResult(
            chunks=sorted(chunks, key=lambda c: c.index),
            normalized_url=normalized_url if not chunks else None,
            source_duration_sec=float(duration) if duration is not None else None,
        )
