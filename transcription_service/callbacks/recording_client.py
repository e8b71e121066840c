"""Client for the downstream "recording" entity API.

After a job finishes, the transcript (or the failure) is pushed back to the
recording the client attached to the job, and flagged segments are filed
as transcription-correction records for human review. All of this is
best-effort: callers log CallbackError and move on.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from transcription_service.jobs.models import FlaggedSegment
from transcription_service.utils.errors import CallbackError

logger = logging.getLogger(__name__)

MAX_CORRECTIONS = 20


class RecordingClient:
    """HTTP client for recording updates and correction records.

    Args:
        base_url: Entity API base URL.
        token: Bearer token for the entity API.
        timeout: Per-request timeout in seconds.
        client: Shared httpx client; one is created when omitted.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.token = token or ""
        self._owns_client = client is None
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _send(
        self, method: str, url: str, payload: dict[str, Any], operation: str
    ) -> None:
        try:
            response = await self._client.request(
                method,
                url,
                headers=self._headers(),
                json=payload,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise CallbackError(
                f"{operation} failed: HTTP {exc.response.status_code}",
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise CallbackError(
                f"{operation} failed: {str(exc) or type(exc).__name__}",
                operation=operation,
            ) from exc

    async def update_recording(
        self, recording_id: str, fields: dict[str, Any]
    ) -> None:
        """Patch a recording record.

        Raises:
            CallbackError: If the API call fails.
        """
        await self._send(
            "PATCH",
            f"{self.base_url}/recordings/{recording_id}",
            fields,
            "update_recording",
        )

    async def mark_transcribed(self, recording_id: str, transcription: str) -> None:
        await self.update_recording(
            recording_id, {"transcription": transcription, "status": "analyzed"}
        )

    async def mark_failed(
        self,
        recording_id: str,
        error_message: str,
        error_code: str | None,
        error_step: str | None,
    ) -> None:
        await self.update_recording(
            recording_id,
            {
                "status": "failed",
                "error_message": error_message,
                "error_code": error_code,
                "error_step": error_step or "unknown",
            },
        )

    async def create_corrections(
        self, recording_id: str, segments: list[FlaggedSegment]
    ) -> int:
        """File up to MAX_CORRECTIONS flagged segments for review.

        Individual failures are logged and skipped.

        Returns:
            Number of correction records created.
        """
        created = 0
        for segment in segments[:MAX_CORRECTIONS]:
            payload = {
                "recording_id": recording_id,
                "original_text": segment.text,
                "flag_type": segment.flag_type,
                "confidence_score": segment.confidence_score,
                "segment_start": segment.start,
                "segment_end": segment.end,
                "domain_category": "general",
                "is_verified": False,
                "learned": False,
            }
            try:
                await self._send(
                    "POST",
                    f"{self.base_url}/transcription-corrections",
                    payload,
                    "create_correction",
                )
                created += 1
            except CallbackError:
                logger.error(
                    "Failed to save correction for recording %s",
                    recording_id,
                    exc_info=True,
                )
        return created
