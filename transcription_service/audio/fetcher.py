"""Audio download with an absolute timeout.

httpx timeouts bound each network operation separately; a slow server
trickling bytes can still hold a download open indefinitely, so the whole
request is wrapped in asyncio.timeout().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from transcription_service.utils.errors import AudioFetchError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass
class FetchedAudio:
    """Raw audio bytes plus the response metadata needed for routing."""

    url: str
    data: bytes
    content_type: str

    @property
    def size_bytes(self) -> int:
        return len(self.data)


async def fetch_audio(
    client: httpx.AsyncClient,
    url: str,
    timeout: float,
    job_id: str | None = None,
) -> FetchedAudio:
    """Download an audio file into memory.

    Args:
        client: Shared httpx client.
        url: Audio location.
        timeout: Absolute ceiling in seconds for the whole download.
        job_id: Job identifier for error context.

    Returns:
        FetchedAudio with the payload and content-type.

    Raises:
        AudioFetchError: DOWNLOAD_TIMEOUT when the ceiling is hit,
            DOWNLOAD_FAILED on transport errors or non-2xx responses,
            EMPTY_FILE on a zero-byte payload.
    """
    try:
        async with asyncio.timeout(timeout):
            response = await client.get(
                url, follow_redirects=True, timeout=httpx.Timeout(timeout)
            )
    except (TimeoutError, httpx.TimeoutException) as exc:
        raise AudioFetchError(
            f"Download exceeded {timeout:.0f}s",
            job_id=job_id,
            error_code=ErrorCode.DOWNLOAD_TIMEOUT,
            url=url,
        ) from exc
    except httpx.HTTPError as exc:
        reason = str(exc) or type(exc).__name__
        raise AudioFetchError(
            f"Download failed: {reason}", job_id=job_id, url=url
        ) from exc

    if not response.is_success:
        raise AudioFetchError(
            f"Download failed: HTTP {response.status_code}",
            job_id=job_id,
            url=url,
            status_code=response.status_code,
        )

    data = response.content
    if not data:
        raise AudioFetchError(
            "Audio file is empty",
            job_id=job_id,
            error_code=ErrorCode.EMPTY_FILE,
            url=url,
            status_code=response.status_code,
        )

    logger.debug(
        "Fetched %d bytes from %s", len(data), url[:100], extra={"job_id": job_id}
    )
    return FetchedAudio(
        url=url,
        data=data,
        content_type=response.headers.get("content-type", ""),
    )


def is_transient_fetch_error(exc: Exception) -> bool:
    """True for fetch failures worth retrying: transport errors, 429 and 5xx."""
    if not isinstance(exc, AudioFetchError):
        return False
    if exc.error_code == ErrorCode.EMPTY_FILE:
        return False
    if exc.status_code is None:
        return True
    return exc.status_code == 429 or exc.status_code >= 500
