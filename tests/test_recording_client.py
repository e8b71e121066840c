"""Tests for transcription_service.callbacks.recording_client module."""

import json

import httpx
import pytest

from transcription_service.callbacks.recording_client import MAX_CORRECTIONS, RecordingClient
from transcription_service.jobs.models import FlaggedSegment
from transcription_service.utils.errors import CallbackError

BASE_URL = "https://entities.example.com/api"
CORRECTIONS_URL = f"{BASE_URL}/transcription-corrections"


def _flagged(n: int) -> list[FlaggedSegment]:
    return [
        FlaggedSegment(
            start=float(i),
            end=float(i) + 1,
            text=f"segment {i}",
            confidence_score=0.3,
            flag_type="low_confidence",
        )
        for i in range(n)
    ]


@pytest.fixture
def client():
    return RecordingClient(BASE_URL, token="api-token")


class TestUpdateRecording:
    """Tests for recording status updates."""

    async def test_mark_transcribed(self, client, httpx_mock):
        httpx_mock.add_response(url=f"{BASE_URL}/recordings/rec_1", method="PATCH")

        await client.mark_transcribed("rec_1", "the transcript")

        request = httpx_mock.get_request()
        assert request.headers["Authorization"] == "Bearer api-token"
        assert json.loads(request.content) == {
            "transcription": "the transcript",
            "status": "analyzed",
        }

    async def test_mark_failed(self, client, httpx_mock):
        httpx_mock.add_response(url=f"{BASE_URL}/recordings/rec_1", method="PATCH")

        await client.mark_failed("rec_1", "Download failed", "DOWNLOAD_FAILED", None)

        body = json.loads(httpx_mock.get_request().content)
        assert body == {
            "status": "failed",
            "error_message": "Download failed",
            "error_code": "DOWNLOAD_FAILED",
            "error_step": "unknown",
        }

    async def test_http_error_raises_callback_error(self, client, httpx_mock):
        httpx_mock.add_response(url=f"{BASE_URL}/recordings/rec_1", status_code=500)

        with pytest.raises(CallbackError, match="HTTP 500") as exc_info:
            await client.mark_transcribed("rec_1", "text")

        assert exc_info.value.operation == "update_recording"

    async def test_transport_error_raises_callback_error(self, client, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout("slow"))

        with pytest.raises(CallbackError):
            await client.mark_transcribed("rec_1", "text")

    async def test_timeout_without_message_names_exception(self, client, httpx_mock):
        httpx_mock.add_exception(httpx.ReadTimeout(""))

        with pytest.raises(CallbackError, match="failed: ReadTimeout"):
            await client.mark_transcribed("rec_1", "text")

    async def test_shared_client_uses_own_timeout(self, httpx_mock):
        httpx_mock.add_response(url=f"{BASE_URL}/recordings/rec_1", method="PATCH")

        async with httpx.AsyncClient(timeout=5.0) as shared:
            client = RecordingClient(BASE_URL, timeout=30.0, client=shared)
            await client.mark_transcribed("rec_1", "text")

        assert httpx_mock.get_request().extensions["timeout"]["read"] == 30.0


class TestCreateCorrections:
    """Tests for correction record creation."""

    async def test_payload(self, client, httpx_mock):
        httpx_mock.add_response(url=CORRECTIONS_URL, method="POST")

        created = await client.create_corrections("rec_1", _flagged(1))

        assert created == 1
        body = json.loads(httpx_mock.get_request().content)
        assert body == {
            "recording_id": "rec_1",
            "original_text": "segment 0",
            "flag_type": "low_confidence",
            "confidence_score": 0.3,
            "segment_start": 0.0,
            "segment_end": 1.0,
            "domain_category": "general",
            "is_verified": False,
            "learned": False,
        }

    async def test_capped(self, client, httpx_mock):
        for _ in range(MAX_CORRECTIONS):
            httpx_mock.add_response(url=CORRECTIONS_URL, method="POST")

        created = await client.create_corrections("rec_1", _flagged(MAX_CORRECTIONS + 5))

        assert created == MAX_CORRECTIONS
        assert len(httpx_mock.get_requests()) == MAX_CORRECTIONS

    async def test_individual_failure_skipped(self, client, httpx_mock):
        httpx_mock.add_response(url=CORRECTIONS_URL, method="POST", status_code=500)
        httpx_mock.add_response(url=CORRECTIONS_URL, method="POST", status_code=201)

        created = await client.create_corrections("rec_1", _flagged(2))

        assert created == 1
