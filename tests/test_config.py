"""Tests for ServiceConfig and the exception hierarchy."""

import pytest

from transcription_service.config import MB, ServiceConfig
from transcription_service.utils.errors import (
    ASRError,
    AudioFetchError,
    CallbackError,
    ErrorCode,
    FormatError,
    JobStateError,
    PipelineError,
    TranscodeError,
)

ENV_VARS = (
    "OPENAI_API_KEY",
    "TRANSCODING_SERVICE_URL",
    "TRANSCODING_SERVICE_TOKEN",
    "RECORDING_API_URL",
    "MAX_DIRECT_SIZE_MB",
    "CHUNK_CONCURRENCY",
    "CHUNK_OVERLAP_SEC",
    "DOWNLOAD_TIMEOUT_SECONDS",
    "PORT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestServiceConfig:
    """Tests for ServiceConfig.from_env()."""

    def test_defaults(self, clean_env):
        config = ServiceConfig.from_env()

        assert config.max_direct_size_bytes == 24 * MB
        assert config.download_timeout_seconds == 120.0
        assert config.chunk_duration_sec == 2700
        assert config.chunk_overlap_sec == 3.0
        assert config.chunk_concurrency == 1
        assert config.port == 8080
        assert config.transcoding_enabled is False
        assert config.recording_callback_enabled is False

    def test_reads_environment(self, clean_env):
        clean_env.setenv("OPENAI_API_KEY", "sk-test")
        clean_env.setenv("TRANSCODING_SERVICE_URL", "https://transcoder.example.com")
        clean_env.setenv("TRANSCODING_SERVICE_TOKEN", "svc")
        clean_env.setenv("MAX_DIRECT_SIZE_MB", "10")
        clean_env.setenv("CHUNK_CONCURRENCY", "4")
        clean_env.setenv("PORT", "9000")

        config = ServiceConfig.from_env()

        assert config.openai_api_key == "sk-test"
        assert config.transcoding_enabled is True
        assert config.transcoding_service_token == "svc"
        assert config.max_direct_size_bytes == 10 * MB
        assert config.chunk_concurrency == 4
        assert config.port == 9000

    def test_blank_values_use_defaults(self, clean_env):
        clean_env.setenv("TRANSCODING_SERVICE_URL", "   ")
        clean_env.setenv("PORT", "")

        config = ServiceConfig.from_env()

        assert config.transcoding_enabled is False
        assert config.port == 8080

    def test_invalid_number(self, clean_env):
        clean_env.setenv("DOWNLOAD_TIMEOUT_SECONDS", "two minutes")
        with pytest.raises(ValueError):
            ServiceConfig.from_env()

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError, match="chunk_concurrency"):
            ServiceConfig(chunk_concurrency=0)

    def test_rejects_negative_overlap(self):
        with pytest.raises(ValueError, match="chunk_overlap_sec"):
            ServiceConfig(chunk_overlap_sec=-1)


class TestPipelineErrors:
    """Verify the exception hierarchy and default error codes."""

    @pytest.mark.parametrize(
        "cls, code",
        [
            (AudioFetchError, ErrorCode.DOWNLOAD_FAILED),
            (FormatError, ErrorCode.INVALID_FORMAT),
            (TranscodeError, ErrorCode.TRANSCODING_FAILED),
            (ASRError, ErrorCode.OPENAI_ERROR),
            (CallbackError, ErrorCode.PROCESSING_ERROR),
            (JobStateError, ErrorCode.PROCESSING_ERROR),
        ],
    )
    def test_default_codes(self, cls, code):
        error = cls("x")
        assert isinstance(error, PipelineError)
        assert error.error_code == code

    def test_explicit_code_wins(self):
        error = FormatError("aac", error_code=ErrorCode.NEEDS_CONVERSION, audio_format="aac")
        assert error.error_code == ErrorCode.NEEDS_CONVERSION
        assert error.audio_format == "aac"

    def test_str_with_job_id(self):
        error = AudioFetchError("HTTP 404", job_id="job_1", status_code=404)
        assert str(error) == "[job=job_1] HTTP 404"
        assert error.status_code == 404

    def test_str_without_job_id(self):
        assert str(PipelineError("something failed")) == "something failed"

    def test_error_codes_serialize_as_strings(self):
        assert ErrorCode.JOB_IN_PROGRESS == "JOB_IN_PROGRESS"
