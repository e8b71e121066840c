"""Service configuration read from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

MB = 1024 * 1024


def _env_str(name: str, default: str | None = None) -> str | None:
    value = os.environ.get(name, "").strip()
    return value or default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name, "").strip()
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name, "").strip()
    return float(value) if value else default


@dataclass
class ServiceConfig:
    """Runtime configuration for the transcription job service.

    Transcoding and recording-callback settings are optional: when their
    URL is unset the chunked path (resp. the callback) is disabled.
    """

    openai_api_key: str | None = None
    speech_provider: str = "openai"
    whisper_model: str = "whisper-1"
    transcoding_service_url: str | None = None
    transcoding_service_token: str | None = None
    recording_api_url: str | None = None
    recording_api_token: str | None = None
    max_direct_size_bytes: int = 24 * MB
    download_timeout_seconds: float = 120.0
    chunk_download_timeout_seconds: float = 120.0
    engine_timeout_seconds: float = 600.0
    transcoding_timeout_seconds: float = 900.0
    chunk_duration_sec: int = 2700
    chunk_overlap_sec: float = 3.0
    chunk_output_format: str = "mp3"
    chunk_target_bitrate: int = 64
    chunk_concurrency: int = 1
    job_ttl_seconds: float = 24 * 3600.0
    job_sweep_interval_seconds: float = 300.0
    port: int = 8080

    def __post_init__(self) -> None:
        if self.chunk_concurrency < 1:
            raise ValueError("chunk_concurrency must be >= 1")
        if self.chunk_overlap_sec < 0:
            raise ValueError("chunk_overlap_sec must be >= 0")

    @property
    def transcoding_enabled(self) -> bool:
        return bool(self.transcoding_service_url)

    @property
    def recording_callback_enabled(self) -> bool:
        return bool(self.recording_api_url)

    @classmethod
    def from_env(cls) -> ServiceConfig:
        """Build a config from the process environment.

        Raises:
            ValueError: If a numeric variable cannot be parsed or is out of range.
        """
        return cls(
            openai_api_key=_env_str("OPENAI_API_KEY"),
            speech_provider=_env_str("SPEECH_PROVIDER", "openai"),
            whisper_model=_env_str("WHISPER_MODEL", "whisper-1"),
            transcoding_service_url=_env_str("TRANSCODING_SERVICE_URL"),
            transcoding_service_token=_env_str("TRANSCODING_SERVICE_TOKEN"),
            recording_api_url=_env_str("RECORDING_API_URL"),
            recording_api_token=_env_str("RECORDING_API_TOKEN"),
            max_direct_size_bytes=int(_env_float("MAX_DIRECT_SIZE_MB", 24) * MB),
            download_timeout_seconds=_env_float("DOWNLOAD_TIMEOUT_SECONDS", 120.0),
            chunk_download_timeout_seconds=_env_float(
                "CHUNK_DOWNLOAD_TIMEOUT_SECONDS", 120.0
            ),
            engine_timeout_seconds=_env_float("ENGINE_TIMEOUT_SECONDS", 600.0),
            transcoding_timeout_seconds=_env_float(
                "TRANSCODING_TIMEOUT_SECONDS", 900.0
            ),
            chunk_duration_sec=_env_int("CHUNK_DURATION_SEC", 2700),
            chunk_overlap_sec=_env_float("CHUNK_OVERLAP_SEC", 3.0),
            chunk_output_format=_env_str("CHUNK_OUTPUT_FORMAT", "mp3"),
            chunk_target_bitrate=_env_int("CHUNK_TARGET_BITRATE", 64),
            chunk_concurrency=_env_int("CHUNK_CONCURRENCY", 1),
            job_ttl_seconds=_env_float("JOB_TTL_SECONDS", 24 * 3600.0),
            job_sweep_interval_seconds=_env_float("JOB_SWEEP_INTERVAL_SECONDS", 300.0),
            port=_env_int("PORT", 8080),
        )
