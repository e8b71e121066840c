"""Custom exception hierarchy and error codes for the transcription service.

All pipeline exceptions inherit from PipelineError and carry an ErrorCode,
so the job supervisor can record a specific code on the failed job without
inspecting messages.
"""

from enum import StrEnum


class ErrorCode(StrEnum):
    """Machine-readable codes returned to polling clients."""

    MISSING_URL = "MISSING_URL"
    MISSING_JOB_ID = "MISSING_JOB_ID"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    JOB_IN_PROGRESS = "JOB_IN_PROGRESS"
    INVALID_REQUEST = "INVALID_REQUEST"
    UNKNOWN_ACTION = "UNKNOWN_ACTION"
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    DOWNLOAD_TIMEOUT = "DOWNLOAD_TIMEOUT"
    EMPTY_FILE = "EMPTY_FILE"
    INVALID_FORMAT = "INVALID_FORMAT"
    NEEDS_CONVERSION = "NEEDS_CONVERSION"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    TRANSCODING_UNAVAILABLE = "TRANSCODING_UNAVAILABLE"
    TRANSCODING_FAILED = "TRANSCODING_FAILED"
    OPENAI_ERROR = "OPENAI_ERROR"
    RATE_LIMIT = "RATE_LIMIT"
    DECODE_ERROR = "DECODE_ERROR"
    PROCESSING_ERROR = "PROCESSING_ERROR"


class PipelineError(Exception):
    """Base exception for all transcription pipeline errors."""

    default_code: ErrorCode = ErrorCode.PROCESSING_ERROR

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        error_code: ErrorCode | None = None,
    ) -> None:
        self.job_id = job_id
        self.error_code = error_code or self.default_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.job_id:
            return f"[job={self.job_id}] {super().__str__()}"
        return super().__str__()


class AudioFetchError(PipelineError):
    """Raised when downloading source or chunk audio fails."""

    default_code = ErrorCode.DOWNLOAD_FAILED

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        error_code: ErrorCode | None = None,
        url: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.url = url
        self.status_code = status_code
        super().__init__(message, job_id, error_code)


class FormatError(PipelineError):
    """Raised when the audio cannot be routed to any transcription path."""

    default_code = ErrorCode.INVALID_FORMAT

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        error_code: ErrorCode | None = None,
        audio_format: str | None = None,
    ) -> None:
        self.audio_format = audio_format
        super().__init__(message, job_id, error_code)


class TranscodeError(PipelineError):
    """Raised when the external transcoding service is unreachable or fails."""

    default_code = ErrorCode.TRANSCODING_FAILED

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        error_code: ErrorCode | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, job_id, error_code)


class ASRError(PipelineError):
    """Raised when automatic speech recognition fails."""

    default_code = ErrorCode.OPENAI_ERROR

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        error_code: ErrorCode | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, job_id, error_code)


class CallbackError(PipelineError):
    """Raised when the downstream recording callback fails."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, job_id)


class JobStateError(PipelineError):
    """Raised on an illegal job state transition or a second terminal write."""

    def __init__(
        self,
        message: str,
        job_id: str | None = None,
        current_status: str | None = None,
    ) -> None:
        self.current_status = current_status
        super().__init__(message, job_id)
