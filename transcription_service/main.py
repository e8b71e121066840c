"""Process entry point for the transcription service.

Configures structured JSON logging, builds the FastAPI app from the
environment and serves it with uvicorn. Shutdown (SIGTERM) runs the app
lifespan, which drains in-flight jobs before exiting.
"""

import logging
import sys

import uvicorn

from transcription_service.api import create_app
from transcription_service.config import ServiceConfig
from transcription_service.observability.logger import StructuredJsonFormatter

logger = logging.getLogger(__name__)


def _setup_logging() -> None:
    """Configure root logger with structured JSON output."""
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)
    # httpx logs every request at INFO, including presigned URLs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main() -> None:
    """Start the HTTP server."""
    _setup_logging()
    config = ServiceConfig.from_env()
    logger.info(
        "Transcription service starting (provider=%s, transcoding=%s, callback=%s)",
        config.speech_provider,
        config.transcoding_enabled,
        config.recording_callback_enabled,
    )
    app = create_app(config=config)
    uvicorn.run(app, host="0.0.0.0", port=config.port, log_config=None)


if __name__ == "__main__":
    main()
