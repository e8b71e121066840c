"""Speech recognition engines, quality scoring and transcript merging."""

from transcription_service.asr.registry import get_speech_engine

__all__ = ["get_speech_engine"]
