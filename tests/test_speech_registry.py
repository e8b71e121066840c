"""Tests for the speech engine registry."""

import pytest

from transcription_service.asr import get_speech_engine
from transcription_service.asr.registry import SPEECH_ENGINES
from transcription_service.asr.whisper import WhisperEngine
from transcription_service.utils.errors import ASRError


class TestSpeechEngineRegistry:
    """Tests for get_speech_engine()."""

    def test_openai_registered(self):
        assert SPEECH_ENGINES["openai"] is WhisperEngine

    def test_returns_configured_engine(self):
        engine = get_speech_engine("openai", api_key="sk-test", model="whisper-1")
        assert isinstance(engine, WhisperEngine)

    def test_unknown_provider(self):
        with pytest.raises(ASRError, match="Unknown speech provider: 'deepgram'") as exc_info:
            get_speech_engine("deepgram")
        assert "openai" in str(exc_info.value)
        assert exc_info.value.provider == "deepgram"
