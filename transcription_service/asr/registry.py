"""Speech engine registry with configuration-driven provider selection.

Maps provider name strings to engine classes. Use get_speech_engine() to
instantiate an engine by name with engine-specific configuration.
"""

from transcription_service.asr.interface import SpeechEngine
from transcription_service.asr.whisper import WhisperEngine
from transcription_service.utils.errors import ASRError

SPEECH_ENGINES: dict[str, type[SpeechEngine]] = {
    "openai": WhisperEngine,
}


def get_speech_engine(provider: str, **kwargs: object) -> SpeechEngine:
    """Create a speech engine instance by provider name.

    Args:
        provider: Provider name (e.g., "openai").
        **kwargs: Engine-specific configuration passed to the constructor.

    Returns:
        An initialized SpeechEngine instance.

    Raises:
        ASRError: If the provider name is not registered.
    """
    engine_cls = SPEECH_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(SPEECH_ENGINES.keys()))
        raise ASRError(
            f"Unknown speech provider: '{provider}'. Available: {available}",
            provider=provider,
        )
    return engine_cls(**kwargs)
