"""Abstract speech engine interface and transcription data models.

Concrete implementations (e.g., WhisperEngine) subclass SpeechEngine.
Segment times are relative to the audio unit that was transcribed; callers
transcribing chunks shift them into the source timeline.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace


@dataclass
class Segment:
    """A time-bounded span of recognized (or non-) speech."""

    start: float
    end: float
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None

    def shifted(self, offset: float) -> Segment:
        """Return a copy moved `offset` seconds later."""
        return replace(self, start=self.start + offset, end=self.end + offset)


@dataclass
class Transcription:
    """Complete result of one speech engine call."""

    text: str
    segments: list[Segment] = field(default_factory=list)
    duration: float | None = None
    language: str | None = None


class SpeechEngine(ABC):
    """Abstract base class for speech-to-text engines.

    Subclasses must implement transcribe(); aclose() is optional.
    """

    name: str = "abstract"

    @abstractmethod
    async def transcribe(
        self,
        audio: bytes,
        filename: str,
        language: str,
        prompt: str | None = None,
    ) -> Transcription:
        """Transcribe an in-memory audio file.

        Args:
            audio: Raw audio bytes in a natively supported format.
            filename: Name with extension, used by engines to infer the codec.
            language: Language hint (ISO 639-1, e.g. "he").
            prompt: Optional vocabulary prompt biasing recognition.

        Returns:
            Transcription with text, segment-level detail, and duration.

        Raises:
            ASRError: With an error_code classifying the failure.
        """

    async def aclose(self) -> None:
        """Release client resources."""
