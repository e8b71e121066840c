"""Audio format detection from a source URL and HTTP content-type.

Pure and total: detect_format() never touches the network and always
returns a format, falling back to webm (the usual browser recording
container) when nothing matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

FALLBACK_EXTENSION = "webm"


@dataclass(frozen=True)
class AudioFormat:
    """A known audio container/codec and whether the engine accepts it as-is."""

    extension: str
    mime_type: str
    native: bool
    typical_bitrate_kbps: int = 128

    @property
    def needs_conversion(self) -> bool:
        return not self.native


# Order matters for the substring scans below.
NATIVE_FORMATS: tuple[AudioFormat, ...] = (
    AudioFormat("mp3", "audio/mpeg", True, 128),
    AudioFormat("mp4", "audio/mp4", True, 128),
    AudioFormat("m4a", "audio/m4a", True, 256),
    AudioFormat("wav", "audio/wav", True, 1411),
    AudioFormat("webm", "audio/webm", True, 128),
    AudioFormat("ogg", "audio/ogg", True, 160),
    AudioFormat("flac", "audio/flac", True, 900),
    AudioFormat("mpeg", "audio/mpeg", True, 128),
    AudioFormat("mpga", "audio/mpeg", True, 128),
    AudioFormat("oga", "audio/ogg", True, 160),
    AudioFormat("opus", "audio/opus", True, 64),
)

CONVERSION_FORMATS: tuple[AudioFormat, ...] = (
    AudioFormat("aac", "audio/aac", False, 256),
    AudioFormat("wma", "audio/x-ms-wma", False, 128),
    AudioFormat("amr", "audio/amr", False, 12),
    AudioFormat("3gp", "audio/3gpp", False, 64),
)

ALL_FORMATS: tuple[AudioFormat, ...] = NATIVE_FORMATS + CONVERSION_FORMATS
FORMATS_BY_EXTENSION: dict[str, AudioFormat] = {f.extension: f for f in ALL_FORMATS}


def _from_url(url: str) -> AudioFormat | None:
    path = urlparse(url).path.lower()

    # Exact trailing extension wins over a substring hit elsewhere in the path
    _, dot, suffix = path.rpartition(".")
    if dot and suffix in FORMATS_BY_EXTENSION:
        return FORMATS_BY_EXTENSION[suffix]

    for audio_format in ALL_FORMATS:
        if f".{audio_format.extension}" in path:
            return audio_format
    return None


def _from_content_type(content_type: str | None) -> AudioFormat | None:
    ct = (content_type or "").lower()
    if not ct:
        return None
    for audio_format in ALL_FORMATS:
        if audio_format.extension in ct:
            return audio_format
    for audio_format in ALL_FORMATS:
        if audio_format.mime_type in ct:
            return audio_format
    return None


def detect_format(url: str, content_type: str | None = None) -> AudioFormat:
    """Infer the audio format of a source.

    Args:
        url: Source URL; its path is scanned for a known extension.
        content_type: Optional HTTP content-type, used when the URL is silent.

    Returns:
        The detected AudioFormat, or webm when neither input matches.
    """
    return (
        _from_url(url)
        or _from_content_type(content_type)
        or FORMATS_BY_EXTENSION[FALLBACK_EXTENSION]
    )


def analyze_audio(
    audio_format: AudioFormat,
    size_bytes: int,
    content_type: str | None = None,
) -> dict[str, object]:
    """Build the format metadata reported with a finished job.

    The duration estimate assumes the format's typical bitrate and is only
    a hint for clients; the engine reports the real duration.
    """
    size_mb = size_bytes / 1024 / 1024
    estimated_min = (size_mb * 8 * 1024) / audio_format.typical_bitrate_kbps / 60
    return {
        "format": audio_format.extension,
        "mime_type": audio_format.mime_type,
        "content_type": content_type or None,
        "file_size_mb": f"{size_mb:.2f}",
        "estimated_duration_min": round(estimated_min, 1),
    }
