"""Merge per-chunk transcripts into a single transcript.

Chunks produced by the transcoding service overlap by a few seconds, so
words near a boundary are recognized twice. With a positive overlap, each
segment that falls inside an overlap window is kept by exactly one chunk:
the earlier chunk keeps segments starting in the first half of the window,
the later chunk keeps the rest. Chunks without segment detail fall back to
their plain text, and an overlap of 0 gives plain concatenation.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass, field

from transcription_service.asr.interface import Segment

logger = logging.getLogger(__name__)


@dataclass
class ChunkTranscript:
    """Transcription outcome for one chunk.

    Segment times are relative to the chunk; start_sec places the chunk in
    the source timeline. Failed chunks carry a placeholder text and
    error=True, and are skipped when merging.
    """

    index: int
    start_sec: float
    end_sec: float
    text: str
    segments: list[Segment] = field(default_factory=list)
    duration: float | None = None
    language: str | None = None
    error: bool = False

    @classmethod
    def failed(
        cls, index: int, start_sec: float, end_sec: float, reason: str
    ) -> ChunkTranscript:
        return cls(
            index=index,
            start_sec=start_sec,
            end_sec=end_sec,
            text=f"[chunk {index + 1} transcription failed: {reason}]",
            error=True,
        )


def _kept_text(
    chunk: ChunkTranscript, lower: float, upper: float
) -> str:
    if not chunk.segments:
        return chunk.text.strip()
    kept = [
        seg.text.strip()
        for seg in chunk.segments
        if lower <= chunk.start_sec + seg.start < upper
    ]
    dropped = len(chunk.segments) - len(kept)
    if dropped:
        logger.debug(
            "Dropped %d overlapping segments from chunk %d", dropped, chunk.index
        )
    return " ".join(t for t in kept if t)


def merge_chunk_transcripts(
    chunks: Iterable[ChunkTranscript], overlap_sec: float = 0.0
) -> str:
    """Concatenate chunk transcripts in index order.

    Args:
        chunks: Chunk transcripts in any order; failed ones are skipped.
        overlap_sec: Overlap between consecutive chunks, in seconds.

    Returns:
        The merged transcript, single-space separated.
    """
    ordered = sorted((c for c in chunks if not c.error), key=lambda c: c.index)
    if overlap_sec <= 0:
        return " ".join(t for t in (c.text.strip() for c in ordered) if t)

    half = overlap_sec / 2
    texts: list[str] = []
    for position, chunk in enumerate(ordered):
        lower = -math.inf
        upper = math.inf
        # Trim only against an adjacent surviving chunk; speech in a failed
        # neighbour's half of the window is held by no other chunk.
        if position > 0 and ordered[position - 1].index == chunk.index - 1:
            lower = chunk.start_sec + half
        following = ordered[position + 1] if position + 1 < len(ordered) else None
        if following is not None and following.index == chunk.index + 1:
            upper = following.start_sec + half
        text = _kept_text(chunk, lower, upper)
        if text:
            texts.append(text)
    return " ".join(texts)
