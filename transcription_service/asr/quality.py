"""Transcript quality scoring.

A segment is flagged when the engine's confidence, exp(avg_logprob), drops
below 0.5 or its no-speech probability exceeds 0.5. The aggregate score is
100 with no flags, otherwise derived by one of two formulas:

- "ratio":   100 - flagged / total * 100   (single-file transcriptions)
- "penalty": 100 - flagged * 5             (multi-chunk transcriptions)

Both are clamped to [0, 100].
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from typing import Literal

from transcription_service.asr.interface import Segment
from transcription_service.jobs.models import FlaggedSegment

CONFIDENCE_THRESHOLD = 0.5
NO_SPEECH_THRESHOLD = 0.5
PENALTY_PER_FLAG = 5.0

FLAG_UNCLEAR_AUDIO = "unclear_audio"
FLAG_LOW_CONFIDENCE = "low_confidence"

ScoreMethod = Literal["ratio", "penalty"]


def segment_confidence(segment: Segment) -> float | None:
    """Recognition confidence in [0, 1], or None when the engine gave no logprob."""
    if segment.avg_logprob is None:
        return None
    return math.exp(segment.avg_logprob)


def classify_segment(segment: Segment) -> str | None:
    """Return the flag type for a suspect segment, or None if it looks fine."""
    if (
        segment.no_speech_prob is not None
        and segment.no_speech_prob > NO_SPEECH_THRESHOLD
    ):
        return FLAG_UNCLEAR_AUDIO
    confidence = segment_confidence(segment)
    if confidence is not None and confidence < CONFIDENCE_THRESHOLD:
        return FLAG_LOW_CONFIDENCE
    return None


def flag_segments(
    segments: Iterable[Segment], chunk_index: int | None = None
) -> list[FlaggedSegment]:
    """Flag low-confidence and non-speech segments, preserving input order.

    Segment offsets are copied as given; callers on the chunked path shift
    segments into the source timeline before calling this.
    """
    flagged: list[FlaggedSegment] = []
    for segment in segments:
        flag_type = classify_segment(segment)
        if flag_type is None:
            continue
        flagged.append(
            FlaggedSegment(
                start=segment.start,
                end=segment.end,
                text=segment.text,
                confidence_score=segment_confidence(segment),
                flag_type=flag_type,
                chunk_index=chunk_index,
            )
        )
    return flagged


def quality_score(
    flagged_count: int,
    total_segments: int,
    method: ScoreMethod = "ratio",
) -> float:
    """Aggregate 0-100 quality score from the number of flagged segments.

    Args:
        flagged_count: Number of flagged segments.
        total_segments: Number of segments scored (used by "ratio").
        method: "ratio" or "penalty", see module docstring.

    Raises:
        ValueError: On an unknown method.
    """
    if flagged_count <= 0:
        return 100.0
    if method == "ratio":
        score = 100.0 - flagged_count / max(total_segments, 1) * 100.0
    elif method == "penalty":
        score = 100.0 - flagged_count * PENALTY_PER_FLAG
    else:
        raise ValueError(f"Unknown quality score method: {method!r}")
    return max(0.0, min(100.0, score))
