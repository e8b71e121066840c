"""Tests for transcription_service.asr.quality module."""

import math

import pytest

from transcription_service.asr.interface import Segment
from transcription_service.asr.quality import (
    FLAG_LOW_CONFIDENCE,
    FLAG_UNCLEAR_AUDIO,
    classify_segment,
    flag_segments,
    quality_score,
    segment_confidence,
)


def _seg(start=0.0, end=1.0, text="x", logprob=-0.1, no_speech=0.01):
    return Segment(
        start=start, end=end, text=text, avg_logprob=logprob, no_speech_prob=no_speech
    )


class TestClassifySegment:
    """Tests for per-segment flagging rules."""

    def test_confident_speech_not_flagged(self):
        assert classify_segment(_seg()) is None

    def test_low_confidence(self):
        seg = _seg(logprob=math.log(0.3))
        assert classify_segment(seg) == FLAG_LOW_CONFIDENCE

    def test_confidence_just_above_threshold_not_flagged(self):
        seg = _seg(logprob=-0.69)
        assert classify_segment(seg) is None

    def test_no_speech(self):
        assert classify_segment(_seg(no_speech=0.8)) == FLAG_UNCLEAR_AUDIO

    def test_no_speech_checked_first(self):
        """A segment that is both silent and low-confidence is unclear_audio."""
        seg = _seg(logprob=math.log(0.1), no_speech=0.9)
        assert classify_segment(seg) == FLAG_UNCLEAR_AUDIO

    def test_missing_fields_not_flagged(self):
        seg = Segment(start=0.0, end=1.0, text="x")
        assert classify_segment(seg) is None
        assert segment_confidence(seg) is None


class TestFlagSegments:
    """Tests for flag_segments()."""

    def test_preserves_order_and_fields(self):
        segments = [
            _seg(0, 1, "ok"),
            _seg(1, 2, "mumble", logprob=math.log(0.2)),
            _seg(2, 3, "fine"),
            _seg(3, 4, "hiss", no_speech=0.7),
        ]
        flagged = flag_segments(segments)

        assert [f.text for f in flagged] == ["mumble", "hiss"]
        assert flagged[0].flag_type == FLAG_LOW_CONFIDENCE
        assert flagged[0].confidence_score == pytest.approx(0.2)
        assert flagged[0].start == 1 and flagged[0].end == 2
        assert flagged[0].chunk_index is None

    def test_chunk_index_attached(self):
        flagged = flag_segments([_seg(no_speech=0.9)], chunk_index=3)
        assert flagged[0].chunk_index == 3
        assert flagged[0].to_dict()["chunk_index"] == 3

    def test_chunk_index_omitted_from_dict(self):
        flagged = flag_segments([_seg(no_speech=0.9)])
        assert "chunk_index" not in flagged[0].to_dict()

    def test_empty(self):
        assert flag_segments([]) == []


class TestQualityScore:
    """Tests for quality_score()."""

    def test_no_flags_is_100(self):
        assert quality_score(0, 10) == 100.0
        assert quality_score(0, 0, method="penalty") == 100.0

    def test_ratio(self):
        assert quality_score(2, 10, method="ratio") == pytest.approx(80.0)

    def test_ratio_all_flagged(self):
        assert quality_score(4, 4, method="ratio") == 0.0

    def test_penalty(self):
        assert quality_score(3, 100, method="penalty") == pytest.approx(85.0)

    def test_penalty_clamped_at_zero(self):
        assert quality_score(40, 100, method="penalty") == 0.0

    def test_unknown_method(self):
        with pytest.raises(ValueError, match="Unknown quality score method"):
            quality_score(1, 1, method="median")
