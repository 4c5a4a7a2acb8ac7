"""Tests for candidate validation and de-duplication."""
import pytest

from clipper_studio.errors import ValidationError
from clipper_studio.pipeline.post_filters import (
    candidate_to_wire,
    clamp_score,
    coerce_candidate,
    compute_overlap,
    missing_fields,
    remove_overlapping,
    validate_candidates,
)
from clipper_studio.pipeline.types import AnalysisOptions, ClipCandidate
from clipper_studio.utils.json_extract import extract_json_array


def _raw(start, end, score, **extra):
    item = {
        "startTime": start,
        "endTime": end,
        "title": f"Clip at {start}",
        "reason": "strong hook",
        "viralityScore": score,
        "engagementType": "humor",
        "contentTags": ["funny"],
    }
    item.update(extra)
    return item


OPTIONS = AnalysisOptions(min_duration=15, max_duration=60, max_clips=10, min_score=60)


class TestMissingFields:
    """Tests for required field detection."""

    def test_complete_item(self):
        assert missing_fields(_raw(0, 20, 80)) == []

    def test_zero_and_empty_count_as_present(self):
        item = _raw(0, 20, 0, title="", contentTags=[])
        assert missing_fields(item) == []

    def test_null_is_missing(self):
        item = _raw(0, 20, 80, reason=None)
        assert missing_fields(item) == ["reason"]

    def test_non_dict_misses_everything(self):
        assert len(missing_fields("not a clip")) == 7


class TestCoerceCandidate:
    """Tests for wire-format conversion."""

    def test_numeric_strings(self):
        candidate = coerce_candidate(_raw("10.5", "30", "75"))
        assert candidate.start_time == 10.5
        assert candidate.end_time == 30.0
        assert candidate.score == 75.0

    def test_comma_separated_tags(self):
        candidate = coerce_candidate(_raw(0, 20, 80, contentTags="funny, sports ,"))
        assert candidate.content_tags == ("funny", "sports")

    def test_setup_and_payoff_flags(self):
        candidate = coerce_candidate(_raw(0, 20, 80, hasSetup="true", hasPayoff=False))
        assert candidate.has_setup is True
        assert candidate.has_payoff is False

    def test_round_trip_through_wire(self):
        candidate = coerce_candidate(_raw(5, 25, 90, hasSetup=True))
        assert coerce_candidate(candidate_to_wire(candidate)) == candidate


class TestValidateCandidates:
    """Tests for the filter, clamp, rank and truncate pass."""

    def test_three_of_five_survive(self):
        raw = [
            _raw(0, 20, 80),
            _raw(10, 80, 90),   # 70s, too long
            _raw(30, 55, 40),   # below threshold
            _raw(60, 90, 70),
            _raw(95, 120, 85),
        ]
        result = validate_candidates(raw, 120.0, OPTIONS)

        assert len(result.accepted) == 3
        assert [c.score for c in result.accepted] == [85, 80, 70]
        assert len(result.dropped("drop_duration")) == 1
        assert len(result.dropped("drop_score")) == 1

    def test_accepted_invariants(self):
        raw = [_raw(i * 10, i * 10 + 15 + i, 60 + i * 3) for i in range(12)]
        result = validate_candidates(raw, 200.0, OPTIONS)

        assert len(result.accepted) <= OPTIONS.max_clips
        scores = [c.score for c in result.accepted]
        assert scores == sorted(scores, reverse=True)
        for c in result.accepted:
            assert OPTIONS.min_duration <= c.duration <= OPTIONS.max_duration
            assert 0 <= c.start_time < c.end_time <= 200.0
            assert 0 <= c.score <= 100

    def test_out_of_bounds_dropped(self):
        raw = [_raw(-5, 15, 80), _raw(100, 125, 80)]
        result = validate_candidates(raw, 120.0, OPTIONS)
        assert result.accepted == []
        assert len(result.dropped("drop_bounds")) == 2

    def test_end_equal_to_duration_allowed(self):
        result = validate_candidates([_raw(100, 120, 80)], 120.0, OPTIONS)
        assert len(result.accepted) == 1

    def test_score_above_hundred_clamped(self):
        result = validate_candidates([_raw(0, 20, 140)], 120.0, OPTIONS)
        assert result.accepted[0].score == 100.0

    def test_truncated_to_max_clips(self):
        raw = [_raw(i * 20, i * 20 + 15, 70 + i) for i in range(5)]
        options = AnalysisOptions(min_duration=15, max_duration=60, max_clips=2, min_score=60)
        result = validate_candidates(raw, 120.0, options)

        assert [c.score for c in result.accepted] == [74, 73]
        assert len(result.dropped("drop_limit")) == 3

    def test_missing_and_invalid_dropped(self):
        raw = [_raw(0, 20, None), _raw("abc", 20, 80)]
        result = validate_candidates(raw, 120.0, OPTIONS)
        assert result.accepted == []
        assert len(result.dropped("drop_missing")) == 1
        assert len(result.dropped("drop_invalid")) == 1

    @pytest.mark.parametrize("start, end, score", [
        ("NaN", 30, 90),
        (0, "Infinity", 90),
        (0, 30, "NaN"),
        (0, 30, "-Infinity"),
    ])
    def test_non_finite_values_dropped(self, start, end, score):
        text = (
            f'[{{"startTime": {start}, "endTime": {end}, "title": "t", "reason": "r", '
            f'"viralityScore": {score}, "engagementType": "humor", "contentTags": []}}]'
        )
        raw, _ = extract_json_array(text)

        result = validate_candidates(raw, 120.0, OPTIONS)

        assert result.accepted == []
        assert len(result.dropped("drop_invalid")) == 1

    def test_equal_scores_keep_model_order(self):
        raw = [_raw(0, 20, 80, title="first"), _raw(30, 50, 80, title="second")]
        result = validate_candidates(raw, 120.0, OPTIONS)
        assert [c.title for c in result.accepted] == ["first", "second"]

    def test_non_positive_duration_rejected(self):
        with pytest.raises(ValidationError):
            validate_candidates([_raw(0, 20, 80)], 0, OPTIONS)


class TestOverlap:
    """Tests for overlap de-duplication."""

    def _candidate(self, start, end, score):
        return ClipCandidate(start_time=start, end_time=end, score=score)

    def test_compute_overlap(self):
        a = self._candidate(0, 30, 80)
        b = self._candidate(20, 50, 70)
        assert compute_overlap(a, b) == 10
        assert compute_overlap(a, self._candidate(40, 60, 50)) == 0

    def test_keeps_best_of_overlapping_pair(self):
        kept = remove_overlapping([
            self._candidate(0, 30, 70),
            self._candidate(10, 40, 90),
            self._candidate(100, 130, 60),
        ])
        assert [c.score for c in kept] == [90, 60]

    def test_small_overlap_tolerated(self):
        kept = remove_overlapping([
            self._candidate(0, 30, 70),
            self._candidate(25, 55, 90),
        ])
        assert len(kept) == 2


def test_clamp_score():
    assert clamp_score(-5) == 0.0
    assert clamp_score(55.5) == 55.5
    assert clamp_score(101) == 100.0
