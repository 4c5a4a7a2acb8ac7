"""Candidate validation shared by every analysis strategy.

Raw candidates arrive as dicts in the analysis wire format
(``startTime``, ``endTime``, ``viralityScore`` ...). Validation turns them
into ClipCandidate objects that satisfy the duration, bounds and score
invariants, ranked best first.
"""
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, List, Optional, Sequence, Tuple

from clipper_studio.errors import ValidationError
from .types import AnalysisOptions, ClipCandidate

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = (
    "startTime",
    "endTime",
    "title",
    "reason",
    "viralityScore",
    "engagementType",
    "contentTags",
)

# Float slack when comparing derived durations against limits
EPSILON = 1e-6


@dataclass
class FilterDecision:
    """Records why a raw candidate was kept or dropped."""
    clip_index: int
    action: str  # "keep", "drop_missing", "drop_invalid", "drop_duration", "drop_bounds", "drop_score", "drop_limit"
    reason: str

    def to_dict(self) -> dict:
        return {
            "clip_index": self.clip_index,
            "action": self.action,
            "reason": self.reason,
        }


@dataclass
class ValidationResult:
    """Accepted candidates (best first) plus one decision per raw item."""
    accepted: List[ClipCandidate] = field(default_factory=list)
    decisions: List[FilterDecision] = field(default_factory=list)

    def dropped(self, action: str) -> List[FilterDecision]:
        return [d for d in self.decisions if d.action == action]


def _as_bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "yes", "1")
    return bool(value)


def missing_fields(raw: Any) -> List[str]:
    """Required keys that are absent or null. Zero and empty strings count as present."""
    if not isinstance(raw, dict):
        return list(REQUIRED_FIELDS)
    return [key for key in REQUIRED_FIELDS if raw.get(key) is None]


def coerce_candidate(raw: dict) -> ClipCandidate:
    """
    Convert a wire-format dict into a ClipCandidate.

    Raises:
        ValueError: If a numeric field is not a number
    """
    tags = raw.get("contentTags") or ()
    if isinstance(tags, str):
        tags = [t.strip() for t in tags.split(",") if t.strip()]
    return ClipCandidate(
        start_time=float(raw["startTime"]),
        end_time=float(raw["endTime"]),
        score=float(raw["viralityScore"]),
        title=str(raw.get("title") or ""),
        rationale=str(raw.get("reason") or ""),
        engagement_type=str(raw.get("engagementType") or ""),
        content_tags=tuple(str(t) for t in tags),
        has_setup=_as_bool(raw.get("hasSetup")),
        has_payoff=_as_bool(raw.get("hasPayoff")),
    )


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, score))


def validate_candidates(
    raw_items: Sequence[Any],
    source_duration: float,
    options: AnalysisOptions,
) -> ValidationResult:
    """
    Filter, clamp, rank and truncate raw candidates.

    Drops, in order: missing required fields, non-numeric or non-finite values,
    durations outside [min_duration, max_duration], timestamps outside
    [0, source_duration], and scores below min_score. Survivors have their
    score clamped to [0, 100], are sorted best first and cut to max_clips.
    """
    if source_duration is None or source_duration <= 0:
        raise ValidationError("Source duration must be positive to validate candidates")

    result = ValidationResult()
    survivors: List[Tuple[int, ClipCandidate]] = []

    for index, raw in enumerate(raw_items):
        missing = missing_fields(raw)
        if missing:
            result.decisions.append(FilterDecision(index, "drop_missing", f"missing {', '.join(missing)}"))
            continue

        try:
            candidate = coerce_candidate(raw)
        except (TypeError, ValueError) as e:
            result.decisions.append(FilterDecision(index, "drop_invalid", str(e)))
            continue

        if not all(math.isfinite(v) for v in (candidate.start_time, candidate.end_time, candidate.score)):
            result.decisions.append(FilterDecision(index, "drop_invalid", "non-finite time or score"))
            continue

        duration = candidate.duration
        if duration < options.min_duration - EPSILON or duration > options.max_duration + EPSILON:
            result.decisions.append(FilterDecision(
                index, "drop_duration",
                f"duration {duration:.2f}s outside [{options.min_duration}, {options.max_duration}]",
            ))
            continue

        if candidate.start_time < 0 or candidate.start_time >= candidate.end_time or candidate.end_time > source_duration + EPSILON:
            result.decisions.append(FilterDecision(
                index, "drop_bounds",
                f"range {candidate.start_time:.2f}-{candidate.end_time:.2f} outside [0, {source_duration:.2f}]",
            ))
            continue

        if candidate.score < options.min_score:
            result.decisions.append(FilterDecision(
                index, "drop_score", f"score {candidate.score:.1f} below {options.min_score}",
            ))
            continue

        clamped = clamp_score(candidate.score)
        if clamped != candidate.score:
            candidate = replace(candidate, score=clamped)
        survivors.append((index, candidate))

    # Stable sort keeps model order among equal scores
    survivors.sort(key=lambda item: item[1].score, reverse=True)

    for rank, (index, candidate) in enumerate(survivors):
        if rank >= options.max_clips:
            result.decisions.append(FilterDecision(index, "drop_limit", f"beyond max_clips={options.max_clips}"))
            continue
        result.accepted.append(candidate)
        result.decisions.append(FilterDecision(index, "keep", f"score {candidate.score:.1f}"))

    for decision in result.decisions:
        if decision.action != "keep":
            logger.debug(f"Dropped candidate {decision.clip_index}: {decision.action} ({decision.reason})")
    logger.info(f"Validated candidates: {len(result.accepted)} kept of {len(raw_items)}")
    return result


def compute_overlap(a: ClipCandidate, b: ClipCandidate) -> float:
    """Seconds of shared time between two candidates."""
    return max(0.0, min(a.end_time, b.end_time) - max(a.start_time, b.start_time))


def remove_overlapping(
    candidates: Sequence[ClipCandidate],
    max_overlap_seconds: float = 5.0,
) -> List[ClipCandidate]:
    """Greedy de-duplication: keep the best candidate, drop later ones sharing more than ``max_overlap_seconds``."""
    kept: List[ClipCandidate] = []
    for candidate in sorted(candidates, key=lambda c: c.score, reverse=True):
        if all(compute_overlap(candidate, other) <= max_overlap_seconds for other in kept):
            kept.append(candidate)
    return kept


def candidate_to_wire(candidate: ClipCandidate) -> dict:
    """Inverse of coerce_candidate, used when merging partial analyses."""
    return {
        "startTime": candidate.start_time,
        "endTime": candidate.end_time,
        "title": candidate.title,
        "reason": candidate.rationale,
        "viralityScore": candidate.score,
        "engagementType": candidate.engagement_type,
        "contentTags": list(candidate.content_tags),
        "hasSetup": candidate.has_setup,
        "hasPayoff": candidate.has_payoff,
    }
