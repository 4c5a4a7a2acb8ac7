"""Content analyzer: one configurable strategy plus shared validation."""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from clipper_studio.config import settings
from clipper_studio.errors import ValidationError
from .frame_sampling import FrameSamplingStrategy
from .post_filters import validate_candidates
from .transcript_reasoning import TranscriptReasoningStrategy
from .types import AnalysisContext, AnalysisOptions, ClipCandidate, Transcript

logger = logging.getLogger(__name__)


class AnalysisStrategy(Protocol):
    name: str

    async def propose(
        self,
        transcript: Optional[Transcript],
        context: AnalysisContext,
        options: AnalysisOptions,
        source_path: Optional[Path] = None,
    ) -> List[dict]:
        ...


@dataclass
class AnalysisInput:
    """Everything a strategy may need about one source."""
    source_duration: float
    transcript: Optional[Transcript] = None
    source_path: Optional[Path] = None
    title: str = ""
    video_type: str = "general"

    def context(self) -> AnalysisContext:
        return AnalysisContext(
            title=self.title,
            video_type=self.video_type,
            duration=self.source_duration,
            language=self.transcript.language if self.transcript else "unknown",
        )


def default_options() -> AnalysisOptions:
    return AnalysisOptions(
        min_duration=settings.min_clip_seconds,
        max_duration=settings.max_clip_seconds,
        max_clips=settings.max_clips,
        min_score=settings.min_score,
    )


def create_strategy(name: Optional[str] = None) -> AnalysisStrategy:
    name = name or settings.analysis_strategy
    if name == "transcript":
        return TranscriptReasoningStrategy()
    if name == "frames":
        return FrameSamplingStrategy()
    raise ValidationError(f"Unknown analysis strategy: {name}")


class ContentAnalyzer:
    """Produces ranked, validated candidates for one source.

    An empty result is a normal outcome, not an error.
    """

    def __init__(self, strategy: Optional[AnalysisStrategy] = None):
        self.strategy = strategy or create_strategy()

    async def analyze(
        self,
        analysis_input: AnalysisInput,
        options: Optional[AnalysisOptions] = None,
    ) -> List[ClipCandidate]:
        options = options or default_options()
        if options.min_duration > options.max_duration:
            raise ValidationError("Minimum clip duration exceeds maximum")
        if options.max_clips < 1:
            raise ValidationError("max_clips must be at least 1")

        logger.info(
            f"Analysing {analysis_input.source_duration:.1f}s source with {self.strategy.name} strategy"
        )
        raw = await self.strategy.propose(
            analysis_input.transcript,
            analysis_input.context(),
            options,
            source_path=analysis_input.source_path,
        )
        result = validate_candidates(raw, analysis_input.source_duration, options)
        if not result.accepted:
            logger.info("Analysis produced no valid candidates")
        return result.accepted
