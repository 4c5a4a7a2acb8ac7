"""Value types passed between pipeline stages."""
from dataclasses import dataclass, field
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class Segment:
    """A span of recognized speech in absolute source time."""
    start: float
    end: float
    text: str

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end, "text": self.text}


@dataclass(frozen=True)
class Transcript:
    """Time-coded transcript of a source video."""
    language: str
    full_text: str
    duration: float
    segments: Tuple[Segment, ...] = ()

    def to_dict(self) -> dict:
        return {
            "language": self.language,
            "full_text": self.full_text,
            "duration": self.duration,
            "segments": [s.to_dict() for s in self.segments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Transcript":
        return cls(
            language=data.get("language") or "unknown",
            full_text=data.get("full_text") or "",
            duration=float(data.get("duration") or 0.0),
            segments=tuple(
                Segment(float(s["start"]), float(s["end"]), s.get("text", ""))
                for s in data.get("segments", [])
            ),
        )

    def timestamped_text(self) -> str:
        """One ``[start-end]: text`` line per segment."""
        return "\n".join(
            f"[{s.start:.1f}s-{s.end:.1f}s]: {s.text.strip()}" for s in self.segments
        )


@dataclass(frozen=True)
class ClipCandidate:
    """A scored time-window proposal prior to rendering."""
    start_time: float
    end_time: float
    score: float
    title: str = ""
    rationale: str = ""
    engagement_type: str = ""
    content_tags: Tuple[str, ...] = ()
    has_setup: Optional[bool] = None
    has_payoff: Optional[bool] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration": self.duration,
            "score": self.score,
            "title": self.title,
            "rationale": self.rationale,
            "engagement_type": self.engagement_type,
            "content_tags": list(self.content_tags),
            "has_setup": self.has_setup,
            "has_payoff": self.has_payoff,
        }


@dataclass(frozen=True)
class AnalysisOptions:
    """Limits applied to every analysis strategy."""
    min_duration: float = 15.0
    max_duration: float = 60.0
    max_clips: int = 10
    min_score: float = 60.0


@dataclass(frozen=True)
class AnalysisContext:
    """Descriptive context handed to the analysis strategies."""
    title: str = ""
    video_type: str = "general"
    duration: float = 0.0
    language: str = "unknown"


@dataclass(frozen=True)
class Cue:
    """One caption cue relative to the clip's own timeline."""
    start: float
    end: float
    lines: Tuple[str, ...]

    @property
    def text(self) -> str:
        return "\n".join(self.lines)


@dataclass
class CaptionTrack:
    """Ordered cues for one clip."""
    cues: List[Cue] = field(default_factory=list)
    title: Optional[str] = None
    position: str = "bottom"

    @property
    def is_empty(self) -> bool:
        return not self.cues


@dataclass(frozen=True)
class PlatformSpec:
    """Encoding and duration limits for a destination platform."""
    name: str
    aspect_ratio: str
    width: int
    height: int
    min_duration: float
    max_duration: float
    max_file_size_mb: float
    video_codec: str = "libx264"
    audio_codec: str = "aac"
    video_bitrate: Optional[str] = None
    audio_bitrate: str = "128k"
    fit: str = "crop"


@dataclass
class MaterializedClip:
    """Result of rendering one candidate for one platform."""
    candidate: ClipCandidate
    platform: str
    file_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    caption_path: Optional[str] = None
    audio_path: Optional[str] = None
    size_bytes: Optional[int] = None
    exceeds_size_limit: bool = False
    encode_params: dict = field(default_factory=dict)
    error: Optional[str] = None
    error_detail: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.error is None and self.file_path is not None
