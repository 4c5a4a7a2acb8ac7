"""Frame-sampling strategy: score evenly spaced frames, build windows around peaks."""
import base64
import logging
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

from clipper_studio.config import settings
from clipper_studio.errors import ExternalServiceError, ValidationError
from clipper_studio.utils import ffmpeg
from clipper_studio.utils.http import request_json
from .types import AnalysisContext, AnalysisOptions, Transcript

logger = logging.getLogger(__name__)

HIGH_ENGAGEMENT_WORDS = (
    "dramatic", "exciting", "intense", "amazing", "incredible", "shocking",
    "action", "movement", "emotion", "climax", "peak", "highlight",
    "energy", "dynamic", "powerful", "striking", "captivating",
    "surprise", "unexpected", "remarkable", "impressive", "outstanding",
)
MEDIUM_ENGAGEMENT_WORDS = (
    "interesting", "notable", "significant", "important", "key",
    "focus", "attention", "moment", "scene", "event",
    "change", "transition", "activity",
)
LOW_ENGAGEMENT_WORDS = (
    "static", "still", "quiet", "calm", "peaceful", "boring",
    "empty", "nothing", "minimal", "simple", "basic",
)
ACTION_RE = re.compile(r"\b(running|jumping|moving|dancing|fighting|playing|performing)\b")
EMOTION_RE = re.compile(r"\b(laughing|crying|shouting|celebrating|cheering|reacting)\b")


@dataclass
class FrameScore:
    timestamp: float
    score: float
    caption: str = ""


def sample_timestamps(duration: float, count: int) -> List[float]:
    """``count`` evenly spaced instants strictly inside (0, duration)."""
    if duration <= 0 or count <= 0:
        return []
    return [float(t) for t in np.linspace(0.0, duration, count + 2)[1:-1]]


def score_caption(caption: str) -> float:
    """Keyword heuristic turning a frame caption into a 0-100 score."""
    if not caption:
        return 0.0
    text = caption.lower()
    score = 0.0
    score += 10 * sum(1 for word in HIGH_ENGAGEMENT_WORDS if word in text)
    score += 5 * sum(1 for word in MEDIUM_ENGAGEMENT_WORDS if word in text)
    score -= 3 * sum(1 for word in LOW_ENGAGEMENT_WORDS if word in text)
    if ACTION_RE.search(text):
        score += 15
    if EMOTION_RE.search(text):
        score += 12
    return float(np.clip(score, 0, 100))


def matched_tags(caption: str) -> List[str]:
    text = (caption or "").lower()
    return [word for word in HIGH_ENGAGEMENT_WORDS if word in text][:5]


def parse_vision_response(payload) -> tuple:
    """Return (score or None, caption) from the vision capability's response."""
    if isinstance(payload, list) and payload:
        payload = payload[0]
    if not isinstance(payload, dict):
        return None, ""
    caption = str(payload.get("generated_text") or payload.get("caption") or "")
    score = payload.get("score")
    try:
        score = float(score) if score is not None else None
    except (TypeError, ValueError):
        score = None
    return score, caption


def build_windows(
    frames: Sequence[FrameScore],
    duration: float,
    window_seconds: float,
    min_frame_score: float,
    max_windows: int,
) -> List[dict]:
    """
    Place a fixed-length window on each high-scoring frame, best first.

    Windows are shifted (not shortened) to stay inside the source, and a
    frame whose window overlaps an already placed one by more than half is
    skipped. A window's score is the mean of the frame scores it covers.
    """
    if not frames or duration <= 0:
        return []

    window_seconds = min(window_seconds, duration)
    times = np.array([f.timestamp for f in frames])
    scores = np.array([f.score for f in frames])

    windows: List[dict] = []
    placed: List[tuple] = []
    for index in np.argsort(-scores, kind="stable"):
        frame = frames[int(index)]
        if frame.score < min_frame_score:
            break
        start = float(np.clip(frame.timestamp - window_seconds / 2, 0.0, duration - window_seconds))
        end = start + window_seconds
        if any(min(end, e) - max(start, s) > window_seconds / 2 for s, e in placed):
            continue

        inside = (times >= start) & (times <= end)
        window_score = float(scores[inside].mean()) if inside.any() else frame.score
        placed.append((start, end))
        windows.append({
            "startTime": round(start, 3),
            "endTime": round(end, 3),
            "title": f"Highlight at {int(frame.timestamp // 60)}:{int(frame.timestamp % 60):02d}",
            "reason": frame.caption or "High visual engagement",
            "viralityScore": round(window_score, 1),
            "engagementType": "visual",
            "contentTags": matched_tags(frame.caption),
        })
        if len(windows) >= max_windows:
            break
    return windows


class FrameSamplingStrategy:
    """Scores sampled frames with a vision capability."""

    name = "frames"

    def __init__(
        self,
        vision_url: Optional[str] = None,
        api_key: Optional[str] = None,
        frame_count: Optional[int] = None,
        window_seconds: Optional[float] = None,
        min_frame_score: Optional[float] = None,
        scratch_root: Optional[Path] = None,
    ):
        self.vision_url = vision_url if vision_url is not None else settings.vision_url
        self.api_key = api_key if api_key is not None else settings.vision_api_key
        self.frame_count = frame_count or settings.frame_sample_count
        self.window_seconds = window_seconds or settings.frame_window_seconds
        self.min_frame_score = settings.frame_min_score if min_frame_score is None else min_frame_score
        self.scratch_root = Path(scratch_root or settings.scratch_dir)

    async def score_frame(self, frame_path: Path) -> tuple:
        encoded = base64.b64encode(frame_path.read_bytes()).decode("ascii")
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
        payload = await request_json(
            "POST",
            self.vision_url,
            service="Vision service",
            timeout=settings.vision_timeout_seconds,
            headers=headers,
            json={"inputs": encoded},
        )
        score, caption = parse_vision_response(payload)
        if score is None:
            score = score_caption(caption)
        return float(np.clip(score, 0, 100)), caption

    async def propose(
        self,
        transcript: Optional[Transcript],
        context: AnalysisContext,
        options: AnalysisOptions,
        source_path=None,
    ) -> List[dict]:
        if not self.vision_url:
            raise ValidationError("Vision scoring endpoint is not configured")
        if source_path is None:
            raise ValidationError("Frame sampling needs the source video")

        duration = context.duration
        timestamps = sample_timestamps(duration, self.frame_count)
        window = min(max(self.window_seconds, options.min_duration), options.max_duration)

        frames: List[FrameScore] = []
        errors = []
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="frames-", dir=self.scratch_root) as work_dir:
            for index, timestamp in enumerate(timestamps):
                frame_path = Path(work_dir) / f"frame_{index:03d}.jpg"
                await ffmpeg.generate_thumbnail(source_path, frame_path, timestamp, width=512)
                try:
                    score, caption = await self.score_frame(frame_path)
                except ExternalServiceError as e:
                    logger.warning(f"Frame at {timestamp:.1f}s could not be scored: {e}")
                    errors.append(e)
                    continue
                frames.append(FrameScore(timestamp=timestamp, score=score, caption=caption))

        if timestamps and not frames and errors:
            raise errors[0]

        logger.info(f"Scored {len(frames)} of {len(timestamps)} frames")
        return build_windows(frames, duration, window, self.min_frame_score, options.max_clips)
