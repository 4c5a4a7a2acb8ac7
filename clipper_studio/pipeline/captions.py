"""Clip-relative caption tracks and their text renderings."""
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .types import CaptionTrack, Cue, Segment

logger = logging.getLogger(__name__)

WEBVTT_MIME_TYPE = "text/vtt"

POSITION_SETTINGS = {
    "top": "line:10%",
    "center": "line:50%",
    "bottom": "line:90%",
}


def wrap_text(text: str, max_line_length: int = 40) -> List[str]:
    """Greedy word wrap. A single word longer than the limit keeps its own line."""
    lines: List[str] = []
    current = ""
    for word in text.split():
        if not current:
            current = word
        elif len(current) + 1 + len(word) <= max_line_length:
            current = f"{current} {word}"
        else:
            lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def format_clip_captions(
    segments: Iterable[Segment],
    clip_start: float,
    clip_end: float,
    max_line_length: int = 40,
    position: str = "bottom",
    gap_fill_seconds: float = 2.0,
    title: Optional[str] = None,
) -> CaptionTrack:
    """
    Build a caption track on the clip's own timeline.

    A segment is used when it overlaps the clip at all, so speech cut at
    either edge still appears. Each selected segment is clamped to the clip
    window and shifted so the clip starts at zero. When the last cue ends at
    least ``gap_fill_seconds`` before the clip does, it is held until the end.
    """
    clip_duration = clip_end - clip_start
    track = CaptionTrack(title=title, position=position if position in POSITION_SETTINGS else "bottom")
    if clip_duration <= 0:
        return track

    for segment in sorted(segments, key=lambda s: s.start):
        if not (segment.start < clip_end and segment.end > clip_start):
            continue
        text = (segment.text or "").strip()
        if not text:
            continue
        start = max(segment.start, clip_start) - clip_start
        end = min(segment.end, clip_end) - clip_start
        if end <= start:
            continue
        track.cues.append(Cue(
            start=round(start, 3),
            end=round(end, 3),
            lines=tuple(wrap_text(text, max_line_length)),
        ))

    if track.cues and clip_duration - track.cues[-1].end >= gap_fill_seconds:
        last = track.cues[-1]
        track.cues[-1] = Cue(start=last.start, end=round(clip_duration, 3), lines=last.lines)

    logger.debug(f"Caption track for {clip_start:.2f}-{clip_end:.2f}: {len(track.cues)} cues")
    return track


def format_timestamp(seconds: float, separator: str = ".") -> str:
    """HH:MM:SS.mmm (or HH:MM:SS,mmm for SRT)."""
    total_ms = int(round(max(seconds, 0.0) * 1000))
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    secs, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}{separator}{millis:03d}"


def escape_webvtt_text(text: str) -> str:
    # Escaping ">" also neutralizes the "-->" timing separator
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def render_webvtt(track: CaptionTrack, position: Optional[str] = None) -> str:
    """Serialize a track as a WebVTT document."""
    if track.is_empty:
        return "WEBVTT\n\nNOTE No captions available\n\n"

    setting = POSITION_SETTINGS.get(position or track.position, POSITION_SETTINGS["bottom"])
    parts = ["WEBVTT\n"]
    if track.title:
        parts.append(f"NOTE {escape_webvtt_text(track.title)}\n")
    parts.append("\n")
    for index, cue in enumerate(track.cues, start=1):
        parts.append(f"{index}\n")
        parts.append(f"{format_timestamp(cue.start)} --> {format_timestamp(cue.end)} {setting}\n")
        for line in cue.lines:
            parts.append(f"{escape_webvtt_text(line)}\n")
        parts.append("\n")
    return "".join(parts)


def render_srt(track: CaptionTrack) -> str:
    """Serialize a track as SubRip, used for burn-in."""
    parts = []
    for index, cue in enumerate(track.cues, start=1):
        parts.append(
            f"{index}\n"
            f"{format_timestamp(cue.start, ',')} --> {format_timestamp(cue.end, ',')}\n"
            f"{cue.text}\n"
        )
    return "\n".join(parts)


@dataclass
class WebVttCheck:
    valid: bool
    cue_count: int
    errors: List[str] = field(default_factory=list)


def validate_webvtt(content: str) -> WebVttCheck:
    """Structural check: header present and every timing line well formed."""
    errors = []
    if not content.startswith("WEBVTT"):
        errors.append("Missing WEBVTT header")
    cue_count = 0
    for line in content.splitlines():
        if "-->" not in line:
            continue
        cue_count += 1
        stamps = line.split("-->")
        start = stamps[0].strip()
        end = stamps[1].strip().split(" ")[0] if len(stamps) > 1 else ""
        if len(start) != 12 or len(end) != 12:
            errors.append(f"Malformed timing line: {line}")
    return WebVttCheck(valid=not errors, cue_count=cue_count, errors=errors)
