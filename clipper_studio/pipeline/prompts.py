"""Prompt text for transcript-driven clip selection."""

SYSTEM_PROMPT = (
    "You are an expert content curator who finds short, self-contained moments "
    "in long videos that will perform well as standalone social clips. "
    "Respond with a JSON array only."
)

USER_PROMPT_TEMPLATE = """Find the most engaging moments in this video transcript.

VIDEO CONTEXT:
- Title: "{title}"
- Type: {video_type}
- Duration: {duration}
- Language: {language}
{window_note}
TRANSCRIPT (one line per segment, times in seconds):
{segments}

A good clip works for a viewer who has never seen the rest of the video:
- it introduces its own topic and ends on its payoff
- it contains setup and punchline, question and answer, or story and resolution
- it does not start with greetings, sponsor reads or channel housekeeping
- it starts and ends on sentence boundaries

Score each clip 0-100 for expected engagement:
- 90-100: instantly shareable and fully standalone
- 70-89: strong energy with a clear standalone message
- 60-69: usable
- below 60: do not include

Return ONLY a JSON array, no prose, in this exact shape:
[
  {{
    "startTime": 45.2,
    "endTime": 67.8,
    "title": "Short descriptive title",
    "reason": "Why this moment works on its own",
    "viralityScore": 85,
    "engagementType": "educational|funny|dramatic|relatable|reaction",
    "hasSetup": true,
    "hasPayoff": true,
    "contentTags": ["tag1", "tag2"]
  }}
]

Rules:
- every clip lasts between {min_duration:g} and {max_duration:g} seconds
- timestamps stay within {range_start:.1f}s and {range_end:.1f}s
- return at most {max_clips} clips; fewer is fine, an empty array is fine
"""


def build_user_prompt(
    segments: str,
    title: str,
    video_type: str,
    duration: float,
    language: str,
    min_duration: float,
    max_duration: float,
    max_clips: int,
    range_start: float = 0.0,
    range_end: float | None = None,
) -> str:
    range_end = duration if range_end is None else range_end
    window_note = ""
    if range_start > 0 or range_end < duration:
        window_note = f"- Excerpt: {range_start:.1f}s to {range_end:.1f}s of the full video\n"
    return USER_PROMPT_TEMPLATE.format(
        title=title or "Untitled",
        video_type=video_type or "general",
        duration=f"{duration:.1f}s" if duration else "unknown",
        language=language or "auto-detected",
        window_note=window_note,
        segments=segments,
        min_duration=min_duration,
        max_duration=max_duration,
        range_start=range_start,
        range_end=range_end,
        max_clips=max_clips,
    )
