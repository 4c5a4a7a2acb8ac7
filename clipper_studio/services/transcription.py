"""Speech-to-text hand-off.

Audio is extracted to 16 kHz mono, posted to an OpenAI-compatible
transcription endpoint and normalized into a Transcript. Long audio is
split into chunks whose timestamps are shifted back onto the source timeline.
"""
import logging
import tempfile
from pathlib import Path
from typing import Any, List, Optional

from clipper_studio.config import settings
from clipper_studio.errors import ExternalServiceError
from clipper_studio.pipeline.types import Segment, Transcript
from clipper_studio.utils import ffmpeg
from clipper_studio.utils.http import request_json, retrying

logger = logging.getLogger(__name__)

AUDIO_SUFFIXES = {".wav", ".mp3", ".m4a", ".flac", ".ogg", ".webm"}


def _number(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _segment_from(item: Any) -> Optional[Segment]:
    if not isinstance(item, dict):
        return None
    text = str(item.get("text") or "").strip()
    if "timestamp" in item and isinstance(item["timestamp"], (list, tuple)) and len(item["timestamp"]) == 2:
        start, end = (_number(v) for v in item["timestamp"])
    else:
        start = _number(item.get("start", item.get("startTime")))
        end = _number(item.get("end", item.get("endTime")))
    if start is None or end is None or end < start or not text:
        return None
    return Segment(start=start, end=end, text=text)


def normalize_transcription(payload: Any, fallback_duration: float = 0.0, allow_empty: bool = False) -> Transcript:
    """
    Convert a provider response into a Transcript.

    Accepts the OpenAI ``verbose_json`` shape (``segments`` with start/end),
    Hugging Face style ``chunks`` with ``timestamp`` pairs, and
    ``startTime``/``endTime`` segment keys. With ``allow_empty`` a response
    without speech becomes an empty transcript, so one silent chunk of a long
    recording does not fail the whole file.

    Raises:
        ExternalServiceError: The payload is not an object or carries no speech
    """
    if not isinstance(payload, dict):
        raise ExternalServiceError("Transcription response was malformed", diagnostics=repr(payload)[:1000])

    raw_segments = payload.get("segments")
    if raw_segments is None:
        raw_segments = payload.get("chunks") or []
    if not isinstance(raw_segments, list):
        raise ExternalServiceError("Transcription segments were malformed", diagnostics=repr(raw_segments)[:1000])

    segments = sorted(
        (s for s in (_segment_from(item) for item in raw_segments) if s is not None),
        key=lambda s: s.start,
    )
    text = str(payload.get("text") or "").strip()
    if not text:
        text = " ".join(s.text for s in segments)

    duration = _number(payload.get("duration")) or 0.0
    if not text:
        if not allow_empty:
            raise ExternalServiceError("Transcription returned no speech")
        return Transcript(
            language=str(payload.get("language") or "unknown"),
            full_text="",
            duration=duration or fallback_duration,
        )

    if segments:
        duration = max(duration, segments[-1].end)
    duration = duration or fallback_duration

    if not segments and duration > 0:
        segments = [Segment(start=0.0, end=duration, text=text)]

    return Transcript(
        language=str(payload.get("language") or "unknown"),
        full_text=text,
        duration=duration,
        segments=tuple(segments),
    )


def merge_transcripts(parts: List[tuple]) -> Transcript:
    """Concatenate (offset, Transcript) chunks onto one timeline."""
    segments: List[Segment] = []
    texts = []
    language = "unknown"
    duration = 0.0
    for offset, part in parts:
        if language == "unknown" and part.language != "unknown":
            language = part.language
        texts.append(part.full_text)
        segments.extend(
            Segment(start=s.start + offset, end=s.end + offset, text=s.text) for s in part.segments
        )
        duration = max(duration, offset + part.duration)
    return Transcript(
        language=language,
        full_text=" ".join(t for t in texts if t),
        duration=duration,
        segments=tuple(segments),
    )


class TranscriptionAdapter:
    """Client for the speech recognition capability."""

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        max_upload_mb: Optional[float] = None,
        chunk_seconds: Optional[float] = None,
        scratch_root: Optional[Path] = None,
    ):
        self.url = url or settings.transcription_url
        self.api_key = api_key if api_key is not None else settings.transcription_api_key
        self.model = model or settings.transcription_model
        self.timeout = timeout or settings.transcription_timeout_seconds
        self.max_retries = settings.transcription_max_retries if max_retries is None else max_retries
        self.backoff_seconds = settings.transcription_backoff_seconds if backoff_seconds is None else backoff_seconds
        self.max_upload_mb = max_upload_mb or settings.transcription_max_upload_mb
        self.chunk_seconds = chunk_seconds or settings.transcription_chunk_seconds
        self.scratch_root = Path(scratch_root or settings.scratch_dir)

    async def transcribe(
        self,
        file_path: str | Path,
        language: Optional[str] = None,
        include_timestamps: bool = True,
    ) -> Transcript:
        """
        Transcribe a media file.

        Raises:
            ExternalServiceError: The service failed after retries or returned nothing usable
            ExternalToolError: Audio extraction failed
        """
        file_path = Path(file_path)
        self.scratch_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="transcribe-", dir=self.scratch_root) as work_dir:
            work = Path(work_dir)
            if file_path.suffix.lower() in AUDIO_SUFFIXES:
                audio_path = file_path
            else:
                audio_path = await ffmpeg.extract_audio(file_path, work / "audio.wav")

            size_mb = audio_path.stat().st_size / (1024 * 1024)
            if size_mb <= self.max_upload_mb:
                chunks = [(0.0, audio_path)]
            else:
                logger.info(f"Audio is {size_mb:.1f}MB, splitting into {self.chunk_seconds:.0f}s chunks")
                chunks = await ffmpeg.split_audio(audio_path, work / "chunks", self.chunk_seconds)

            parts = []
            for offset, chunk_path in chunks:
                payload = await self._request_with_retries(chunk_path, language, include_timestamps)
                part = normalize_transcription(payload, allow_empty=len(chunks) > 1)
                if not part.full_text:
                    logger.warning(f"No speech in chunk at {offset:.0f}s")
                parts.append((offset, part))

        transcript = parts[0][1] if len(parts) == 1 else merge_transcripts(parts)
        if not transcript.full_text:
            raise ExternalServiceError("Transcription returned no speech")
        logger.info(
            f"Transcribed {file_path.name}: {len(transcript.segments)} segments, "
            f"{transcript.duration:.1f}s, language={transcript.language}"
        )
        return transcript

    async def _request_with_retries(self, audio_path: Path, language: Optional[str], include_timestamps: bool):
        async for attempt in retrying(self.max_retries, self.backoff_seconds):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Retrying transcription (attempt {attempt.retry_state.attempt_number})")
                return await self._request(audio_path, language, include_timestamps)

    async def _request(self, audio_path: Path, language: Optional[str], include_timestamps: bool):
        data = {
            "model": self.model,
            "response_format": "verbose_json" if include_timestamps else "json",
        }
        if include_timestamps:
            data["timestamp_granularities[]"] = "segment"
        if language:
            data["language"] = language
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None

        with open(audio_path, "rb") as fh:
            return await request_json(
                "POST",
                self.url,
                service="Transcription service",
                timeout=self.timeout,
                headers=headers,
                data=data,
                files={"file": (audio_path.name, fh, "application/octet-stream")},
            )
