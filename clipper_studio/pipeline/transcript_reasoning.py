"""Transcript-driven candidate selection with a chat language model.

Short transcripts go to the model in one request. Transcripts above the
token budget are split into overlapping time chunks that are analysed
concurrently and merged (map-reduce).
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from typing import List, Optional

from clipper_studio.config import settings
from clipper_studio.errors import ExternalServiceError
from clipper_studio.utils.http import request_json, retrying
from clipper_studio.utils.json_extract import extract_json_array
from .post_filters import candidate_to_wire, remove_overlapping, validate_candidates
from .prompts import SYSTEM_PROMPT, build_user_prompt
from .types import AnalysisContext, AnalysisOptions, Transcript

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MERGE_OVERLAP_SECONDS = 5.0


class LanguageModelClient:
    """Minimal client for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
    ):
        self.base_url = (base_url or settings.llm_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.llm_api_key
        self.model = model or settings.llm_model
        self.timeout = timeout or settings.llm_timeout_seconds
        self.temperature = settings.llm_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds

    async def complete(self, system: str, user: str) -> str:
        """Return the assistant message text."""
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None

        async for attempt in retrying(self.max_attempts, self.backoff_seconds):
            with attempt:
                payload = await request_json(
                    "POST",
                    f"{self.base_url}/chat/completions",
                    service="Language model",
                    timeout=self.timeout,
                    headers=headers,
                    json=body,
                )
        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ExternalServiceError(
                "Language model returned a malformed response",
                diagnostics=repr(payload)[:1000],
            ) from e
        if not content:
            raise ExternalServiceError("Language model returned an empty response")
        return content


@dataclass(frozen=True)
class TranscriptChunk:
    start: float
    end: float
    transcript: Transcript


def estimate_tokens(transcript: Transcript) -> int:
    return len(transcript.timestamped_text()) // CHARS_PER_TOKEN


def chunk_transcript(
    transcript: Transcript,
    chunk_seconds: float,
    overlap_seconds: float,
) -> List[TranscriptChunk]:
    """Split into windows of ``chunk_seconds`` advancing by ``chunk_seconds - overlap_seconds``."""
    step = chunk_seconds - overlap_seconds
    if step <= 0:
        raise ValueError("Chunk overlap must be shorter than the chunk")

    duration = transcript.duration or (transcript.segments[-1].end if transcript.segments else 0.0)
    chunks = []
    start = 0.0
    while start < duration:
        end = min(start + chunk_seconds, duration)
        segments = tuple(s for s in transcript.segments if start <= s.start < end)
        if segments:
            chunks.append(TranscriptChunk(
                start=start,
                end=end,
                transcript=replace(
                    transcript,
                    full_text=" ".join(s.text for s in segments),
                    segments=segments,
                ),
            ))
        if end >= duration:
            break
        start += step
    return chunks


class TranscriptReasoningStrategy:
    """Asks the language model for candidates in the analysis wire format."""

    name = "transcript"

    def __init__(
        self,
        client: Optional[LanguageModelClient] = None,
        max_transcript_tokens: Optional[int] = None,
        chunk_seconds: Optional[float] = None,
        overlap_seconds: Optional[float] = None,
    ):
        self.client = client or LanguageModelClient()
        self.max_transcript_tokens = max_transcript_tokens or settings.llm_max_transcript_tokens
        self.chunk_seconds = chunk_seconds or settings.llm_chunk_seconds
        self.overlap_seconds = settings.llm_chunk_overlap_seconds if overlap_seconds is None else overlap_seconds

    async def propose(
        self,
        transcript: Transcript,
        context: AnalysisContext,
        options: AnalysisOptions,
        source_path=None,
    ) -> List[dict]:
        if not transcript.segments:
            logger.info("Transcript has no segments, nothing to analyse")
            return []

        tokens = estimate_tokens(transcript)
        if tokens > self.max_transcript_tokens:
            logger.info(f"Transcript is ~{tokens} tokens, using chunked analysis")
            return await self._propose_chunked(transcript, context, options)
        return await self._request(transcript, context, options)

    async def _request(
        self,
        transcript: Transcript,
        context: AnalysisContext,
        options: AnalysisOptions,
        range_start: float = 0.0,
        range_end: Optional[float] = None,
    ) -> List[dict]:
        prompt = build_user_prompt(
            segments=transcript.timestamped_text(),
            title=context.title,
            video_type=context.video_type,
            duration=context.duration or transcript.duration,
            language=context.language or transcript.language,
            min_duration=options.min_duration,
            max_duration=options.max_duration,
            max_clips=options.max_clips,
            range_start=range_start,
            range_end=range_end,
        )
        content = await self.client.complete(SYSTEM_PROMPT, prompt)
        items, mode = extract_json_array(content)
        logger.info(f"Language model proposed {len(items)} candidates ({mode} parse)")
        return items

    async def _analyze_chunk(
        self,
        chunk: TranscriptChunk,
        context: AnalysisContext,
        options: AnalysisOptions,
        source_duration: float,
    ):
        items = await self._request(chunk.transcript, context, options, chunk.start, chunk.end)
        result = validate_candidates(
            items,
            source_duration,
            replace(options, max_clips=len(items) or 1),
        )
        return [c for c in result.accepted if c.start_time >= chunk.start and c.end_time <= chunk.end]

    async def _propose_chunked(
        self,
        transcript: Transcript,
        context: AnalysisContext,
        options: AnalysisOptions,
    ) -> List[dict]:
        chunks = chunk_transcript(transcript, self.chunk_seconds, self.overlap_seconds)
        source_duration = context.duration or transcript.duration
        logger.info(f"Analysing {len(chunks)} transcript chunks")

        results = await asyncio.gather(
            *(self._analyze_chunk(chunk, context, options, source_duration) for chunk in chunks),
            return_exceptions=True,
        )

        candidates = []
        errors = []
        for chunk, outcome in zip(chunks, results):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.warning(f"Chunk {chunk.start:.0f}-{chunk.end:.0f}s failed: {outcome}")
                errors.append(outcome)
                continue
            candidates.extend(outcome)

        if errors and len(errors) == len(chunks):
            raise errors[0]

        merged = remove_overlapping(candidates, MERGE_OVERLAP_SECONDS)
        logger.info(f"Merged {len(candidates)} chunk candidates into {len(merged)}")
        return [candidate_to_wire(c) for c in merged]
