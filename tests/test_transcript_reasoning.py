"""Tests for transcript-driven candidate selection."""
import pytest

from clipper_studio.errors import ExternalServiceError, ParseError
from clipper_studio.pipeline.transcript_reasoning import (
    LanguageModelClient,
    TranscriptReasoningStrategy,
    chunk_transcript,
    estimate_tokens,
)
from clipper_studio.pipeline.types import AnalysisContext, AnalysisOptions, Segment, Transcript
from clipper_studio.utils import http


class _FakeResponse:
    def __init__(self, status_code: int, payload=None, text: str = ""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload


class _FakeClient:
    def __init__(self, post_response=None, calls=None, **kwargs):
        self._post_response = post_response
        self.calls = calls if calls is not None else []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self._post_response


class _FakeLLM:
    """Answers by matching a marker in the user prompt."""

    def __init__(self, answers):
        self.answers = answers
        self.prompts = []

    async def complete(self, system, user):
        self.prompts.append(user)
        for marker, answer in self.answers.items():
            if marker in user:
                if isinstance(answer, Exception):
                    raise answer
                return answer
        return "[]"


def _clip(start, end, score):
    return (
        f'{{"startTime": {start}, "endTime": {end}, "title": "t{start}", "reason": "r", '
        f'"viralityScore": {score}, "engagementType": "funny", "contentTags": ["x"]}}'
    )


def _transcript(duration, step=100.0):
    segments = []
    t = 0.0
    while t < duration:
        segments.append(Segment(t, min(t + step, duration), f"words spoken at {t:.0f} seconds"))
        t += step
    return Transcript(
        language="en",
        full_text=" ".join(s.text for s in segments),
        duration=duration,
        segments=tuple(segments),
    )


OPTIONS = AnalysisOptions(min_duration=15, max_duration=60, max_clips=10, min_score=60)


class TestLanguageModelClient:
    """Tests for the chat completions client."""

    @pytest.mark.asyncio
    async def test_returns_message_content(self, monkeypatch):
        calls = []
        response = _FakeResponse(200, {"choices": [{"message": {"content": "[]"}}]})
        monkeypatch.setattr(http.httpx, "AsyncClient", lambda *a, **k: _FakeClient(response, calls))

        client = LanguageModelClient(base_url="http://llm/v1/", api_key="k", model="m", backoff_seconds=0)
        assert await client.complete("sys", "user") == "[]"

        url, kwargs = calls[0]
        assert url == "http://llm/v1/chat/completions"
        assert kwargs["json"]["model"] == "m"
        assert kwargs["json"]["messages"][0] == {"role": "system", "content": "sys"}

    @pytest.mark.asyncio
    async def test_malformed_response(self, monkeypatch):
        response = _FakeResponse(200, {"choices": []})
        monkeypatch.setattr(http.httpx, "AsyncClient", lambda *a, **k: _FakeClient(response))

        client = LanguageModelClient(base_url="http://llm/v1", api_key="k", backoff_seconds=0)
        with pytest.raises(ExternalServiceError):
            await client.complete("sys", "user")


class TestChunkTranscript:
    """Tests for overlapping time chunks."""

    def test_windows_overlap(self):
        chunks = chunk_transcript(_transcript(4000.0), chunk_seconds=1800, overlap_seconds=600)
        assert [(c.start, c.end) for c in chunks] == [(0.0, 1800.0), (1200.0, 3000.0), (2400.0, 4000.0)]

    def test_segments_assigned_by_start(self):
        chunks = chunk_transcript(_transcript(3000.0), chunk_seconds=1800, overlap_seconds=600)
        assert chunks[0].transcript.segments[-1].start == 1700.0
        assert chunks[1].transcript.segments[0].start == 1200.0

    def test_overlap_must_be_shorter(self):
        with pytest.raises(ValueError):
            chunk_transcript(_transcript(100.0), chunk_seconds=60, overlap_seconds=60)


class TestTranscriptReasoningStrategy:
    """Tests for single and chunked analysis."""

    @pytest.mark.asyncio
    async def test_single_request(self):
        llm = _FakeLLM({"within 0.0s": f"Sure!\n```json\n[{_clip(10, 40, 80)}]\n```"})
        strategy = TranscriptReasoningStrategy(client=llm, max_transcript_tokens=100_000)

        items = await strategy.propose(_transcript(300.0), AnalysisContext(title="Pod", duration=300.0), OPTIONS)

        assert len(llm.prompts) == 1
        assert items[0]["startTime"] == 10
        assert "Pod" in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_empty_transcript_skips_model(self):
        llm = _FakeLLM({})
        strategy = TranscriptReasoningStrategy(client=llm)
        empty = Transcript(language="en", full_text="", duration=100.0, segments=())

        assert await strategy.propose(empty, AnalysisContext(duration=100.0), OPTIONS) == []
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_unparseable_response_raises(self):
        llm = _FakeLLM({"within": "I found nothing worth clipping."})
        strategy = TranscriptReasoningStrategy(client=llm, max_transcript_tokens=100_000)

        with pytest.raises(ParseError):
            await strategy.propose(_transcript(300.0), AnalysisContext(duration=300.0), OPTIONS)

    @pytest.mark.asyncio
    async def test_chunked_merges_and_dedupes(self):
        llm = _FakeLLM({
            "within 0.0s": f"[{_clip(100, 130, 80)}, {_clip(1500, 1530, 90)}, {_clip(1790, 1820, 95)}]",
            "within 1200.0s": f"[{_clip(1502, 1532, 85)}, {_clip(2500, 2530, 70)}]",
        })
        strategy = TranscriptReasoningStrategy(
            client=llm, max_transcript_tokens=1, chunk_seconds=1800, overlap_seconds=600,
        )
        transcript = _transcript(3000.0)
        assert estimate_tokens(transcript) > 1

        items = await strategy.propose(transcript, AnalysisContext(duration=3000.0), OPTIONS)

        assert len(llm.prompts) == 2
        assert [(i["startTime"], i["viralityScore"]) for i in items] == [(1500, 90), (100, 80), (2500, 70)]

    @pytest.mark.asyncio
    async def test_failed_chunk_skipped(self):
        llm = _FakeLLM({
            "within 0.0s": ExternalServiceError("Language model timed out", transient=True),
            "within 1200.0s": f"[{_clip(2500, 2530, 70)}]",
        })
        strategy = TranscriptReasoningStrategy(
            client=llm, max_transcript_tokens=1, chunk_seconds=1800, overlap_seconds=600,
        )

        items = await strategy.propose(_transcript(3000.0), AnalysisContext(duration=3000.0), OPTIONS)
        assert [i["startTime"] for i in items] == [2500]

    @pytest.mark.asyncio
    async def test_all_chunks_failed_raises(self):
        llm = _FakeLLM({"within": ExternalServiceError("Language model timed out", transient=True)})
        strategy = TranscriptReasoningStrategy(
            client=llm, max_transcript_tokens=1, chunk_seconds=1800, overlap_seconds=600,
        )

        with pytest.raises(ExternalServiceError):
            await strategy.propose(_transcript(3000.0), AnalysisContext(duration=3000.0), OPTIONS)
