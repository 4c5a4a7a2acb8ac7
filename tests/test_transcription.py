"""Tests for transcription normalization and the adapter."""
from pathlib import Path

import httpx
import pytest

from clipper_studio.errors import ExternalServiceError
from clipper_studio.pipeline.types import Segment, Transcript
from clipper_studio.services.transcription import TranscriptionAdapter, merge_transcripts, normalize_transcription
from clipper_studio.utils import ffmpeg, http


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
    """Returns queued responses (or raises queued exceptions) in order."""

    def __init__(self, queue, calls):
        self._queue = queue
        self.calls = calls

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, **kwargs):
        self.calls.append(kwargs)
        item = self._queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _install(monkeypatch, *queue):
    calls = []
    items = list(queue)
    monkeypatch.setattr(http.httpx, "AsyncClient", lambda *args, **kwargs: _FakeClient(items, calls))
    return calls


VERBOSE = {
    "text": "Hello there. General Kenobi.",
    "language": "en",
    "duration": 12.0,
    "segments": [
        {"start": 5.0, "end": 12.0, "text": " General Kenobi."},
        {"start": 0.0, "end": 4.5, "text": " Hello there."},
    ],
}


class TestNormalizeTranscription:
    """Tests for provider response normalization."""

    def test_verbose_json(self):
        transcript = normalize_transcription(VERBOSE)
        assert transcript.language == "en"
        assert transcript.duration == 12.0
        assert [s.text for s in transcript.segments] == ["Hello there.", "General Kenobi."]

    def test_chunks_with_timestamp_pairs(self):
        transcript = normalize_transcription({
            "text": "a b",
            "chunks": [{"timestamp": [0, 1.5], "text": "a"}, {"timestamp": [1.5, 3.0], "text": "b"}],
        })
        assert transcript.segments[1] == Segment(1.5, 3.0, "b")
        assert transcript.duration == 3.0

    def test_camel_case_keys(self):
        transcript = normalize_transcription({
            "segments": [{"startTime": 2, "endTime": 4, "text": "hi"}],
        })
        assert transcript.full_text == "hi"
        assert transcript.segments[0].start == 2.0

    def test_bad_segments_skipped(self):
        transcript = normalize_transcription({
            "text": "ok",
            "segments": [
                {"start": 3, "end": 1, "text": "backwards"},
                {"start": "x", "end": 1, "text": "nan"},
                {"start": 0, "end": 1, "text": ""},
                "junk",
                {"start": 1, "end": 2, "text": "ok"},
            ],
        })
        assert len(transcript.segments) == 1

    def test_text_without_segments_becomes_one_segment(self):
        transcript = normalize_transcription({"text": "just text"}, fallback_duration=30.0)
        assert transcript.segments == (Segment(0.0, 30.0, "just text"),)

    def test_no_speech_raises(self):
        with pytest.raises(ExternalServiceError):
            normalize_transcription({"text": "", "segments": []})

    def test_no_speech_allowed_for_chunks(self):
        transcript = normalize_transcription({"text": "", "segments": [], "duration": 600}, allow_empty=True)
        assert transcript.full_text == ""
        assert transcript.segments == ()
        assert transcript.duration == 600.0

    def test_non_object_raises(self):
        with pytest.raises(ExternalServiceError):
            normalize_transcription(["not", "an", "object"])


def test_merge_transcripts_offsets_segments():
    first = Transcript("en", "one", 600.0, (Segment(590.0, 600.0, "one"),))
    second = Transcript("unknown", "two", 300.0, (Segment(0.0, 10.0, "two"),))

    merged = merge_transcripts([(0.0, first), (600.0, second)])

    assert merged.language == "en"
    assert merged.full_text == "one two"
    assert merged.duration == 900.0
    assert merged.segments[1] == Segment(600.0, 610.0, "two")


class TestTranscriptionAdapter:
    """Tests for upload, retry and chunking."""

    def _adapter(self, tmp_path, **kwargs):
        params = dict(url="http://stt/v1/audio/transcriptions", api_key="key", max_retries=3,
                      backoff_seconds=0, scratch_root=tmp_path / "scratch")
        params.update(kwargs)
        return TranscriptionAdapter(**params)

    @pytest.mark.asyncio
    async def test_audio_file_uploaded_directly(self, monkeypatch, tmp_path):
        audio = tmp_path / "talk.wav"
        audio.write_bytes(b"RIFF")
        calls = _install(monkeypatch, _FakeResponse(200, VERBOSE))

        transcript = await self._adapter(tmp_path).transcribe(audio, language="en")

        assert len(transcript.segments) == 2
        assert calls[0]["headers"]["Authorization"] == "Bearer key"
        assert calls[0]["data"]["language"] == "en"
        assert calls[0]["data"]["response_format"] == "verbose_json"
        assert "file" in calls[0]["files"]

    @pytest.mark.asyncio
    async def test_video_audio_extracted_first(self, monkeypatch, tmp_path):
        video = tmp_path / "talk.mp4"
        video.write_bytes(b"video")
        extracted = []

        async def fake_extract(video_path, output_path, sample_rate=16000):
            extracted.append(Path(video_path))
            Path(output_path).write_bytes(b"RIFF")
            return Path(output_path)

        monkeypatch.setattr(ffmpeg, "extract_audio", fake_extract)
        _install(monkeypatch, _FakeResponse(200, VERBOSE))

        await self._adapter(tmp_path).transcribe(video)
        assert extracted == [video]

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, monkeypatch, tmp_path):
        audio = tmp_path / "talk.wav"
        audio.write_bytes(b"RIFF")
        calls = _install(
            monkeypatch,
            httpx.ConnectTimeout("slow"),
            _FakeResponse(503, {"error": {"message": "overloaded"}}),
            _FakeResponse(200, VERBOSE),
        )

        transcript = await self._adapter(tmp_path).transcribe(audio)

        assert transcript.language == "en"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self, monkeypatch, tmp_path):
        audio = tmp_path / "talk.wav"
        audio.write_bytes(b"RIFF")
        calls = _install(monkeypatch, _FakeResponse(401, {"error": {"message": "bad key"}}))

        with pytest.raises(ExternalServiceError) as exc_info:
            await self._adapter(tmp_path).transcribe(audio)

        assert len(calls) == 1
        assert exc_info.value.diagnostics == "bad key"
        assert not exc_info.value.transient

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, monkeypatch, tmp_path):
        audio = tmp_path / "talk.wav"
        audio.write_bytes(b"RIFF")
        calls = _install(monkeypatch, *[_FakeResponse(500, text="boom") for _ in range(3)])

        with pytest.raises(ExternalServiceError):
            await self._adapter(tmp_path).transcribe(audio)
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_large_audio_split_and_merged(self, monkeypatch, tmp_path):
        audio = tmp_path / "long.wav"
        audio.write_bytes(b"x" * 2048)

        async def fake_split(audio_path, output_dir, chunk_seconds):
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            chunks = []
            for index in range(2):
                path = output_dir / f"long_{index:03d}.wav"
                path.write_bytes(b"x")
                chunks.append((index * chunk_seconds, path))
            return chunks

        monkeypatch.setattr(ffmpeg, "split_audio", fake_split)
        _install(
            monkeypatch,
            _FakeResponse(200, {"text": "first", "duration": 600, "segments": [{"start": 1, "end": 3, "text": "first"}]}),
            _FakeResponse(200, {"text": "second", "duration": 100, "segments": [{"start": 2, "end": 5, "text": "second"}]}),
        )

        adapter = self._adapter(tmp_path, max_upload_mb=0.001, chunk_seconds=600)
        transcript = await adapter.transcribe(audio)

        assert [s.start for s in transcript.segments] == [1.0, 602.0]
        assert transcript.duration == 700.0
        assert transcript.full_text == "first second"

    def _split_into(self, monkeypatch, count):
        async def fake_split(audio_path, output_dir, chunk_seconds):
            output_dir = Path(output_dir)
            output_dir.mkdir(parents=True, exist_ok=True)
            chunks = []
            for index in range(count):
                path = output_dir / f"long_{index:03d}.wav"
                path.write_bytes(b"x")
                chunks.append((index * chunk_seconds, path))
            return chunks

        monkeypatch.setattr(ffmpeg, "split_audio", fake_split)

    @pytest.mark.asyncio
    async def test_silent_chunk_skipped(self, monkeypatch, tmp_path):
        audio = tmp_path / "long.wav"
        audio.write_bytes(b"x" * 2048)
        self._split_into(monkeypatch, 3)
        _install(
            monkeypatch,
            _FakeResponse(200, {"text": "hello", "duration": 600, "segments": [{"start": 0, "end": 2, "text": "hello"}]}),
            _FakeResponse(200, {"text": "", "segments": [], "duration": 600}),
            _FakeResponse(200, {"text": "bye", "duration": 100, "segments": [{"start": 0, "end": 3, "text": "bye"}]}),
        )

        adapter = self._adapter(tmp_path, max_upload_mb=0.001, chunk_seconds=600)
        transcript = await adapter.transcribe(audio)

        assert [s.start for s in transcript.segments] == [0.0, 1200.0]
        assert transcript.full_text == "hello bye"
        assert transcript.duration == 1300.0

    @pytest.mark.asyncio
    async def test_all_chunks_silent_raises(self, monkeypatch, tmp_path):
        audio = tmp_path / "long.wav"
        audio.write_bytes(b"x" * 2048)
        self._split_into(monkeypatch, 2)
        _install(
            monkeypatch,
            _FakeResponse(200, {"text": "", "segments": []}),
            _FakeResponse(200, {"text": "", "segments": []}),
        )

        adapter = self._adapter(tmp_path, max_upload_mb=0.001, chunk_seconds=600)
        with pytest.raises(ExternalServiceError, match="no speech"):
            await adapter.transcribe(audio)
