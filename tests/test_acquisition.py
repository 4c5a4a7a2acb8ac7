"""Tests for the acquisition gateway and its backends."""
from pathlib import Path

import httpx
import pytest

from clipper_studio.errors import ExternalServiceError, UnsupportedPlatformError, ValidationError
from clipper_studio.services import acquisition
from clipper_studio.services.acquisition import (
    AcquisitionGateway,
    AcquisitionResult,
    LocalToolBackend,
    RemoteWorkerBackend,
    VideoMetadata,
    check_source_url,
    create_backend,
)
from clipper_studio.utils import ffmpeg
from clipper_studio.utils.ffmpeg import VideoInfo


class _FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, text: str = "", chunks=None, error=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text
        self._chunks = chunks or []
        self._error = error

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON payload")
        return self._payload

    async def aiter_bytes(self):
        for chunk in self._chunks:
            yield chunk
        if self._error:
            raise self._error


class _FakeStream:
    def __init__(self, response):
        self._response = response

    async def __aenter__(self):
        return self._response

    async def __aexit__(self, exc_type, exc, tb):
        return False


class _FakeClient:
    def __init__(self, post_response=None, get_response=None, stream_response=None, error=None, calls=None):
        self._post_response = post_response
        self._get_response = get_response
        self._stream_response = stream_response
        self._error = error
        self.calls = calls if calls is not None else []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, **kwargs):
        self.calls.append(("POST", url, kwargs))
        if self._error:
            raise self._error
        return self._post_response

    async def get(self, url, **kwargs):
        self.calls.append(("GET", url, kwargs))
        if self._error:
            raise self._error
        return self._get_response

    def stream(self, method, url, **kwargs):
        self.calls.append(("STREAM", url, kwargs))
        return _FakeStream(self._stream_response)


def _install_client(monkeypatch, **kwargs):
    calls = []
    monkeypatch.setattr(
        acquisition.httpx,
        "AsyncClient",
        lambda *args, **client_kwargs: _FakeClient(calls=calls, **kwargs),
    )
    return calls


VIDEO_INFO = VideoInfo(
    duration=120.0,
    width=1920,
    height=1080,
    fps=30.0,
    video_codec="h264",
    audio_codec="aac",
    format_name="mov,mp4,m4a,3gp,3g2,mj2",
    bit_rate=5_000_000,
)


class TestCheckSourceUrl:
    """Tests for URL validation and platform gating."""

    def test_known_platform(self):
        assert check_source_url("https://www.youtube.com/watch?v=x", restrict_platforms=True) == "youtube"

    def test_not_a_url(self):
        with pytest.raises(ValidationError):
            check_source_url("/etc/passwd")

    def test_unknown_platform_rejected_when_restricted(self):
        with pytest.raises(UnsupportedPlatformError):
            check_source_url("https://example.org/v.mp4", restrict_platforms=True)

    def test_unknown_platform_allowed_when_open(self):
        assert check_source_url("https://example.org/v.mp4", restrict_platforms=False) == "other"


class TestVideoMetadata:
    """Tests for metadata normalization."""

    def test_defaults_for_missing_fields(self):
        meta = VideoMetadata.from_dict({}, "https://youtu.be/x", "youtube")
        assert meta.title == "Untitled Video"
        assert meta.uploader == "Unknown"
        assert meta.duration == 0.0
        assert meta.tags == []

    def test_ytdlp_fields(self):
        meta = VideoMetadata.from_dict(
            {"title": "Talk", "duration": "95.5", "channel": "Chan", "id": "abc", "tags": ["a"]},
            "https://youtu.be/x",
            "youtube",
        )
        assert meta.title == "Talk"
        assert meta.duration == 95.5
        assert meta.uploader == "Chan"
        assert meta.video_id == "abc"

    def test_bad_duration(self):
        meta = VideoMetadata.from_dict({"duration": "long"}, "u", "other")
        assert meta.duration == 0.0


class TestRemoteWorkerBackend:
    """Tests for the HTTP download worker."""

    @pytest.mark.asyncio
    async def test_resolve_fetches_asset(self, monkeypatch, tmp_path):
        calls = _install_client(
            monkeypatch,
            post_response=_FakeResponse(200, {
                "download": {"assetUrl": "https://store.example/v.mp4"},
                "metadata": {"title": "Remote title", "duration": 300},
            }),
            stream_response=_FakeResponse(200, chunks=[b"abc", b"def"]),
        )
        backend = RemoteWorkerBackend(base_url="http://worker/", secret="s3cret", timeout=5)

        result = await backend.resolve("https://youtu.be/x", "youtube", "best", tmp_path)

        assert result.file_path == tmp_path / "source.mp4"
        assert result.file_path.read_bytes() == b"abcdef"
        assert result.metadata.title == "Remote title"
        method, url, kwargs = calls[0]
        assert url == "http://worker/download-with-metadata"
        assert kwargs["headers"]["Authorization"] == "Bearer s3cret"
        assert kwargs["json"]["url"] == "https://youtu.be/x"

    @pytest.mark.asyncio
    async def test_error_payload_raises(self, monkeypatch, tmp_path):
        _install_client(monkeypatch, post_response=_FakeResponse(200, {"error": "Video unavailable"}))
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)

        with pytest.raises(ExternalServiceError) as exc_info:
            await backend.download("https://youtu.be/x", "best", tmp_path)
        assert "Video unavailable" in exc_info.value.diagnostics

    @pytest.mark.asyncio
    async def test_local_path_payload(self, monkeypatch, tmp_path):
        existing = tmp_path / "already.mp4"
        existing.write_bytes(b"x")
        _install_client(monkeypatch, post_response=_FakeResponse(200, {"localPath": str(existing)}))
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)

        assert await backend.download("https://youtu.be/x", "best", tmp_path) == existing

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, monkeypatch, tmp_path):
        _install_client(monkeypatch, post_response=_FakeResponse(503, {"error": "busy"}))
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)

        with pytest.raises(ExternalServiceError) as exc_info:
            await backend.probe("https://youtu.be/x", "youtube")
        assert exc_info.value.transient

    @pytest.mark.asyncio
    async def test_partial_asset_removed_on_failure(self, monkeypatch, tmp_path):
        _install_client(
            monkeypatch,
            stream_response=_FakeResponse(200, chunks=[b"abc"], error=httpx.ReadError("connection reset")),
        )
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)
        destination = tmp_path / "source.mp4"

        with pytest.raises(ExternalServiceError):
            await backend.fetch_asset("https://store.example/v.mp4", destination)
        assert not destination.exists()

    @pytest.mark.asyncio
    async def test_health_unreachable(self, monkeypatch):
        _install_client(monkeypatch, error=httpx.ConnectError("refused"))
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)

        status = await backend.health()
        assert status["healthy"] is False
        assert "error" in status

    @pytest.mark.asyncio
    async def test_health_ok(self, monkeypatch):
        _install_client(monkeypatch, get_response=_FakeResponse(200, {"healthy": True}))
        backend = RemoteWorkerBackend(base_url="http://worker", secret="", timeout=5)

        assert (await backend.health())["healthy"] is True


class TestLocalToolBackend:
    """Tests for the yt-dlp backend."""

    @pytest.mark.asyncio
    async def test_resolve(self, monkeypatch, tmp_path):
        async def fake_metadata(url):
            return {"title": "Local title", "duration": 60}

        async def fake_download(url, output_dir, filename="source", quality=None, platform=None, **kwargs):
            path = Path(output_dir) / f"{filename}.mp4"
            path.write_bytes(b"v")
            return path

        monkeypatch.setattr(acquisition.ytdlp, "fetch_metadata", fake_metadata)
        monkeypatch.setattr(acquisition.ytdlp, "download_video", fake_download)

        result = await LocalToolBackend().resolve("https://youtu.be/x", "youtube", "best", tmp_path)
        assert result.file_path == tmp_path / "source.mp4"
        assert result.metadata.title == "Local title"
        assert result.metadata.platform == "youtube"


class _StubBackend:
    name = "stub"

    def __init__(self, tmp_path):
        self.tmp_path = tmp_path
        self.calls = []

    async def resolve(self, url, platform, quality, output_dir):
        self.calls.append((url, platform, quality, output_dir))
        path = output_dir / "source.mp4"
        path.write_bytes(b"v")
        return AcquisitionResult(file_path=path, metadata=VideoMetadata(source_url=url, platform=platform, title="T"))

    async def probe(self, url, platform):
        return VideoMetadata(source_url=url, platform=platform)

    async def health(self):
        return {"healthy": True}


class TestAcquisitionGateway:
    """Tests for the backend-agnostic gateway."""

    @pytest.mark.asyncio
    async def test_resolve_source_probes_file(self, monkeypatch, tmp_path):
        async def fake_info(path):
            return VIDEO_INFO

        monkeypatch.setattr(ffmpeg, "get_video_info", fake_info)
        backend = _StubBackend(tmp_path)
        gateway = AcquisitionGateway(backend=backend, restrict_platforms=True, scratch_root=tmp_path)

        source = await gateway.resolve_source("https://youtu.be/x", output_dir=tmp_path / "dl")

        assert source.origin == "url"
        assert source.duration == 120.0
        assert source.platform == "youtube"
        assert source.metadata.title == "T"
        assert backend.calls[0][3] == tmp_path / "dl"

    @pytest.mark.asyncio
    async def test_resolve_defaults_to_fresh_scratch_dir(self, tmp_path):
        backend = _StubBackend(tmp_path)
        gateway = AcquisitionGateway(backend=backend, restrict_platforms=False, scratch_root=tmp_path)

        first = await gateway.resolve("https://example.org/a.mp4")
        second = await gateway.resolve("https://example.org/a.mp4")

        assert first.file_path.parent != second.file_path.parent
        assert first.file_path.parent.parent == tmp_path

    @pytest.mark.asyncio
    async def test_rejects_unsupported_before_backend(self, tmp_path):
        backend = _StubBackend(tmp_path)
        gateway = AcquisitionGateway(backend=backend, restrict_platforms=True, scratch_root=tmp_path)

        with pytest.raises(UnsupportedPlatformError):
            await gateway.resolve("https://example.org/a.mp4")
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_resolve_upload(self, monkeypatch, tmp_path):
        async def fake_info(path):
            return VIDEO_INFO

        monkeypatch.setattr(ffmpeg, "get_video_info", fake_info)
        upload = tmp_path / "upload.mp4"
        upload.write_bytes(b"v")
        gateway = AcquisitionGateway(backend=_StubBackend(tmp_path), scratch_root=tmp_path)

        source = await gateway.resolve_upload(upload)
        assert source.origin == "upload"
        assert source.platform == "other"

    @pytest.mark.asyncio
    async def test_resolve_upload_missing_file(self, tmp_path):
        gateway = AcquisitionGateway(backend=_StubBackend(tmp_path), scratch_root=tmp_path)
        with pytest.raises(ValidationError):
            await gateway.resolve_upload(tmp_path / "nope.mp4")

    @pytest.mark.asyncio
    async def test_health_names_backend(self, tmp_path):
        gateway = AcquisitionGateway(backend=_StubBackend(tmp_path), scratch_root=tmp_path)
        status = await gateway.health()
        assert status == {"healthy": True, "backend": "stub"}


def test_create_backend():
    assert isinstance(create_backend("local"), LocalToolBackend)
    assert isinstance(create_backend("remote"), RemoteWorkerBackend)
    with pytest.raises(ValidationError):
        create_backend("carrier-pigeon")
