"""Acquisition gateway: turn a URL or upload into a local media file plus metadata.

Two interchangeable backends implement the same contract:

- LocalToolBackend spawns yt-dlp on this machine.
- RemoteWorkerBackend asks a download worker over HTTP, then fetches the
  stored asset into local scratch.

The backend is chosen from settings, so callers never branch on it.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import httpx

from clipper_studio.config import settings
from clipper_studio.errors import (
    ExternalServiceError,
    UnsupportedPlatformError,
    ValidationError,
)
from clipper_studio.utils import ffmpeg, ytdlp
from clipper_studio.utils.http import request_json
from clipper_studio.utils.platforms import OTHER, detect_platform, is_http_url

logger = logging.getLogger(__name__)


@dataclass
class VideoMetadata:
    """Normalized description of a remote video."""
    source_url: str
    platform: str
    title: str = "Untitled Video"
    description: str = ""
    duration: float = 0.0
    uploader: str = "Unknown"
    video_id: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict, url: str, platform: str) -> "VideoMetadata":
        """Accepts yt-dlp ``--dump-json`` output or the worker's metadata object."""
        data = data or {}
        try:
            duration = float(data.get("duration") or 0)
        except (TypeError, ValueError):
            duration = 0.0
        return cls(
            source_url=url,
            platform=data.get("platform") or platform,
            title=data.get("title") or "Untitled Video",
            description=data.get("description") or "",
            duration=duration,
            uploader=data.get("uploader") or data.get("channel") or "Unknown",
            video_id=data.get("id"),
            thumbnail_url=data.get("thumbnail"),
            tags=list(data.get("tags") or []),
        )


@dataclass
class AcquisitionResult:
    """A downloaded file and what is known about it."""
    file_path: Path
    metadata: VideoMetadata


@dataclass
class SourceVideo:
    """A resolved, probed local source file."""
    origin: str  # "url" or "upload"
    file_path: Path
    duration: float
    width: int
    height: int
    fps: float
    video_codec: str
    audio_codec: Optional[str]
    container: str
    platform: str = OTHER
    source_url: Optional[str] = None
    metadata: Optional[VideoMetadata] = None


class AcquisitionBackend(ABC):
    """Capability interface for fetching remote videos."""

    name = "base"

    @abstractmethod
    async def resolve(self, url: str, platform: str, quality: str, output_dir: Path) -> AcquisitionResult:
        """Download ``url`` into ``output_dir`` and describe it."""

    @abstractmethod
    async def probe(self, url: str, platform: str) -> VideoMetadata:
        """Describe ``url`` without downloading it."""

    @abstractmethod
    async def health(self) -> dict:
        """Report whether the backend can currently serve requests."""


class LocalToolBackend(AcquisitionBackend):
    """Runs yt-dlp locally."""

    name = "local"

    async def resolve(self, url, platform, quality, output_dir):
        info = await ytdlp.fetch_metadata(url)
        metadata = VideoMetadata.from_dict(info, url, platform)
        file_path = await ytdlp.download_video(
            url,
            output_dir,
            filename="source",
            quality=quality,
            platform=platform,
        )
        return AcquisitionResult(file_path=file_path, metadata=metadata)

    async def probe(self, url, platform):
        info = await ytdlp.fetch_metadata(url)
        return VideoMetadata.from_dict(info, url, platform)

    async def health(self):
        checks = {
            "yt-dlp": ytdlp.check_ytdlp_available(),
            "ffmpeg": ffmpeg.check_ffmpeg_available(),
            "ffprobe": ffmpeg.check_ffprobe_available(),
        }
        return {"healthy": all(checks.values()), "checks": checks}


class RemoteWorkerBackend(AcquisitionBackend):
    """Delegates downloads to a remote worker service."""

    name = "remote"

    def __init__(
        self,
        base_url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.remote_worker_url).rstrip("/")
        self.secret = secret if secret is not None else settings.remote_worker_secret
        self.timeout = timeout or settings.remote_worker_timeout_seconds

    @property
    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["Authorization"] = f"Bearer {self.secret}"
        return headers

    async def _call(self, endpoint: str, body: dict) -> dict:
        payload = await request_json(
            "POST",
            f"{self.base_url}{endpoint}",
            service="Download worker",
            timeout=self.timeout,
            headers=self._headers,
            json=body,
        )
        if not isinstance(payload, dict):
            raise ExternalServiceError("Download worker returned a malformed payload", diagnostics=repr(payload)[:1000])
        if payload.get("error") or payload.get("success") is False:
            raise ExternalServiceError(
                "Download worker reported an error",
                diagnostics=str(payload.get("error") or payload),
            )
        return payload

    async def download(self, url: str, quality: str, output_dir: Path, upload_to_store: bool = True) -> Path:
        """Plain download through ``POST /download``."""
        payload = await self._call("/download", {
            "url": url,
            "quality": quality,
            "uploadToStore": upload_to_store,
        })
        return await self._materialize_payload(payload, output_dir)

    async def resolve(self, url, platform, quality, output_dir):
        payload = await self._call("/download-with-metadata", {
            "url": url,
            "quality": quality,
            "uploadToStore": True,
        })
        download = payload.get("download") if isinstance(payload.get("download"), dict) else payload
        file_path = await self._materialize_payload(download, output_dir)
        metadata = VideoMetadata.from_dict(
            payload.get("metadata") or {},
            url,
            payload.get("platform") or platform,
        )
        return AcquisitionResult(file_path=file_path, metadata=metadata)

    async def probe(self, url, platform):
        payload = await self._call("/metadata", {"url": url})
        return VideoMetadata.from_dict(payload.get("metadata") or payload, url, platform)

    async def health(self):
        try:
            payload = await request_json(
                "GET",
                f"{self.base_url}/health",
                service="Download worker",
                timeout=10.0,
                headers=self._headers,
            )
        except ExternalServiceError as e:
            return {"healthy": False, "error": e.message}
        healthy = bool(payload.get("healthy", payload.get("status") in ("ok", "healthy")))
        return {"healthy": healthy, "checks": payload.get("checks", {})}

    async def _materialize_payload(self, payload: dict, output_dir: Path) -> Path:
        asset_url = payload.get("assetUrl") or payload.get("firebaseUrl") or payload.get("url")
        if asset_url:
            return await self.fetch_asset(asset_url, output_dir / "source.mp4")
        local_path = payload.get("localPath")
        if local_path and Path(local_path).exists():
            return Path(local_path)
        raise ExternalServiceError(
            "Download worker did not return a fetchable file",
            diagnostics=repr(payload)[:1000],
        )

    async def fetch_asset(self, asset_url: str, destination: Path) -> Path:
        """Stream a stored asset to ``destination``, removing partial files on failure."""
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True) as client:
                async with client.stream("GET", asset_url) as response:
                    if response.status_code >= 400:
                        raise ExternalServiceError(
                            f"Asset download failed ({response.status_code})",
                            transient=response.status_code >= 500,
                        )
                    with open(destination, "wb") as fh:
                        async for chunk in response.aiter_bytes():
                            fh.write(chunk)
        except httpx.TimeoutException as exc:
            destination.unlink(missing_ok=True)
            raise ExternalServiceError("Asset download timed out", diagnostics=str(exc), transient=True) from exc
        except httpx.RequestError as exc:
            destination.unlink(missing_ok=True)
            raise ExternalServiceError("Unable to fetch asset", diagnostics=str(exc), transient=True) from exc
        except ExternalServiceError:
            destination.unlink(missing_ok=True)
            raise
        logger.info(f"Fetched worker asset to {destination}")
        return destination


def check_source_url(url: str, restrict_platforms: Optional[bool] = None) -> str:
    """
    Validate a source URL and return its platform.

    Raises:
        ValidationError: Not an http(s) URL
        UnsupportedPlatformError: Host not in the platform table while gating is on
    """
    if restrict_platforms is None:
        restrict_platforms = settings.restrict_platforms
    if not url or not is_http_url(url):
        raise ValidationError("Source must be an http(s) URL")
    platform = detect_platform(url)
    if restrict_platforms and platform == OTHER:
        raise UnsupportedPlatformError("This video platform is not supported")
    return platform


def create_backend(name: Optional[str] = None) -> AcquisitionBackend:
    """Instantiate the configured backend."""
    name = name or settings.acquisition_backend
    if name == "remote":
        return RemoteWorkerBackend()
    if name == "local":
        return LocalToolBackend()
    raise ValidationError(f"Unknown acquisition backend: {name}")


class AcquisitionGateway:
    """Resolves sources through the configured backend."""

    def __init__(
        self,
        backend: Optional[AcquisitionBackend] = None,
        restrict_platforms: Optional[bool] = None,
        scratch_root: Optional[Path] = None,
    ):
        self.backend = backend or create_backend()
        self.restrict_platforms = settings.restrict_platforms if restrict_platforms is None else restrict_platforms
        self.scratch_root = Path(scratch_root or settings.scratch_dir)

    def check_url(self, url: str) -> str:
        return check_source_url(url, self.restrict_platforms)

    def new_scratch_dir(self, prefix: str = "acquire") -> Path:
        """A fresh directory unique to one invocation. The caller removes it."""
        path = self.scratch_root / f"{prefix}-{uuid.uuid4().hex}"
        path.mkdir(parents=True, exist_ok=True)
        return path

    async def resolve(
        self,
        url: str,
        quality: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> AcquisitionResult:
        """Download a URL. Writes only inside ``output_dir`` (a new scratch dir if omitted)."""
        platform = self.check_url(url)
        output_dir = Path(output_dir) if output_dir else self.new_scratch_dir()
        output_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Resolving {url} ({platform}) via {self.backend.name} backend")
        return await self.backend.resolve(url, platform, quality or settings.download_quality, output_dir)

    async def probe(self, url: str) -> VideoMetadata:
        platform = self.check_url(url)
        return await self.backend.probe(url, platform)

    async def inspect(
        self,
        file_path: Path,
        origin: str,
        source_url: Optional[str] = None,
        metadata: Optional[VideoMetadata] = None,
    ) -> SourceVideo:
        """Probe a local file into an immutable SourceVideo."""
        info = await ffmpeg.get_video_info(file_path)
        return SourceVideo(
            origin=origin,
            file_path=Path(file_path),
            duration=info.duration,
            width=info.width,
            height=info.height,
            fps=info.fps,
            video_codec=info.video_codec,
            audio_codec=info.audio_codec,
            container=info.format_name,
            platform=metadata.platform if metadata else (detect_platform(source_url) if source_url else OTHER),
            source_url=source_url,
            metadata=metadata,
        )

    async def resolve_source(
        self,
        url: str,
        quality: Optional[str] = None,
        output_dir: Optional[Path] = None,
    ) -> SourceVideo:
        """Download and probe in one step."""
        result = await self.resolve(url, quality=quality, output_dir=output_dir)
        return await self.inspect(result.file_path, "url", source_url=url, metadata=result.metadata)

    async def resolve_upload(self, file_path: str | Path) -> SourceVideo:
        """Validate an uploaded file already on local disk."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise ValidationError("Uploaded file not found")
        return await self.inspect(file_path, "upload")

    async def health(self) -> dict:
        status = await self.backend.health()
        status["backend"] = self.backend.name
        return status
