"""End-to-end orchestration for one project.

Stages run in order (acquire, transcribe, analyze) with a cancellation check
between them. Accepted candidates are then rendered with bounded parallelism;
a failed clip is recorded on its asset and never fails the project.
"""
import asyncio
import logging
import shutil
import traceback
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from clipper_studio.config import settings
from clipper_studio.db.database import async_session_maker
from clipper_studio.errors import ClipperError, ExternalToolError
from clipper_studio.models.project import SourceType
from clipper_studio.services.acquisition import AcquisitionGateway, SourceVideo
from clipper_studio.services.project_service import ProjectService
from clipper_studio.services.transcription import TranscriptionAdapter
from clipper_studio.services.usage_service import UsageService
from .analyzer import AnalysisInput, ContentAnalyzer, default_options
from .captions import format_clip_captions
from .materializer import ClipMaterializer, MaterializeOptions
from .platform_specs import DEFAULT_PLATFORM, get_platform_spec
from .types import AnalysisOptions, ClipCandidate, MaterializedClip, Transcript

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, str], Awaitable[None]]


@dataclass
class PipelineRequest:
    """What to produce for one project."""
    project_id: int
    platforms: List[str] = field(default_factory=lambda: [DEFAULT_PLATFORM])
    captions: str = "attach"
    caption_position: Optional[str] = None
    extract_audio: bool = False
    language: Optional[str] = None
    quality: Optional[str] = None
    video_type: str = "general"
    options: Optional[AnalysisOptions] = None


@dataclass
class PipelineResult:
    """Aggregated outcome, including per-clip failures."""
    project_id: int
    status: str
    candidates: List[ClipCandidate] = field(default_factory=list)
    assets: List[MaterializedClip] = field(default_factory=list)

    @property
    def succeeded(self) -> List[MaterializedClip]:
        return [a for a in self.assets if a.ok]

    @property
    def failed(self) -> List[MaterializedClip]:
        return [a for a in self.assets if not a.ok]

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "status": self.status,
            "candidates": len(self.candidates),
            "clips_ready": len(self.succeeded),
            "clips_failed": len(self.failed),
            "failures": [
                {"title": a.candidate.title, "platform": a.platform, "error": a.error}
                for a in self.failed
            ],
        }


class PipelineCancelled(ClipperError):
    """Cancellation observed between stages."""


class ClipPipeline:
    """Runs acquisition, transcription, analysis and rendering for a project."""

    def __init__(
        self,
        session_maker=None,
        gateway: Optional[AcquisitionGateway] = None,
        transcriber: Optional[TranscriptionAdapter] = None,
        analyzer: Optional[ContentAnalyzer] = None,
        materializer: Optional[ClipMaterializer] = None,
        concurrency: Optional[int] = None,
        retries: Optional[int] = None,
        retry_backoff_seconds: float = 1.0,
        scratch_root: Optional[Path] = None,
    ):
        self.session_maker = session_maker or async_session_maker
        self.scratch_root = Path(scratch_root or settings.scratch_dir)
        self.gateway = gateway or AcquisitionGateway(scratch_root=self.scratch_root)
        self.transcriber = transcriber or TranscriptionAdapter(scratch_root=self.scratch_root)
        self.analyzer = analyzer or ContentAnalyzer()
        self.materializer = materializer or ClipMaterializer(scratch_root=self.scratch_root)
        self.concurrency = concurrency or settings.materialize_concurrency
        self.retries = settings.materialize_retries if retries is None else retries
        self.retry_backoff_seconds = retry_backoff_seconds

    async def run(
        self,
        request: PipelineRequest,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PipelineResult:
        """
        Process one project to a terminal status.

        Acquisition, transcription and analysis failures mark the project
        failed and are re-raised. The per-invocation scratch directory is
        removed on every exit path.
        """
        async def progress(value: float, message: str):
            logger.info(f"Project {request.project_id}: {message}")
            if progress_callback:
                await progress_callback(value, message)

        def checkpoint():
            if cancel_event is not None and cancel_event.is_set():
                raise PipelineCancelled("Processing was cancelled")

        async with self.session_maker() as session:
            project = await ProjectService(session).start_processing(request.project_id)
            account_id = project.account_id
            source_type = project.source_type
            source_url = project.source_url
            source_path = project.source_path
            title = project.name
            project_dir = project.project_dir

        scratch = self.scratch_root / f"{request.project_id}-{uuid.uuid4().hex}"
        scratch.mkdir(parents=True, exist_ok=True)
        try:
            try:
                await progress(0, "Acquiring source video")
                source = await self._acquire(source_type, source_url, source_path, request.quality, scratch, project_dir)
                async with self.session_maker() as session:
                    await ProjectService(session).record_source(request.project_id, source)
                if source.metadata:
                    title = source.metadata.title
                checkpoint()

                await progress(20, "Transcribing audio")
                transcript = await self.transcriber.transcribe(source.file_path, language=request.language)
                async with self.session_maker() as session:
                    await ProjectService(session).record_transcript(request.project_id, transcript)
                checkpoint()

                await progress(45, "Analysing content")
                candidates = await self.analyzer.analyze(
                    AnalysisInput(
                        source_duration=source.duration,
                        transcript=transcript,
                        source_path=source.file_path,
                        title=title,
                        video_type=request.video_type,
                    ),
                    request.options or default_options(),
                )
                async with self.session_maker() as session:
                    clips = await ProjectService(session).record_candidates(request.project_id, candidates)
                clip_ids = [clip.id for clip in clips]
                checkpoint()

                await progress(60, f"Rendering {len(candidates)} clips")
                assets = await self._materialize_all(
                    request, source, transcript, candidates, clip_ids, project_dir / "clips", progress,
                )
                status = await self._finish(request, account_id, source, clip_ids, assets)
            except asyncio.CancelledError:
                await asyncio.shield(self._fail(request.project_id, "Processing was cancelled", None))
                raise
            except ClipperError as e:
                await self._fail(request.project_id, e.message, e.diagnostics or traceback.format_exc())
                raise
            except Exception:
                await self._fail(request.project_id, "Processing failed unexpectedly", traceback.format_exc())
                raise
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

        ready = [a for a in assets if a.ok]
        await progress(100, f"Completed with {len(ready)} of {len(assets)} clips rendered")
        return PipelineResult(
            project_id=request.project_id,
            status=status,
            candidates=candidates,
            assets=assets,
        )

    async def _acquire(
        self,
        source_type: SourceType,
        source_url: Optional[str],
        source_path: Optional[str],
        quality: Optional[str],
        scratch: Path,
        project_dir: Path,
    ) -> SourceVideo:
        if source_type == SourceType.UPLOAD:
            return await self.gateway.resolve_upload(source_path)

        result = await self.gateway.resolve(source_url, quality=quality, output_dir=scratch / "download")
        project_dir.mkdir(parents=True, exist_ok=True)
        kept = project_dir / f"source{result.file_path.suffix or '.mp4'}"
        shutil.move(str(result.file_path), kept)
        return await self.gateway.inspect(kept, "url", source_url=source_url, metadata=result.metadata)

    @staticmethod
    def _asset_clip_ids(clip_ids: List[int], request: PipelineRequest) -> List[int]:
        return [clip_id for clip_id in clip_ids for _ in request.platforms]

    async def _materialize_all(
        self,
        request: PipelineRequest,
        source: SourceVideo,
        transcript: Transcript,
        candidates: List[ClipCandidate],
        clip_ids: List[int],
        output_dir: Path,
        progress: ProgressCallback,
    ) -> List[MaterializedClip]:
        """Render every (candidate, platform) pair, at most ``concurrency`` at a time."""
        if not candidates:
            return []

        semaphore = asyncio.Semaphore(self.concurrency)
        options = MaterializeOptions(captions=request.captions, extract_audio=request.extract_audio)
        position = request.caption_position or settings.caption_position
        total = len(candidates) * len(request.platforms)
        done = 0

        async def render(rank: int, candidate: ClipCandidate, platform: str) -> MaterializedClip:
            nonlocal done
            async with semaphore:
                # Captions follow the rendered length, which the platform may trim
                rendered = min(candidate.duration, get_platform_spec(platform).max_duration)
                track = format_clip_captions(
                    transcript.segments,
                    candidate.start_time,
                    candidate.start_time + rendered,
                    max_line_length=settings.caption_max_line_length,
                    position=position,
                    gap_fill_seconds=settings.caption_gap_fill_seconds,
                    title=candidate.title,
                )
                try:
                    result = await self.materializer.materialize_with_retries(
                        source.file_path,
                        candidate,
                        platform,
                        output_dir,
                        caption_track=track,
                        options=options,
                        name=f"clip_{clip_ids[rank]}_{platform}",
                        retries=self.retries,
                        backoff_seconds=self.retry_backoff_seconds,
                    )
                except ClipperError as e:
                    logger.error(f"Clip {rank} ({platform}) failed: {e.message}")
                    result = MaterializedClip(
                        candidate=candidate,
                        platform=platform,
                        error=e.message,
                        error_detail=e.diagnostics,
                        attempts=self.retries + 1 if isinstance(e, ExternalToolError) else 1,
                    )
                done += 1
                await progress(60 + 35 * done / total, f"Rendered {done}/{total} clips")
                return result

        pairs = [
            (rank, candidate, platform)
            for rank, candidate in enumerate(candidates)
            for platform in request.platforms
        ]
        outcomes = await asyncio.gather(
            *(render(rank, candidate, platform) for rank, candidate, platform in pairs),
            return_exceptions=True,
        )

        results = []
        for (rank, candidate, platform), outcome in zip(pairs, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Clip {rank} ({platform}) crashed: {outcome!r}",
                    exc_info=(type(outcome), outcome, outcome.__traceback__),
                )
                outcome = MaterializedClip(
                    candidate=candidate,
                    platform=platform,
                    error="Rendering failed unexpectedly",
                    error_detail="".join(traceback.format_exception(type(outcome), outcome, outcome.__traceback__)),
                )
            results.append(outcome)
        return results

    async def _finish(
        self,
        request: PipelineRequest,
        account_id: str,
        source: SourceVideo,
        clip_ids: List[int],
        assets: List[MaterializedClip],
    ) -> str:
        """Persist assets, update usage and complete the project."""
        async with self.session_maker() as session:
            service = ProjectService(session)
            for clip_id, asset in zip(self._asset_clip_ids(clip_ids, request), assets):
                await service.record_asset(clip_id, asset)

            usage = UsageService(session)
            ready = [a for a in assets if a.ok]
            await usage.increment_videos_processed(account_id)
            if ready:
                await usage.increment_clips_generated(account_id, len(ready))
            storage_bytes = sum(a.size_bytes or 0 for a in ready)
            if source.origin == "url" and source.file_path.exists():
                storage_bytes += source.file_path.stat().st_size
            if storage_bytes:
                await usage.add_storage_used(account_id, storage_bytes / (1024 * 1024))

            project = await service.mark_completed(request.project_id)
            return project.status.value

    async def _fail(self, project_id: int, message: str, detail: Optional[str]):
        async with self.session_maker() as session:
            await ProjectService(session).mark_failed(project_id, message, detail)
