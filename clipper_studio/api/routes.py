"""API routes."""
import logging
import shutil
import uuid
from dataclasses import asdict
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from clipper_studio.config import settings
from clipper_studio.db.database import get_db
from clipper_studio.errors import ClipperError, NotFoundError
from clipper_studio.models.clip import Clip
from clipper_studio.models.job import Job
from clipper_studio.models.project import Project
from clipper_studio.pipeline.captions import WEBVTT_MIME_TYPE, format_clip_captions, render_webvtt
from clipper_studio.pipeline.types import Transcript
from clipper_studio.services.acquisition import AcquisitionGateway
from clipper_studio.services.project_service import ProjectService
from clipper_studio.services.usage_service import UsageService
from clipper_studio.utils.ffmpeg import check_ffmpeg_available, check_ffprobe_available
from clipper_studio.utils.ytdlp import check_ytdlp_available
from clipper_studio.api.schemas import (
    ClipResponse,
    HealthResponse,
    JobResponse,
    ProcessRequest,
    ProjectCreateUrl,
    ProjectResponse,
    UsageResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)


def _http_error(e: ClipperError) -> HTTPException:
    """Map a domain error to its HTTP status; diagnostics stay server-side."""
    if e.diagnostics:
        logger.debug(f"{type(e).__name__} diagnostics: {e.diagnostics}")
    return HTTPException(status_code=e.status_code, detail=e.message)


# =============================================================================
# Health & System
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Check API health and dependencies."""
    ffmpeg_ok = check_ffmpeg_available()
    ffprobe_ok = check_ffprobe_available()
    ytdlp_ok = check_ytdlp_available()
    acquisition = await AcquisitionGateway().health()

    all_ok = ffmpeg_ok and ffprobe_ok and acquisition.get("healthy", False)

    message = None
    if not all_ok:
        missing = []
        if not ffmpeg_ok:
            missing.append("ffmpeg")
        if not ffprobe_ok:
            missing.append("ffprobe")
        if not acquisition.get("healthy", False):
            missing.append(f"acquisition backend ({acquisition.get('backend')})")
        message = f"Unavailable: {', '.join(missing)}"

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        ffmpeg_available=ffmpeg_ok,
        ffprobe_available=ffprobe_ok,
        ytdlp_available=ytdlp_ok,
        acquisition=acquisition,
        message=message,
    )


@router.get("/probe")
async def probe_url(url: str = Query(..., description="Public video URL")):
    """Fetch a video's metadata without downloading it."""
    try:
        metadata = await AcquisitionGateway().probe(url)
    except ClipperError as e:
        raise _http_error(e)
    return asdict(metadata)


# =============================================================================
# Projects
# =============================================================================

@router.post("/projects", response_model=ProjectResponse)
async def create_project_url(data: ProjectCreateUrl, db: AsyncSession = Depends(get_db)):
    """Create a project from a public video URL."""
    service = ProjectService(db)
    try:
        project = await service.create_from_url(data.account_id, data.url, data.name)
    except ClipperError as e:
        raise _http_error(e)
    return await _project_to_response(project, service)


@router.post("/projects/upload", response_model=ProjectResponse)
async def create_project_upload(
    file: UploadFile = File(...),
    account_id: str = Query(..., min_length=1),
    name: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Create a project by uploading a video file."""
    filename = Path(file.filename or "upload.mp4").name
    temp_path = settings.scratch_dir / f"upload-{uuid.uuid4().hex}{Path(filename).suffix}"

    try:
        with open(temp_path, "wb") as f:
            shutil.copyfileobj(file.file, f)

        service = ProjectService(db)
        project = await service.create_from_upload(account_id, temp_path, name or Path(filename).stem)
        return await _project_to_response(project, service)

    except ClipperError as e:
        raise _http_error(e)
    finally:
        if temp_path.exists():
            temp_path.unlink()


@router.get("/projects", response_model=List[ProjectResponse])
async def list_projects(
    account_id: Optional[str] = Query(None),
    saved: Optional[bool] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """List projects, optionally for one account or only saved ones."""
    service = ProjectService(db)
    projects = await service.list_projects(account_id=account_id, saved=saved)
    return [await _project_to_response(p, service) for p in projects]


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: int, db: AsyncSession = Depends(get_db)):
    """Get a project by ID."""
    service = ProjectService(db)
    project = await service.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return await _project_to_response(project, service)


@router.post("/projects/{project_id}/save", response_model=ProjectResponse)
async def save_project(project_id: int, db: AsyncSession = Depends(get_db)):
    """Exempt a project from automatic deletion."""
    service = ProjectService(db)
    try:
        project = await service.save_project(project_id)
    except ClipperError as e:
        raise _http_error(e)
    return await _project_to_response(project, service)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a project and its files."""
    service = ProjectService(db)
    if not await service.delete_project(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"status": "deleted"}


@router.post("/projects/{project_id}/process", response_model=JobResponse)
async def start_processing(
    project_id: int,
    data: Optional[ProcessRequest] = None,
    db: AsyncSession = Depends(get_db)
):
    """Check the account's quota and start the clip pipeline in the background."""
    data = data or ProcessRequest()
    service = ProjectService(db)
    try:
        project = await service.require_project(project_id)
        await UsageService(db).ensure_can_process(project.account_id, data.plan)

        overrides = {
            key: value
            for key, value in (
                ("min_duration", data.min_duration),
                ("max_duration", data.max_duration),
                ("max_clips", data.max_clips),
                ("min_score", data.min_score),
            )
            if value is not None
        }
        job = await service.start_process_job(
            project_id,
            platforms=data.platforms,
            captions=data.captions,
            caption_position=data.caption_position,
            extract_audio=data.extract_audio,
            language=data.language,
            quality=data.quality,
            video_type=data.video_type,
            options=_analysis_options(overrides),
        )
    except ClipperError as e:
        raise _http_error(e)
    return _job_to_response(job)


def _analysis_options(overrides: dict) -> Optional[dict]:
    if not overrides:
        return None
    options = {
        "min_duration": settings.min_clip_seconds,
        "max_duration": settings.max_clip_seconds,
        "max_clips": settings.max_clips,
        "min_score": settings.min_score,
    }
    options.update(overrides)
    return options


# =============================================================================
# Clips
# =============================================================================

@router.get("/projects/{project_id}/clips", response_model=List[ClipResponse])
async def list_clips(project_id: int, db: AsyncSession = Depends(get_db)):
    """List a project's ranked clips with their rendered assets."""
    service = ProjectService(db)
    try:
        project = await service.get_project_with_clips(project_id)
    except NotFoundError as e:
        raise _http_error(e)
    clips = sorted(project.clips, key=lambda c: c.rank)
    return [ClipResponse.model_validate(c) for c in clips]


@router.get("/clips/{clip_id}/captions.vtt")
async def get_clip_captions(
    clip_id: int,
    position: Optional[str] = Query(None, description="'top', 'center' or 'bottom'"),
    db: AsyncSession = Depends(get_db)
):
    """Serve a clip's captions as WebVTT."""
    clip = await db.get(Clip, clip_id)
    if not clip:
        raise HTTPException(status_code=404, detail="Clip not found")
    project = await db.get(Project, clip.project_id)
    transcript = Transcript.from_dict(project.transcript or {})

    track = format_clip_captions(
        transcript.segments,
        clip.start_time,
        clip.end_time,
        max_line_length=settings.caption_max_line_length,
        position=position or settings.caption_position,
        gap_fill_seconds=settings.caption_gap_fill_seconds,
        title=clip.title,
    )
    return Response(content=render_webvtt(track, position), media_type=WEBVTT_MIME_TYPE)


# =============================================================================
# Usage
# =============================================================================

@router.get("/accounts/{account_id}/usage", response_model=UsageResponse)
async def get_usage(
    account_id: str,
    plan: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """Current-month usage against the plan's limits."""
    check = await UsageService(db).check_limits(account_id, plan)
    return UsageResponse(**check.to_dict())


@router.get("/usage/{year}/{month}")
async def get_monthly_stats(year: int, month: int, db: AsyncSession = Depends(get_db)):
    """Usage totals and averages across all accounts for one month."""
    if not 1 <= month <= 12:
        raise HTTPException(status_code=400, detail="Month must be between 1 and 12")
    return await UsageService(db).monthly_stats(year, month)


# =============================================================================
# Jobs & Maintenance
# =============================================================================

@router.get("/jobs/{job_id}", response_model=JobResponse)
async def get_job(job_id: int, db: AsyncSession = Depends(get_db)):
    """Get job status."""
    job = await db.get(Job, job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_to_response(job)


@router.post("/maintenance/cleanup", response_model=JobResponse)
async def start_cleanup(db: AsyncSession = Depends(get_db)):
    """Delete unsaved projects past their retention deadline."""
    job = await ProjectService(db).start_cleanup_job()
    return _job_to_response(job)


# =============================================================================
# Helpers
# =============================================================================

async def _project_to_response(project: Project, service: ProjectService) -> ProjectResponse:
    """Convert project model to response with clip count."""
    return ProjectResponse(
        id=project.id,
        account_id=project.account_id,
        name=project.name,
        created_at=project.created_at,
        updated_at=project.updated_at,
        source_type=project.source_type.value,
        source_url=project.source_url,
        platform=project.platform,
        duration=project.duration,
        width=project.width,
        height=project.height,
        fps=project.fps,
        video_codec=project.video_codec,
        audio_codec=project.audio_codec,
        status=project.status.value,
        error_message=project.error_message,
        processing_started=project.processing_started,
        processing_completed=project.processing_completed,
        saved=project.saved,
        saved_at=project.saved_at,
        retention_deadline=project.retention_deadline,
        clip_count=await service.count_clips(project.id),
    )


def _job_to_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        project_id=job.project_id,
        job_type=job.job_type.value,
        status=job.status.value,
        progress=job.progress,
        message=job.message,
        result=job.result,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )
