"""Project service layer."""
import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from clipper_studio.config import settings
from clipper_studio.db.database import utcnow
from clipper_studio.errors import NotFoundError, ValidationError
from clipper_studio.models.clip import AssetStatus, Clip, ClipAsset
from clipper_studio.models.job import Job, JobStatus, JobType
from clipper_studio.models.project import Project, ProjectStatus, SourceType
from clipper_studio.pipeline.types import ClipCandidate, MaterializedClip, Transcript
from clipper_studio.services.acquisition import SourceVideo, check_source_url
from clipper_studio.workers.job_runner import job_runner

logger = logging.getLogger(__name__)


class ProjectService:
    """Service for project lifecycle and retention."""

    def __init__(self, db: AsyncSession, retention_days: Optional[int] = None):
        self.db = db
        self.retention_days = settings.retention_days if retention_days is None else retention_days

    async def create_project(
        self,
        account_id: str,
        name: str,
        source_type: SourceType,
        source_url: Optional[str] = None,
        source_path: Optional[str] = None,
        platform: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Project:
        """Create a project in ``processing`` with a retention deadline."""
        now = now or utcnow()
        project = Project(
            account_id=account_id,
            name=name,
            source_type=source_type,
            source_url=source_url,
            source_path=source_path,
            platform=platform,
            status=ProjectStatus.PROCESSING,
            saved=False,
            created_at=now,
            updated_at=now,
            retention_deadline=Project.deadline_from(now, self.retention_days),
        )
        self.db.add(project)
        await self.db.commit()
        await self.db.refresh(project)

        project.project_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Created project {project.id} for account {account_id}")
        return project

    async def create_from_url(
        self,
        account_id: str,
        url: str,
        name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Project:
        platform = check_source_url(url)
        return await self.create_project(
            account_id,
            name or url,
            SourceType.URL,
            source_url=url,
            platform=platform,
            now=now,
        )

    async def create_from_upload(
        self,
        account_id: str,
        file_path: str | Path,
        name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Project:
        """Create a project and move the uploaded file into its directory."""
        file_path = Path(file_path)
        if not file_path.exists():
            raise ValidationError("Uploaded file not found")
        project = await self.create_project(
            account_id,
            name or file_path.stem,
            SourceType.UPLOAD,
            platform="upload",
            now=now,
        )
        dest_path = project.project_dir / f"source{file_path.suffix}"
        shutil.move(str(file_path), dest_path)
        project.source_path = str(dest_path)
        await self.db.commit()
        return project

    async def get_project(self, project_id: int) -> Optional[Project]:
        """Get a project by ID."""
        return await self.db.get(Project, project_id)

    async def require_project(self, project_id: int) -> Project:
        project = await self.get_project(project_id)
        if not project:
            raise NotFoundError("Project not found")
        return project

    async def get_project_with_clips(self, project_id: int) -> Project:
        result = await self.db.execute(
            select(Project)
            .where(Project.id == project_id)
            .options(selectinload(Project.clips).selectinload(Clip.assets))
        )
        project = result.scalar_one_or_none()
        if not project:
            raise NotFoundError("Project not found")
        return project

    async def list_projects(
        self,
        account_id: Optional[str] = None,
        saved: Optional[bool] = None,
    ) -> List[Project]:
        query = select(Project).order_by(Project.created_at.desc())
        if account_id is not None:
            query = query.where(Project.account_id == account_id)
        if saved is not None:
            query = query.where(Project.saved == saved)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_clips(self, project_id: int) -> int:
        result = await self.db.execute(
            select(func.count(Clip.id)).where(Clip.project_id == project_id)
        )
        return result.scalar() or 0

    async def save_project(self, project_id: int, now: Optional[datetime] = None) -> Project:
        """Exempt a project from automatic deletion. Safe to call repeatedly."""
        project = await self.require_project(project_id)
        project.save_permanently(now)
        await self.db.commit()
        await self.db.refresh(project)
        return project

    async def start_processing(self, project_id: int, now: Optional[datetime] = None) -> Project:
        project = await self.require_project(project_id)
        project.start_processing(now)
        await self.db.commit()
        return project

    async def mark_completed(self, project_id: int, now: Optional[datetime] = None) -> Project:
        project = await self.require_project(project_id)
        if project.mark_completed(now):
            logger.info(f"Project {project_id} completed")
        await self.db.commit()
        return project

    async def mark_failed(
        self,
        project_id: int,
        message: str,
        detail: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Project:
        project = await self.require_project(project_id)
        if project.mark_failed(message, detail, now):
            logger.warning(f"Project {project_id} failed: {message}")
        await self.db.commit()
        return project

    async def record_source(self, project_id: int, source: SourceVideo) -> Project:
        project = await self.require_project(project_id)
        project.source_path = str(source.file_path)
        project.duration = source.duration
        project.width = source.width
        project.height = source.height
        project.fps = source.fps
        project.video_codec = source.video_codec
        project.audio_codec = source.audio_codec
        project.container = source.container
        if source.platform and source.origin == "url":
            project.platform = source.platform
        if source.metadata and project.name == project.source_url:
            project.name = source.metadata.title[:255]
        await self.db.commit()
        return project

    async def record_transcript(self, project_id: int, transcript: Transcript) -> Project:
        project = await self.require_project(project_id)
        project.transcript = transcript.to_dict()
        await self.db.commit()
        return project

    async def record_candidates(self, project_id: int, candidates: Sequence[ClipCandidate]) -> List[Clip]:
        clips = [
            Clip(
                project_id=project_id,
                start_time=c.start_time,
                end_time=c.end_time,
                duration=c.duration,
                score=c.score,
                rank=rank,
                title=c.title,
                rationale=c.rationale,
                engagement_type=c.engagement_type,
                content_tags=list(c.content_tags),
                has_setup=c.has_setup,
                has_payoff=c.has_payoff,
            )
            for rank, c in enumerate(candidates)
        ]
        self.db.add_all(clips)
        await self.db.commit()
        return clips

    async def record_asset(self, clip_id: int, result: MaterializedClip) -> ClipAsset:
        asset = ClipAsset(
            clip_id=clip_id,
            platform=result.platform,
            status=AssetStatus.READY if result.ok else AssetStatus.FAILED,
            file_path=result.file_path,
            thumbnail_path=result.thumbnail_path,
            caption_path=result.caption_path,
            audio_path=result.audio_path,
            size_bytes=result.size_bytes,
            exceeds_size_limit=result.exceeds_size_limit,
            encode_params=result.encode_params or None,
            attempts=result.attempts,
            error_message=result.error,
            error_detail=result.error_detail,
        )
        self.db.add(asset)
        await self.db.commit()
        return asset

    async def find_expired(self, now: Optional[datetime] = None) -> List[Project]:
        """Unsaved projects whose retention deadline has passed."""
        now = now or utcnow()
        result = await self.db.execute(
            select(Project).where(
                Project.saved.is_(False),
                Project.retention_deadline.is_not(None),
                Project.retention_deadline <= now,
            )
        )
        return list(result.scalars().all())

    async def delete_project(self, project_id: int) -> bool:
        """Delete a project and its files."""
        project = await self.get_project(project_id)
        if not project:
            return False

        project_dir = project.project_dir
        await self.db.delete(project)
        await self.db.commit()

        if project_dir.exists():
            shutil.rmtree(project_dir, ignore_errors=True)
        return True

    async def delete_expired(self, now: Optional[datetime] = None) -> List[int]:
        expired = await self.find_expired(now)
        deleted = []
        for project in expired:
            if await self.delete_project(project.id):
                deleted.append(project.id)
        if deleted:
            logger.info(f"Deleted {len(deleted)} expired projects")
        return deleted

    async def start_process_job(self, project_id: int, **options) -> Job:
        """
        Start the pipeline job for a project.

        Args:
            project_id: Project ID
            **options: Pipeline options forwarded to the ``process`` handler

        Returns:
            Created job
        """
        project = await self.require_project(project_id)
        if project.is_terminal:
            raise ValidationError(f"Project already {project.status.value}")
        if project.source_type == SourceType.UPLOAD and not project.source_path:
            raise ValidationError("No source video uploaded")

        running = await self.db.execute(
            select(Job).where(
                Job.project_id == project_id,
                Job.status.in_([JobStatus.PENDING, JobStatus.RUNNING]),
            )
        )
        if running.scalars().first():
            raise ValidationError("Project is already being processed")

        job = Job(project_id=project_id, job_type=JobType.PROCESS, status=JobStatus.PENDING)
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        await job_runner.start_job(job.id, JobType.PROCESS.value, project_id=project_id, **options)
        return job

    async def start_cleanup_job(self) -> Job:
        """Start a job that deletes expired projects."""
        job = Job(job_type=JobType.CLEANUP, status=JobStatus.PENDING)
        self.db.add(job)
        await self.db.commit()
        await self.db.refresh(job)

        await job_runner.start_job(job.id, JobType.CLEANUP.value)
        return job
