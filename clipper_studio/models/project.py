"""Project model."""
import enum
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from clipper_studio.db.database import Base, utcnow


class SourceType(str, enum.Enum):
    """Source type enumeration."""
    URL = "url"
    UPLOAD = "upload"


class ProjectStatus(str, enum.Enum):
    """Project status enumeration."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = (ProjectStatus.COMPLETED, ProjectStatus.FAILED)


class Project(Base):
    """A source video moving through the clip pipeline.

    Projects are ephemeral by default: ``retention_deadline`` is set at
    creation and only ``save_permanently`` may clear it.
    """

    __tablename__ = "projects"

    id = Column(Integer, primary_key=True, index=True)
    account_id = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Source information
    source_type = Column(Enum(SourceType), nullable=False)
    source_url = Column(String(2048), nullable=True)
    source_path = Column(String(4096), nullable=True)
    platform = Column(String(32), nullable=True)

    # Video metadata
    duration = Column(Float, nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    fps = Column(Float, nullable=True)
    video_codec = Column(String(64), nullable=True)
    audio_codec = Column(String(64), nullable=True)
    container = Column(String(64), nullable=True)

    # Transcript as {language, full_text, duration, segments: [{start, end, text}]}
    transcript = Column(JSON, nullable=True)

    # Status
    status = Column(Enum(ProjectStatus), default=ProjectStatus.PROCESSING, nullable=False)
    error_message = Column(String(1024), nullable=True)
    error_detail = Column(Text, nullable=True)
    processing_started = Column(DateTime, nullable=True)
    processing_completed = Column(DateTime, nullable=True)

    # Retention
    saved = Column(Boolean, default=False, nullable=False)
    saved_at = Column(DateTime, nullable=True)
    retention_deadline = Column(DateTime, nullable=True, index=True)

    # Relationships
    clips = relationship("Clip", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)
    jobs = relationship("Job", back_populates="project", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Project(id={self.id}, name='{self.name}', status={self.status})>"

    @property
    def project_dir(self):
        """Get the project directory path."""
        from clipper_studio.config import settings
        return settings.projects_dir / str(self.id)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def start_processing(self, now: Optional[datetime] = None):
        if self.processing_started is None:
            self.processing_started = now or utcnow()

    def mark_completed(self, now: Optional[datetime] = None) -> bool:
        """Move to ``completed``. Returns False if already terminal."""
        if self.is_terminal:
            return False
        self.status = ProjectStatus.COMPLETED
        if self.processing_completed is None:
            self.processing_completed = now or utcnow()
        return True

    def mark_failed(
        self,
        message: str,
        detail: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move to ``failed`` keeping the short message visible and the detail internal."""
        if self.is_terminal:
            return False
        self.status = ProjectStatus.FAILED
        self.error_message = message[:1024]
        self.error_detail = detail
        if self.processing_completed is None:
            self.processing_completed = now or utcnow()
        return True

    def save_permanently(self, now: Optional[datetime] = None):
        """Exempt the project from automatic deletion.

        This is the only place ``saved`` becomes true, and it always clears
        the retention deadline in the same step.
        """
        if not self.saved:
            self.saved = True
            self.saved_at = now or utcnow()
        self.retention_deadline = None

    @staticmethod
    def deadline_from(created: datetime, retention_days: int) -> datetime:
        return created + timedelta(days=retention_days)
