"""Job model for tracking background tasks."""
import enum
from sqlalchemy import Column, Integer, String, DateTime, Enum, Float, ForeignKey, Text
from sqlalchemy.orm import relationship

from clipper_studio.db.database import Base, utcnow


class JobType(str, enum.Enum):
    """Job type enumeration."""
    PROCESS = "process"
    CLEANUP = "cleanup"


class JobStatus(str, enum.Enum):
    """Job status enumeration."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Job(Base):
    """Job model for tracking background tasks."""

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    # Cleanup jobs are not tied to a project
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=True)

    job_type = Column(Enum(JobType), nullable=False)
    status = Column(Enum(JobStatus), default=JobStatus.PENDING, nullable=False)

    # Progress tracking
    progress = Column(Float, default=0.0, nullable=False)  # 0.0 to 100.0
    message = Column(String(1024), nullable=True)

    # Results/errors
    result = Column(Text, nullable=True)  # JSON string for results
    error = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    project = relationship("Project", back_populates="jobs")

    def __repr__(self):
        return f"<Job(id={self.id}, type={self.job_type}, status={self.status})>"
