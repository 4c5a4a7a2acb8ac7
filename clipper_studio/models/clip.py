"""Clip candidate and rendered asset models."""
import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship

from clipper_studio.db.database import Base, utcnow


class Clip(Base):
    """A scored time window accepted by the content analyzer."""

    __tablename__ = "clips"

    id = Column(Integer, primary_key=True, index=True)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)

    start_time = Column(Float, nullable=False)
    end_time = Column(Float, nullable=False)
    duration = Column(Float, nullable=False)
    score = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False, default=0)

    title = Column(String(255), nullable=True)
    rationale = Column(Text, nullable=True)
    engagement_type = Column(String(64), nullable=True)
    content_tags = Column(JSON, nullable=True)
    has_setup = Column(Boolean, nullable=True)
    has_payoff = Column(Boolean, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    project = relationship("Project", back_populates="clips")
    assets = relationship("ClipAsset", back_populates="clip", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<Clip(id={self.id}, {self.start_time:.2f}-{self.end_time:.2f}, score={self.score})>"


class AssetStatus(str, enum.Enum):
    """Rendered asset status."""
    READY = "ready"
    FAILED = "failed"


class ClipAsset(Base):
    """One rendered output for a (clip, platform) pair."""

    __tablename__ = "clip_assets"

    id = Column(Integer, primary_key=True, index=True)
    clip_id = Column(Integer, ForeignKey("clips.id", ondelete="CASCADE"), nullable=False)
    platform = Column(String(32), nullable=False)
    status = Column(Enum(AssetStatus), nullable=False)

    file_path = Column(String(4096), nullable=True)
    thumbnail_path = Column(String(4096), nullable=True)
    caption_path = Column(String(4096), nullable=True)
    audio_path = Column(String(4096), nullable=True)
    size_bytes = Column(Integer, nullable=True)
    exceeds_size_limit = Column(Boolean, default=False, nullable=False)
    encode_params = Column(JSON, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)

    error_message = Column(String(1024), nullable=True)
    error_detail = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    clip = relationship("Clip", back_populates="assets")

    def __repr__(self):
        return f"<ClipAsset(id={self.id}, clip_id={self.clip_id}, platform='{self.platform}', status={self.status})>"
