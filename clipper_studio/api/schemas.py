"""Pydantic schemas for API requests and responses."""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Project Schemas
# =============================================================================

class ProjectCreateUrl(BaseModel):
    """Request to create a project from a video URL."""
    account_id: str = Field(..., min_length=1, description="Owning account")
    url: str = Field(..., description="Public video URL")
    name: Optional[str] = Field(None, description="Project name (taken from the video title if not provided)")


class ProjectResponse(BaseModel):
    """Project response."""
    id: int
    account_id: str
    name: str
    created_at: datetime
    updated_at: datetime
    source_type: str
    source_url: Optional[str]
    platform: Optional[str]
    duration: Optional[float]
    width: Optional[int]
    height: Optional[int]
    fps: Optional[float]
    video_codec: Optional[str]
    audio_codec: Optional[str]
    status: str
    error_message: Optional[str]
    processing_started: Optional[datetime]
    processing_completed: Optional[datetime]
    saved: bool
    saved_at: Optional[datetime]
    retention_deadline: Optional[datetime]
    clip_count: Optional[int] = None

    class Config:
        from_attributes = True


class ProcessRequest(BaseModel):
    """Options for a pipeline run."""
    plan: Optional[str] = Field(None, description="Subscription plan used for the quota check")
    platforms: List[str] = Field(default_factory=lambda: ["vertical"])
    captions: str = Field("attach", description="'none', 'attach' or 'burn'")
    caption_position: Optional[str] = Field(None, description="'top', 'center' or 'bottom'")
    extract_audio: bool = False
    language: Optional[str] = None
    quality: Optional[str] = None
    video_type: str = "general"
    min_duration: Optional[float] = Field(None, gt=0)
    max_duration: Optional[float] = Field(None, gt=0)
    max_clips: Optional[int] = Field(None, ge=1)
    min_score: Optional[float] = Field(None, ge=0, le=100)


# =============================================================================
# Clip Schemas
# =============================================================================

class ClipAssetResponse(BaseModel):
    """Rendered output of a clip for one platform."""
    id: int
    platform: str
    status: str
    file_path: Optional[str]
    thumbnail_path: Optional[str]
    caption_path: Optional[str]
    audio_path: Optional[str]
    size_bytes: Optional[int]
    exceeds_size_limit: bool
    encode_params: Optional[dict]
    attempts: int
    error_message: Optional[str]

    class Config:
        from_attributes = True


class ClipResponse(BaseModel):
    """Clip response."""
    id: int
    project_id: int
    start_time: float
    end_time: float
    duration: float
    score: float
    rank: int
    title: Optional[str]
    rationale: Optional[str]
    engagement_type: Optional[str]
    content_tags: Optional[List[str]]
    has_setup: Optional[bool]
    has_payoff: Optional[bool]
    created_at: datetime
    assets: List[ClipAssetResponse] = []

    class Config:
        from_attributes = True


# =============================================================================
# Usage Schemas
# =============================================================================

class UsageResponse(BaseModel):
    """Current-period usage with plan limits."""
    plan: str
    videos_exceeded: bool
    clips_exceeded: bool
    storage_exceeded: bool
    limits: Dict[str, Optional[float]]
    usage: Dict[str, float]


# =============================================================================
# Job Schemas
# =============================================================================

class JobResponse(BaseModel):
    """Job response."""
    id: int
    project_id: Optional[int]
    job_type: str
    status: str
    progress: float
    message: Optional[str]
    result: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


# =============================================================================
# System Schemas
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    ffmpeg_available: bool
    ffprobe_available: bool
    ytdlp_available: bool
    acquisition: dict
    message: Optional[str] = None
