"""Application configuration."""
from pathlib import Path
from typing import Literal
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # App settings
    app_name: str = "Clipper Studio"
    debug: bool = False

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database
    database_url: str = "sqlite+aiosqlite:///./data/clipper_studio.db"

    # Data directories
    data_dir: Path = Path("./data")
    projects_dir: Path = Path("./data/projects")
    scratch_dir: Path = Path("./data/scratch")

    # External tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ytdlp_path: str = "yt-dlp"
    download_timeout_seconds: float = 1800.0
    ffmpeg_timeout_seconds: float = 600.0
    probe_timeout_seconds: float = 60.0

    # Acquisition
    acquisition_backend: Literal["local", "remote"] = "local"
    remote_worker_url: str = "http://localhost:8080"
    remote_worker_secret: str = ""
    remote_worker_timeout_seconds: float = 900.0
    download_quality: str = "best[height<=1080]"
    restrict_platforms: bool = False
    robust_download_platforms: list[str] = ["rumble"]

    # Transcription (OpenAI-compatible /audio/transcriptions endpoint)
    transcription_url: str = "https://api.openai.com/v1/audio/transcriptions"
    transcription_api_key: str = ""
    transcription_model: str = "whisper-1"
    transcription_timeout_seconds: float = 300.0
    transcription_max_retries: int = 3
    transcription_backoff_seconds: float = 2.0
    transcription_max_upload_mb: float = 25.0
    transcription_chunk_seconds: float = 600.0

    # Content analysis
    analysis_strategy: Literal["transcript", "frames"] = "transcript"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_api_key: str = ""
    llm_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 180.0
    llm_temperature: float = 0.7
    llm_max_tokens: int = 4000
    llm_max_transcript_tokens: int = 100_000
    llm_chunk_seconds: float = 1800.0
    llm_chunk_overlap_seconds: float = 600.0
    vision_url: str = ""
    vision_api_key: str = ""
    vision_timeout_seconds: float = 60.0
    frame_sample_count: int = 12
    frame_window_seconds: float = 30.0
    frame_min_score: float = 30.0

    min_clip_seconds: float = 15.0
    max_clip_seconds: float = 60.0
    max_clips: int = 10
    min_score: float = 60.0

    # Materialization
    default_platform: str = "vertical"
    materialize_concurrency: int = 3
    materialize_retries: int = 2
    export_video_codec: str = "libx264"
    export_video_preset: str = "medium"
    export_video_crf: int = 23
    export_audio_codec: str = "aac"
    export_audio_bitrate: str = "128k"
    thumbnail_offset_seconds: float = 1.0
    thumbnail_width: int = 360

    # Captions
    caption_max_line_length: int = 40
    caption_position: Literal["top", "center", "bottom"] = "bottom"
    caption_gap_fill_seconds: float = 2.0

    # Retention
    retention_days: int = 7


settings = Settings()

# Ensure directories exist
settings.data_dir.mkdir(parents=True, exist_ok=True)
settings.projects_dir.mkdir(parents=True, exist_ok=True)
settings.scratch_dir.mkdir(parents=True, exist_ok=True)
