"""Job handlers for different task types."""
import logging
from typing import Callable, List, Optional

from clipper_studio.db.database import async_session_maker
from clipper_studio.pipeline.runner import ClipPipeline, PipelineRequest
from clipper_studio.pipeline.types import AnalysisOptions
from clipper_studio.services.project_service import ProjectService

logger = logging.getLogger(__name__)


async def handle_process(
    job_id: int,
    project_id: int,
    progress_callback: Callable,
    platforms: Optional[List[str]] = None,
    captions: str = "attach",
    caption_position: Optional[str] = None,
    extract_audio: bool = False,
    language: Optional[str] = None,
    quality: Optional[str] = None,
    video_type: str = "general",
    options: Optional[dict] = None,
    cancel_event=None,
    pipeline: Optional[ClipPipeline] = None,
    **kwargs
) -> dict:
    """
    Run the full clip pipeline for a project.

    Args:
        job_id: Job ID
        project_id: Project ID
        progress_callback: Async callback for progress updates
        options: Overrides for the analysis limits (min_duration, max_duration,
            max_clips, min_score)

    Returns:
        Result dictionary with candidate and clip counts
    """
    logger.info(f"Job {job_id}: processing project {project_id}")
    request = PipelineRequest(project_id=project_id, captions=captions, extract_audio=extract_audio)
    if platforms:
        request.platforms = list(platforms)
    request.caption_position = caption_position
    request.language = language
    request.quality = quality
    request.video_type = video_type
    if options:
        request.options = AnalysisOptions(**options)

    pipeline = pipeline or ClipPipeline()
    result = await pipeline.run(request, progress_callback=progress_callback, cancel_event=cancel_event)
    return result.to_dict()


async def handle_cleanup(
    job_id: int,
    progress_callback: Callable,
    session_maker=None,
    **kwargs
) -> dict:
    """Delete unsaved projects whose retention deadline has passed."""
    await progress_callback(0, "Looking for expired projects...")
    async with (session_maker or async_session_maker)() as session:
        deleted = await ProjectService(session).delete_expired()
    logger.info(f"Job {job_id}: deleted {len(deleted)} expired projects")
    await progress_callback(100, f"Deleted {len(deleted)} expired projects")
    return {"deleted": deleted}
