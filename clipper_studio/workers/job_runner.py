"""Background job runner using asyncio."""
import asyncio
import json
import logging
import traceback
from typing import Callable, Dict, Optional

from clipper_studio.db.database import async_session_maker, utcnow
from clipper_studio.errors import ClipperError
from clipper_studio.models.job import Job, JobStatus

logger = logging.getLogger(__name__)


class JobRunner:
    """Async background job runner."""

    def __init__(self, session_maker=None):
        self.session_maker = session_maker or async_session_maker
        self._running_jobs: Dict[int, asyncio.Task] = {}
        self._cancel_events: Dict[int, asyncio.Event] = {}
        self._job_handlers: Dict[str, Callable] = {}

    def register_handler(self, job_type: str, handler: Callable):
        """Register a handler for a job type."""
        self._job_handlers[job_type] = handler

    async def start_job(
        self,
        job_id: int,
        job_type: str,
        **kwargs
    ) -> bool:
        """
        Start a background job.

        Args:
            job_id: Database ID of the job
            job_type: Type of job to run
            **kwargs: Arguments to pass to the job handler

        Returns:
            True if job started successfully
        """
        if job_id in self._running_jobs:
            logger.warning(f"Job {job_id} is already running")
            return False

        handler = self._job_handlers.get(job_type)
        if not handler:
            logger.error(f"No handler registered for job type: {job_type}")
            return False

        cancel_event = asyncio.Event()
        self._cancel_events[job_id] = cancel_event
        task = asyncio.create_task(
            self._run_job(job_id, handler, cancel_event=cancel_event, **kwargs)
        )
        self._running_jobs[job_id] = task

        return True

    async def _set_status(self, job_id: int, status: JobStatus, message: str, **fields):
        async with self.session_maker() as session:
            job = await session.get(Job, job_id)
            if job:
                job.status = status
                job.message = message
                for key, value in fields.items():
                    setattr(job, key, value)
                await session.commit()

    async def _run_job(
        self,
        job_id: int,
        handler: Callable,
        **kwargs
    ):
        """Run a job with error handling and status updates."""
        try:
            async with self.session_maker() as session:
                job = await session.get(Job, job_id)
                if not job:
                    logger.error(f"Job {job_id} not found")
                    return

                job.status = JobStatus.RUNNING
                job.started_at = utcnow()
                job.message = "Starting..."
                await session.commit()

            async def update_progress(progress: float, message: Optional[str] = None):
                async with self.session_maker() as session:
                    job = await session.get(Job, job_id)
                    if job:
                        job.progress = min(100, max(0, progress))
                        if message:
                            job.message = message
                        await session.commit()

            result = await handler(
                job_id=job_id,
                progress_callback=update_progress,
                **kwargs
            )

            await self._set_status(
                job_id,
                JobStatus.COMPLETED,
                "Completed successfully",
                progress=100,
                completed_at=utcnow(),
                result=json.dumps(result) if isinstance(result, (dict, list)) else (str(result) if result else None),
            )
            logger.info(f"Job {job_id} completed successfully")

        except asyncio.CancelledError:
            await asyncio.shield(
                self._set_status(job_id, JobStatus.CANCELLED, "Job cancelled", completed_at=utcnow())
            )
            logger.info(f"Job {job_id} was cancelled")

        except Exception as e:
            error_msg = e.message if isinstance(e, ClipperError) else str(e)
            error_trace = traceback.format_exc()
            logger.error(f"Job {job_id} failed: {error_msg}\n{error_trace}")
            await self._set_status(
                job_id,
                JobStatus.FAILED,
                f"Failed: {error_msg}",
                error=error_trace,
                completed_at=utcnow(),
            )

        finally:
            self._running_jobs.pop(job_id, None)
            self._cancel_events.pop(job_id, None)

    async def cancel_job(self, job_id: int) -> bool:
        """Cancel a running job."""
        task = self._running_jobs.get(job_id)
        if task:
            event = self._cancel_events.get(job_id)
            if event:
                event.set()
            task.cancel()
            return True
        return False

    def is_job_running(self, job_id: int) -> bool:
        """Check if a job is currently running."""
        return job_id in self._running_jobs

    async def wait_for(self, job_id: int):
        """Wait until a running job has finished."""
        task = self._running_jobs.get(job_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self):
        """Cancel all running jobs."""
        for job_id in list(self._running_jobs):
            await self.cancel_job(job_id)

        if self._running_jobs:
            await asyncio.gather(
                *self._running_jobs.values(),
                return_exceptions=True
            )

        self._running_jobs.clear()
        self._cancel_events.clear()


# Global job runner instance
job_runner = JobRunner()
