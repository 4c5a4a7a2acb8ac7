"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from clipper_studio.config import settings
from clipper_studio.db.database import init_db, close_db
from clipper_studio.api.routes import router
from clipper_studio.models.job import JobType
from clipper_studio.workers.job_runner import job_runner
from clipper_studio.workers.handlers import handle_cleanup, handle_process

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Starting Clipper Studio...")

    await init_db()
    logger.info("Database initialized")

    job_runner.register_handler(JobType.PROCESS.value, handle_process)
    job_runner.register_handler(JobType.CLEANUP.value, handle_cleanup)
    logger.info("Job handlers registered")

    yield

    logger.info("Shutting down Clipper Studio...")
    await job_runner.shutdown()
    await close_db()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Turns long-form videos into short, captioned clips",
    version="1.0.0",
    lifespan=lifespan
)

app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.app_name,
        "version": "1.0.0",
        "api": "/api",
        "docs": "/docs"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "clipper_studio.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug
    )
