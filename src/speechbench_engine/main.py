"""SpeechBench Engine - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from speechbench_engine.api.v1.router import api_router
from speechbench_engine.core.config import settings
from speechbench_engine.core.database import close_db, init_db
from speechbench_engine.core.jobs import JobManager, JobStore
from speechbench_engine.services.batch_repository import BatchRepository

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    logger.info("Starting SpeechBench Engine v%s", settings.VERSION)

    await init_db()
    logger.info("Database initialized")

    # Batches cannot resume after a restart
    await BatchRepository().reset_interrupted()

    job_manager = JobManager.get_instance()

    yield

    logger.info("Shutting down SpeechBench Engine...")
    await job_manager.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SpeechBench Engine",
        description="TTS/ASR provider benchmarking backend",
        version=settings.VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.DEBUG else settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "jobs": {
                "volatile": len(JobStore.get_instance()),
                "running": JobManager.get_instance().running_count,
            },
        }

    # Include API router
    app.include_router(api_router, prefix="/v1")

    return app


# Create app instance
app = create_app()


def main():
    """Run the application."""
    import uvicorn

    uvicorn.run(
        "speechbench_engine.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info",
    )


if __name__ == "__main__":
    main()
