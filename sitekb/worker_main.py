"""Ingestion worker entrypoint, deployed as its own service behind the push subscription."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from sitekb.config import get_settings
from sitekb.core.logging import configure_logging
from sitekb.features.ingestion.router import router as ingestion_router

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info(f"Starting ingestion worker in {settings.app_env} mode")
    yield
    logger.info("Shutting down ingestion worker")


def create_worker_app() -> FastAPI:
    """Create the worker application."""
    configure_logging()

    app = FastAPI(
        title="Site Knowledge Base Worker",
        version=VERSION,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.include_router(ingestion_router)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": VERSION}

    return app


app = create_worker_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sitekb.worker_main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
    )
