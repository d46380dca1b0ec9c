"""FastAPI application entrypoint."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from sitekb.config import get_settings
from sitekb.core.logging import configure_logging
from sitekb.core.rate_limiter import limiter
from sitekb.features.chat.router import router as chat_router
from sitekb.features.documents.router import router as documents_router
from sitekb.features.housekeeping.router import router as housekeeping_router
from sitekb.features.resources.router import router as resources_router

VERSION = "0.1.0"

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info(f"Starting Site Knowledge Base API in {settings.app_env} mode")
    yield
    logger.info("Shutting down Site Knowledge Base API")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    configure_logging()
    settings = get_settings()

    app = FastAPI(
        title="Site Knowledge Base",
        description="Website and document knowledge base for tenant chatbots",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.app_debug else None,
        redoc_url="/redoc" if settings.app_debug else None,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(resources_router)
    app.include_router(documents_router)
    app.include_router(chat_router)
    app.include_router(housekeeping_router)

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "version": VERSION}

    # API info endpoint
    @app.get("/")
    async def root():
        return {
            "name": "Site Knowledge Base",
            "version": VERSION,
            "docs": "/docs" if settings.app_debug else None,
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sitekb.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.app_debug,
    )
