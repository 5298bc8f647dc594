"""Main FastAPI application."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from curtailment_mining import __version__
from curtailment_mining.api.v1.router import api_router
from curtailment_mining.core.config import get_settings
from curtailment_mining.core.database import close_db, init_db
from curtailment_mining.core.exceptions import add_exception_handlers
from curtailment_mining.core.logging_config import configure_logging
from curtailment_mining.core.middleware import add_middleware

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting up application")
    await init_db()

    yield

    await close_db()
    logger.info("Shutting down application")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    if not settings.TESTING:
        configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="UK wind curtailment and Bitcoin mining potential API",
        version=__version__,
        openapi_url=f"{settings.API_V1_STR}/openapi.json" if settings.DEBUG else None,
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        # Tests create tables through fixtures
        lifespan=None if settings.TESTING else lifespan,
        redirect_slashes=False,
    )

    # Read-only API, open to any origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    add_middleware(app)
    add_exception_handlers(app)

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {"message": settings.PROJECT_NAME, "version": __version__, "status": "healthy"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint with database connectivity test."""
        from sqlalchemy import text

        from curtailment_mining.core.database import get_session_factory

        try:
            async with get_session_factory()() as db:
                await db.execute(text("SELECT 1"))

            return {
                "status": "healthy",
                "database": "connected",
            }
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "database": "error",
                "error": str(e),
            }

    return app


app = create_application()
