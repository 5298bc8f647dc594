"""Startup script for the FastAPI application.

    python scripts/start.py

Or run uvicorn directly:
    uvicorn curtailment_mining.main:app --reload
"""

import structlog
import uvicorn

from curtailment_mining.core.config import get_settings
from curtailment_mining.core.logging_config import configure_logging

logger = structlog.get_logger()


def main():
    """Main function to start the application."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, json_logs=settings.LOG_JSON)

    logger.info(
        "Starting Curtailment Mining Backend",
        host=settings.HOST,
        port=settings.PORT,
        debug=settings.DEBUG,
        reload=settings.RELOAD,
    )

    uvicorn.run(
        "curtailment_mining.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
