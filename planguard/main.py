"""planguard entrypoints."""

from __future__ import annotations

import asyncio

import structlog
import uvicorn

from planguard.config.logging import setup_logging
from planguard.config.settings import get_settings
from planguard.storage.database import init_db

logger = structlog.get_logger(__name__)


def cli() -> None:
    """Serve the API."""
    uvicorn.run("planguard.web.app:create_app", factory=True)


def init_db_cli() -> None:
    """Create the planguard tables in the configured database."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)
    asyncio.run(init_db())
    logger.info("database_initialized")


if __name__ == "__main__":
    cli()
