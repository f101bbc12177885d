"""FastAPI application factory."""

from __future__ import annotations

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from planguard import __version__
from planguard.config.logging import setup_logging
from planguard.config.settings import get_settings
from planguard.exceptions import PlanGuardError
from planguard.web.dependencies import get_db_engine
from planguard.web.health import check_health
from planguard.web.middleware import RequestIDMiddleware
from planguard.web.routes.billing import router as billing_router

logger = structlog.get_logger(__name__)


async def planguard_error_handler(request: Request, exc: PlanGuardError) -> JSONResponse:
    """Render domain errors as ``{"success": false, "error": ..., "message": ...}``."""
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.code, message=exc.message)
    else:
        logger.info("request_rejected", path=request.url.path, error=exc.code, status=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="planguard",
        description="Multi-tenant entitlements and subscription synchronization",
        version=__version__,
    )
    app.add_exception_handler(PlanGuardError, planguard_error_handler)  # type: ignore[arg-type]

    # Last added runs first
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-Request-ID", "X-Organization-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    @app.get("/api/health")
    async def health_check(engine: AsyncEngine = Depends(get_db_engine)) -> dict[str, object]:
        return await check_health(engine)

    app.include_router(billing_router)

    logger.info("app_created", billing_provider=settings.billing_provider)
    return app
