"""
Main FastAPI application.

WHY: This is the entry point for the billing service. It configures
middleware, routes, exception handlers and the in-process scheduler.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from seatsync.core.config import settings
from seatsync.core.exceptions import AppException
from seatsync.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from seatsync.middleware import RequestContextMiddleware
from seatsync.api import cron, seats, webhooks
from seatsync.services.scheduler import start_scheduler, shutdown_scheduler, get_scheduler_status

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Start and stop the background scheduler with the app.

    WHY: Disabled via SCHEDULER_ENABLED on deployments where an external
    cron calls the /cron endpoints, so the jobs never run twice.
    """
    if settings.SCHEDULER_ENABLED:
        await start_scheduler()
    else:
        logger.info("Scheduler disabled; relying on the cron endpoints")
    yield
    await shutdown_scheduler()


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern lets tests build an app with dependency overrides.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Seat and subscription consistency engine",
        version=settings.VERSION,
        docs_url=f"{settings.API_PREFIX}/docs",
        redoc_url=f"{settings.API_PREFIX}/redoc",
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )

    # WHY: One error format for cron runners, internal callers and webhooks
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Request ids feed the correlation ids in logs and alerts
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness plus scheduler state; no auth, no database."""
        return {
            "status": "healthy",
            "version": settings.VERSION,
            "environment": settings.ENVIRONMENT,
            "provider_configured": settings.provider_configured,
            "scheduler": get_scheduler_status(),
        }

    app.include_router(seats.router, prefix=settings.API_PREFIX)
    app.include_router(cron.router, prefix=settings.API_PREFIX)
    app.include_router(webhooks.router, prefix=settings.API_PREFIX)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # WHY: `python -m seatsync.main` for development; production runs
    # `uvicorn seatsync.main:app` directly.
    uvicorn.run(
        "seatsync.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
