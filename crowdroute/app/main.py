"""
FastAPI Application Entry Point.

This is the main application file for the CrowdRoute backend.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import DBAPIError
from crowdroute.app.core.config import settings
from crowdroute.app.api.v1.router import router as api_v1_router
from crowdroute.app.core.observability import ObservabilityMiddleware, configure_logging
from crowdroute.app.core.redis_client import ping_redis
from crowdroute.app.db.session import engine, Base, AsyncSessionLocal
from crowdroute.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    storage_exception_handler,
    generic_exception_handler
)
from crowdroute.app.services.submission_guard import cleanup_old_reports

# Import models to ensure they are registered with Base
from crowdroute.app.models.contributor import Contributor
from crowdroute.app.models.audit_log import AuditLog
from crowdroute.app.models.location import Location
from crowdroute.app.models.route import Route
from crowdroute.app.models.route_step import RouteStep
from crowdroute.app.models.fare_report import FareReport

configure_logging(settings.log_level)
logger = logging.getLogger(__name__)


async def retention_cleanup_loop():
    """Periodically deactivate fare reports past the retention horizon."""
    interval = settings.retention_cleanup_interval_hours * 3600
    while True:
        try:
            async with AsyncSessionLocal() as db:
                await cleanup_old_reports(db, settings.report_retention_days)
        except DBAPIError as exc:
            logger.error("Retention cleanup failed: %s", exc)
        except Exception:
            logger.exception("Retention cleanup crashed")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Starts the retention cleanup task when enabled.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    cleanup_task = None
    if settings.retention_cleanup_enabled:
        cleanup_task = asyncio.create_task(retention_cleanup_loop())
        logger.info("Retention cleanup scheduled every %sh", settings.retention_cleanup_interval_hours)
    yield
    if cleanup_task is not None:
        cleanup_task.cancel()
        with suppress(asyncio.CancelledError):
            await cleanup_task


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Crowdsourced route and fare aggregation for Nigerian public transport",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(DBAPIError, storage_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis is optional, so a failed ping degrades the status instead of failing it.
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "cache": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to the CrowdRoute API",
        "docs": "/docs",
        "health": "/health",
    }
