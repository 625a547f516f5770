"""FastAPI application entry point — wires the database, event bus and audit log.

Usage:
    python -m salonbook.main

Booking, queue and schedule operations live in ``salonbook.scheduling``;
this app only exposes a health check and renders scheduling errors.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from salonbook.audit import audit_on_event
from salonbook.config import settings
from salonbook.db.engine import db_lifespan
from salonbook.events import emit, start_event_system, stop_event_system, subscribe
from salonbook.scheduling.errors import SchedulingError
from salonbook.schemas.events import EventType, SystemEvent

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the pool, start the event bus, register the audit subscriber."""
    logger.info("Starting %s (env=%s)", settings.app_name, settings.environment)

    async with db_lifespan():
        logger.info("Database initialized")

        await start_event_system()
        subscribe(audit_on_event)
        logger.info("Audit logging subscriber registered")

        await emit(SystemEvent(event_type=EventType.SYSTEM_STARTUP, source_module="main"))
        try:
            yield
        finally:
            logger.info("Shutting down %s...", settings.app_name)
            await emit(SystemEvent(event_type=EventType.SYSTEM_SHUTDOWN, source_module="main"))
            await stop_event_system()

    logger.info("%s shutdown complete", settings.app_name)


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="salonbook API",
    description="Appointment scheduling core for multi-branch salons",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    """Render domain errors as ``{"success": false, "error": {...}}``."""
    if exc.status_code >= 500:
        logger.error("Scheduling error on %s: %s", request.url.path, exc.message)
    else:
        logger.info("Rejected %s %s: %s (%s)", request.method, request.url.path, exc.message, exc.code)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()})


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
        "app_name": settings.app_name,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "salonbook.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
