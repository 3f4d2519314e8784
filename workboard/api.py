"""
FastAPI application for Workboard.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import get_engine, get_session_factory, init_database
from .errors import WorkboardError
from .log_config import configure_logging
from .realtime import PresenceTracker, RealtimePublisher, build_transport
from .realtime.websocket import router as websocket_router
from .routes import router as api_router

# Initialize structured logging
logger = structlog.get_logger()

settings = get_settings()

STATUS_BY_ERROR_CODE: Dict[str, int] = {
    "unauthenticated": 401,
    "access_denied": 403,
    "not_found": 404,
    "conflict": 409,
    "validation_failed": 422,
    "timeout": 504,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("workboard_starting", environment=settings.environment)

    try:
        engine = get_engine()
        init_database(engine)
        app.state.session_factory = get_session_factory(engine)

        transport = build_transport(settings)
        publisher = RealtimePublisher(transport, max_queue_size=settings.realtime_queue_size)
        publisher.start()
        app.state.transport = transport
        app.state.publisher = publisher
        app.state.presence = PresenceTracker(publisher)
        logger.info("realtime_ready", transport=settings.realtime_transport)
    except Exception as e:
        logger.error("workboard_start_failed", error=str(e))
        raise

    yield

    logger.info("workboard_stopping")
    app.state.publisher.stop()
    logger.info("workboard_stopped")


app = FastAPI(
    title="Workboard",
    description="Multi-tenant project and task tracking core",
    version=importlib.metadata.version("workboard"),
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(websocket_router)


@app.exception_handler(WorkboardError)
async def workboard_error_handler(request: Request, exc: WorkboardError) -> JSONResponse:
    status_code = STATUS_BY_ERROR_CODE.get(exc.code, 400)
    if status_code >= 500:
        logger.warning("request_failed", path=request.url.path, error=exc.code)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": importlib.metadata.version("workboard")}


@app.get("/status", tags=["system"])
def get_system_status() -> Dict[str, Any]:
    """Report realtime publisher counters."""
    publisher = getattr(app.state, "publisher", None)
    if publisher is None:
        return {"realtime": {"status": "stopped"}}

    return {
        "realtime": {
            "status": "running" if publisher.is_running else "stopped",
            "transport": settings.realtime_transport,
            "pending": publisher.pending,
            "delivered": publisher.delivered,
            "failed": publisher.failed,
            "dropped": publisher.dropped,
        },
        "environment": settings.environment,
    }
