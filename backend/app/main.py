"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.v1.router import api_router
from app.config import settings
from app.core.errors import (
    ConflictError,
    NotFoundError,
    StorageError,
    TimelineError,
    ValidationError,
)
from app.core.logging_middleware import RequestLoggingMiddleware
from app.models.base import async_session_maker
from obligations.jobs import build_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[TimelineError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    app.state.scheduler = None
    if settings.scheduler_enabled:
        app.state.scheduler = build_scheduler(async_session_maker, settings)
        app.state.scheduler.start()
    yield
    if app.state.scheduler is not None:
        app.state.scheduler.stop()


app = FastAPI(
    title=settings.app_name,
    description="Recurring obligation timelines for a practice-management backend",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# Middleware (order matters: outermost first)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(TimelineError)
async def timeline_error_handler(request: Request, exc: TimelineError) -> JSONResponse:
    status = next(
        (code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500
    )
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"detail": str(exc)})


# Include API routes
app.include_router(api_router, prefix=settings.api_v1_prefix)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy"}
