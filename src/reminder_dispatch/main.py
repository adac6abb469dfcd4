"""FastAPI application entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from reminder_dispatch import __version__
from reminder_dispatch.api import health, reminders, webhooks
from reminder_dispatch.api.rate_limits import limiter
from reminder_dispatch.config import (
    get_settings,
    require_valid_settings,
    validate_production_settings,
)
from reminder_dispatch.core.exceptions import NotFoundError, ReminderDispatchError
from reminder_dispatch.dependencies import get_container
from reminder_dispatch.log_setup import get_logger, setup_logging


def reminder_dispatch_error_handler(request: Request, exc: ReminderDispatchError) -> JSONResponse:
    """Map domain errors to their HTTP status and structured body."""
    log = get_logger(__name__)
    if isinstance(exc, NotFoundError):
        log.debug("Not found", path=request.url.path, details=exc.details)
    elif exc.status_code >= 500:
        log.error("Request failed", path=request.url.path, error=str(exc))
    else:
        log.info("Request rejected", path=request.url.path, error=str(exc))

    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Handle rate limit exceeded errors."""
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "detail": str(exc.detail),
        },
    )


def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with structured response.

    Provides consistent error format across all HTTP errors.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": _status_code_to_error_type(exc.status_code),
            "message": str(exc.detail),
            "status_code": exc.status_code,
        },
    )


def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors with detailed field information."""
    errors = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors.append({
            "field": field or "request",
            "message": error["msg"],
            "type": error["type"],
        })

    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": errors,
        },
    )


def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions.

    Logs the error and returns a generic 500 response without exposing
    internal details in production.
    """
    log = get_logger(__name__)
    log.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
    )

    settings = get_settings()
    detail = str(exc) if settings.debug else "An internal error occurred"

    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": detail,
        },
    )


def _status_code_to_error_type(status_code: int) -> str:
    """Map HTTP status codes to error type strings."""
    error_types = {
        400: "bad_request",
        403: "forbidden",
        404: "not_found",
        405: "method_not_allowed",
        409: "conflict",
        422: "validation_error",
        429: "rate_limit_exceeded",
        500: "internal_error",
        502: "bad_gateway",
        503: "service_unavailable",
    }
    return error_types.get(status_code, "error")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    container = get_container()
    settings = container.settings
    log = get_logger(__name__)

    setup_logging(
        level=settings.log_level,
        json_output=settings.log_json,
        instance_id=settings.instance_id,
        environment=settings.environment,
    )

    log.info(
        "Starting Reminder Dispatch",
        version=__version__,
        environment=settings.environment,
        instance_id=settings.instance_id,
        dispatcher=container.dispatcher.provider,
    )

    for problem in validate_production_settings(settings):
        log.error("Configuration problem", problem=problem)

    if settings.scheduler.enabled:
        await container.scheduler.start()
        log.info("Call scheduler started")

    if settings.retention.enabled:
        await container.retention_scheduler.start()

    yield

    # Shutdown
    log.info("Shutting down Reminder Dispatch")
    await container.scheduler.stop()
    await container.retention_scheduler.stop()
    await container.dispatcher.close()
    log.info("Reminder Dispatch stopped")


def _find_audio_dir() -> Path | None:
    """Locate the directory holding the alert sound, if any."""
    possible_paths = [
        Path("/app/audio"),  # Production Docker
        Path.cwd() / "audio",
        Path(__file__).parent.parent.parent / "audio",  # Repository checkout
    ]
    for path in possible_paths:
        if path.exists() and path.is_dir():
            return path
    return None


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_container().settings

    app = FastAPI(
        title="Reminder Dispatch",
        description="Schedules and places reminder phone calls",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Rate limiting
    app.state.limiter = limiter

    # Exception handlers (order matters - most specific first)
    app.add_exception_handler(ReminderDispatchError, reminder_dispatch_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Cannot use wildcard origins with credentials, so debug mode lists
    # the common localhost origins explicitly
    cors_origins = (
        [
            "http://localhost:3000",
            "http://localhost:8081",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:8081",
        ]
        if settings.debug
        else []
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(reminders.router, prefix="/api/v1", tags=["Reminders"])
    app.include_router(webhooks.router, prefix="/api/v1", tags=["Webhooks"])

    log = get_logger(__name__)
    audio_dir = _find_audio_dir()
    if audio_dir:
        app.mount("/audio", StaticFiles(directory=str(audio_dir)), name="audio")
        log.info(f"Serving alert audio from {audio_dir}")
    else:
        log.warning("No audio directory found, alert sound will not be served")

    return app


def run() -> None:
    """Run the application with uvicorn.

    Refuses to start when production settings are incomplete.
    """
    import uvicorn

    settings = require_valid_settings()
    uvicorn.run(
        "reminder_dispatch.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
