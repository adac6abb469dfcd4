"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request
from pydantic import BaseModel

from reminder_dispatch.api.rate_limits import RateLimits, limiter
from reminder_dispatch.dependencies import ReminderServiceDep, get_container


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    scheduled_count: int
    active_count: int
    uptime_seconds: float
    timestamp: str
    scheduler: dict[str, Any]


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    status: str
    checks: dict[str, str]


@router.get("/health", response_model=HealthResponse)
@limiter.limit(RateLimits.HEALTH)
async def health_check(request: Request, service: ReminderServiceDep) -> HealthResponse:
    """Report store sizes and scheduler state.

    Also runs one scheduler scan, so reminders whose polling tick was
    skipped while the host was suspended are dispatched now.
    """
    return HealthResponse(**await service.health())


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check() -> ReadinessResponse:
    """Check if the service is ready to accept traffic.

    Ready means the scheduler loop is running (or disabled by config).
    """
    container = get_container()
    checks = {
        "scheduler": container.scheduler.state.value,
        "retention": "running" if container.retention_scheduler.is_running else "stopped",
        "dispatcher": container.dispatcher.provider or "unknown",
    }

    scheduler_ok = (
        container.scheduler.is_running or not container.settings.scheduler.enabled
    )
    return ReadinessResponse(
        status="ready" if scheduler_ok else "not_ready",
        checks=checks,
    )


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Check if the service is alive.

    Simple check that the process is running and can respond.
    """
    return {"status": "alive"}
