"""Dependency Injection for Reminder Dispatch.

Wires the stores, dispatcher, scheduler and services into one container and
exposes them as FastAPI dependencies. The stores are process-local, so every
component must share the same container.

Thread Safety:
    The container singleton uses threading.Lock() to prevent race conditions
    during concurrent initialization.

Usage:
    from reminder_dispatch.dependencies import ReminderServiceDep

    @router.get("/endpoint")
    async def handler(service: ReminderServiceDep):
        ...
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends

from reminder_dispatch.api.webhook_security import (
    WebhookSecurityConfig,
    WebhookSecurityManager,
)
from reminder_dispatch.config import Settings, get_settings
from reminder_dispatch.core.models import Clock, now_ms
from reminder_dispatch.services.reminders import ReminderService
from reminder_dispatch.services.response_handler import ResponseHandler
from reminder_dispatch.services.retention import (
    RetentionPolicy,
    RetentionScheduler,
    RetentionService,
)
from reminder_dispatch.services.scheduler import CallScheduler, SchedulerConfig
from reminder_dispatch.stores.base import CallStore, JobStore
from reminder_dispatch.stores.memory import InMemoryCallStore, InMemoryJobStore
from reminder_dispatch.telephony.base import CallDispatcher
from reminder_dispatch.telephony.factory import create_call_dispatcher


@dataclass
class Container:
    """All long-lived components of one process."""

    settings: Settings
    job_store: JobStore
    call_store: CallStore
    dispatcher: CallDispatcher
    scheduler: CallScheduler
    response_handler: ResponseHandler
    retention: RetentionService
    retention_scheduler: RetentionScheduler
    reminders: ReminderService
    webhook_security: WebhookSecurityManager


def build_container(
    settings: Settings,
    dispatcher: CallDispatcher | None = None,
    clock: Clock = now_ms,
) -> Container:
    """Build the component graph from settings.

    Args:
        settings: Application settings
        dispatcher: Override the configured call dispatcher (tests)
        clock: Epoch millisecond time source shared by all components
    """
    job_store = InMemoryJobStore(
        clock=clock,
        max_past_skew_ms=settings.schedule.max_past_skew_seconds * 1000,
    )
    call_store = InMemoryCallStore(clock=clock)
    dispatcher = dispatcher or create_call_dispatcher(settings)

    scheduler = CallScheduler(
        job_store,
        call_store,
        dispatcher,
        config=SchedulerConfig(
            poll_interval_seconds=settings.scheduler.poll_interval_seconds,
            error_backoff_seconds=settings.scheduler.error_backoff_seconds,
        ),
        clock=clock,
    )

    retention = RetentionService(
        job_store,
        call_store,
        RetentionPolicy.from_settings(settings.retention),
        clock=clock,
    )

    return Container(
        settings=settings,
        job_store=job_store,
        call_store=call_store,
        dispatcher=dispatcher,
        scheduler=scheduler,
        response_handler=ResponseHandler(
            job_store,
            call_store,
            clock=clock,
            snooze_minutes=settings.schedule.snooze_minutes,
            timezone=settings.schedule.timezone,
        ),
        retention=retention,
        retention_scheduler=RetentionScheduler(
            retention,
            interval_seconds=settings.retention.interval_seconds,
        ),
        reminders=ReminderService(
            job_store,
            call_store,
            scheduler,
            clock=clock,
            timezone_name=settings.schedule.timezone,
        ),
        webhook_security=WebhookSecurityManager(
            WebhookSecurityConfig(
                validate_signatures=settings.webhook_validate_signatures,
                twilio_auth_token=settings.twilio_auth_token or "",
                public_base_url=settings.telephony.twilio.base_url,
            )
        ),
    )


# =============================================================================
# Container Singleton
# =============================================================================

_container_lock = threading.Lock()
_container: Container | None = None


def get_container() -> Container:
    """Get the process container.

    Thread-safe via double-checked locking pattern.
    """
    global _container

    if _container is None:
        with _container_lock:
            if _container is None:
                _container = build_container(get_settings())

    return _container


def set_container(container: Container) -> None:
    """Install a prebuilt container (for testing)."""
    global _container

    with _container_lock:
        _container = container


def reset_dependencies() -> None:
    """Reset the cached container (for testing).

    Does not clean up resources, just clears references.
    """
    global _container

    with _container_lock:
        _container = None


# =============================================================================
# FastAPI Dependencies
# =============================================================================


def get_app_settings() -> Settings:
    return get_container().settings


def get_reminder_service() -> ReminderService:
    return get_container().reminders


def get_response_handler() -> ResponseHandler:
    return get_container().response_handler


def get_webhook_security() -> WebhookSecurityManager:
    return get_container().webhook_security


SettingsDep = Annotated[Settings, Depends(get_app_settings)]
ReminderServiceDep = Annotated[ReminderService, Depends(get_reminder_service)]
ResponseHandlerDep = Annotated[ResponseHandler, Depends(get_response_handler)]
WebhookSecurityDep = Annotated[WebhookSecurityManager, Depends(get_webhook_security)]
