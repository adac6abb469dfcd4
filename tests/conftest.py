"""Pytest configuration and fixtures for Reminder Dispatch tests."""

from __future__ import annotations

import os
from typing import Callable

import pytest

# Set test environment
os.environ["RD_ENV"] = "test"

from reminder_dispatch.config import (  # noqa: E402
    ScheduleSettings,
    SchedulerSettings,
    RetentionSettings,
    Settings,
    TelephonySettings,
    WebhookSettings,
)
from reminder_dispatch.core.models import MINUTE_MS, ScheduledCall  # noqa: E402
from reminder_dispatch.services.response_handler import ResponseHandler  # noqa: E402
from reminder_dispatch.services.scheduler import CallScheduler, SchedulerConfig  # noqa: E402
from reminder_dispatch.stores.memory import InMemoryCallStore, InMemoryJobStore  # noqa: E402
from reminder_dispatch.telephony.base import MockCallDispatcher  # noqa: E402

# 2023-11-14 22:13:20 UTC
START_MS = 1_700_000_000_000


class FakeClock:
    """Manually advanced epoch millisecond clock."""

    def __init__(self, start: int = START_MS) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now

    def advance_minutes(self, minutes: float) -> int:
        return self.advance(int(minutes * MINUTE_MS))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def job_store(clock) -> InMemoryJobStore:
    return InMemoryJobStore(clock=clock)


@pytest.fixture
def call_store(clock) -> InMemoryCallStore:
    return InMemoryCallStore(clock=clock)


@pytest.fixture
def dispatcher() -> MockCallDispatcher:
    return MockCallDispatcher()


@pytest.fixture
def scheduler(job_store, call_store, dispatcher, clock) -> CallScheduler:
    return CallScheduler(
        job_store,
        call_store,
        dispatcher,
        config=SchedulerConfig(poll_interval_seconds=0.05, error_backoff_seconds=0.01),
        clock=clock,
    )


@pytest.fixture
def response_handler(job_store, call_store, clock) -> ResponseHandler:
    return ResponseHandler(job_store, call_store, clock=clock, snooze_minutes=5)


@pytest.fixture
def make_job(clock) -> Callable[..., ScheduledCall]:
    """Factory for scheduled calls relative to the fake clock."""
    counter = {"n": 0}

    def _make(
        job_id: str | None = None,
        in_minutes: float = 10,
        destination: str = "+15551234567",
        title: str = "Take medicine",
        description: str = "",
    ) -> ScheduledCall:
        counter["n"] += 1
        return ScheduledCall(
            id=job_id or f"job-{counter['n']}",
            destination=destination,
            title=title,
            description=description,
            call_at_ms=clock() + int(in_minutes * MINUTE_MS),
            scheduled_at_ms=clock(),
            due_time_label="3:45 PM",
        )

    return _make


@pytest.fixture
def test_settings() -> Settings:
    """Settings for API tests: mock dispatcher, no background loops."""
    return Settings(
        instance_id="rd-test",
        environment="test",
        debug=True,
        scheduler=SchedulerSettings(enabled=False),
        retention=RetentionSettings(enabled=False),
        schedule=ScheduleSettings(timezone="UTC"),
        telephony=TelephonySettings(
            provider="mock",
            webhooks=WebhookSettings(validate_signatures=False),
        ),
    )
