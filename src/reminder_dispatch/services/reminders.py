"""Reminder service.

Boundary operations used by the HTTP API and the CLI: submit, cancel,
listing, call status lookup, immediate calls and the health check.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

from reminder_dispatch.core.exceptions import DispatchFailureError
from reminder_dispatch.core.models import (
    MINUTE_MS,
    ActiveCall,
    CallStatus,
    Clock,
    ScheduledCall,
    format_due_time_label,
    now_ms,
    parse_call_at,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.services.scheduler import CallScheduler
from reminder_dispatch.stores.base import CallStore, JobStore

log = get_logger(__name__)


@dataclass
class SubmitResult:
    """Accepted submission."""

    id: str
    due_time_label: str
    minutes_until_call: int
    call_at_ms: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "due_time_label": self.due_time_label,
            "minutes_until_call": self.minutes_until_call,
            "call_at": self.call_at_ms,
        }


class ReminderService:
    """Facade over the stores and the scheduler."""

    def __init__(
        self,
        job_store: JobStore,
        call_store: CallStore,
        scheduler: CallScheduler,
        clock: Clock = now_ms,
        timezone_name: str = "UTC",
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._jobs = job_store
        self._calls = call_store
        self._scheduler = scheduler
        self._clock = clock
        self._timezone = timezone_name
        self._new_id = id_factory
        self._started = time.monotonic()

    def submit(
        self,
        destination: str | None,
        title: str | None,
        call_at: Any,
        description: str | None = None,
        job_id: str | None = None,
        due_time: str | None = None,
    ) -> SubmitResult:
        """Register a reminder call.

        Resubmitting the id of a job that was not dispatched yet updates it.

        Raises:
            InvalidScheduleError: Missing fields, unparseable or past ``call_at``
            ScheduleConflictError: The id was already dispatched
        """
        call_at_ms = parse_call_at(call_at)
        now = self._clock()

        job = self._jobs.submit(ScheduledCall(
            id=job_id or self._new_id(),
            destination=(destination or "").strip(),
            title=(title or "").strip(),
            description=description or "",
            call_at_ms=call_at_ms,
            scheduled_at_ms=now,
            due_time_label=due_time or format_due_time_label(call_at_ms, self._timezone),
        ))

        minutes = max(0, math.ceil((job.call_at_ms - now) / MINUTE_MS))
        log.info(
            "Reminder call scheduled",
            job_id=job.id,
            call_at=job.call_at_ms,
            minutes_until_call=minutes,
        )
        return SubmitResult(
            id=job.id,
            due_time_label=job.due_time_label,
            minutes_until_call=minutes,
            call_at_ms=job.call_at_ms,
        )

    def cancel(self, job_id: str) -> bool:
        """Cancel a reminder call. Unknown or dispatched ids are a no-op."""
        return self._jobs.cancel(job_id)

    def list_scheduled(self) -> list[ScheduledCall]:
        return sorted(self._jobs.list(), key=lambda job: job.call_at_ms)

    def get_active_call(self, call_reference_id: str) -> ActiveCall:
        """Raises ``NotFoundError`` for unknown or evicted references."""
        return self._calls.get(call_reference_id)

    async def call_now(
        self,
        destination: str | None,
        title: str | None,
        description: str | None = None,
        due_time: str | None = None,
    ) -> ScheduledCall:
        """Place a reminder call right away and wait for the dispatch.

        The call goes through the regular claim path, so it is recorded in
        both stores like any scheduled call.

        Raises:
            InvalidScheduleError: Missing destination or title
            DispatchFailureError: The dispatcher rejected the call
        """
        now = self._clock()
        submitted = self.submit(
            destination=destination,
            title=title,
            call_at=now,
            description=description,
            due_time=due_time or "now",
        )

        job = await self._scheduler.dispatch_now(submitted.id)
        if job is None:
            # A concurrent scan claimed it first; that scan dispatches it
            await self._scheduler.wait_for_dispatches()
            job = self._jobs.get(submitted.id)

        if job.status == CallStatus.FAILED:
            raise DispatchFailureError(
                job.error or "Call could not be placed",
                details={"id": job.id},
            )
        return job

    async def health(self) -> dict[str, Any]:
        """Report store sizes and force an out-of-band scan.

        The scan catches up on polling ticks skipped while the host was
        suspended.
        """
        claimed = await self._scheduler.scan_now()
        if claimed:
            log.info("Health check scan claimed overdue jobs", count=len(claimed))

        return {
            "status": "ok",
            "scheduled_count": len(self._jobs),
            "active_count": len(self._calls),
            "uptime_seconds": round(time.monotonic() - self._started, 1),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "scheduler": self._scheduler.get_status(),
        }
