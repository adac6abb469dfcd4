"""Retention Service for the in-memory stores.

Bounded-memory cleanup of both stores:
- Age rules evict records whose real-world event is long over
- Hard caps evict the oldest records when a store grows too large
- Runs periodically on its own timer, independent of the call scheduler

Usage:
    from reminder_dispatch.services.retention import (
        RetentionPolicy,
        RetentionScheduler,
        RetentionService,
    )

    service = RetentionService(job_store, call_store, RetentionPolicy())
    report = service.run_cleanup()

    # Periodic cleanup in the application lifespan
    scheduler = RetentionScheduler(service, interval_seconds=300)
    await scheduler.start()
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from reminder_dispatch.core.models import (
    HOUR_MS,
    MINUTE_MS,
    ActiveCall,
    CallStatus,
    Clock,
    ScheduledCall,
    now_ms,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.stores.base import CallStore, JobStore

if TYPE_CHECKING:
    from reminder_dispatch.config import RetentionSettings

log = get_logger(__name__)


class EvictionReason(str, Enum):
    """Why a record was evicted."""

    EXPIRED = "expired"
    CLAIMED_AGED = "claimed_aged"
    FAILED_AGED = "failed_aged"
    OVER_CAPACITY = "over_capacity"


@dataclass
class RetentionPolicy:
    """Age and count limits for both stores.

    Ages of scheduled calls are measured from ``call_at``, ages of active
    calls from their creation.
    """

    claimed_max_age_ms: int = HOUR_MS
    failed_max_age_ms: int = HOUR_MS
    scheduled_max_age_ms: int = 24 * HOUR_MS
    active_max_age_ms: int = 2 * HOUR_MS
    max_scheduled_calls: int = 1000
    max_active_calls: int = 500

    @classmethod
    def from_settings(cls, settings: RetentionSettings) -> RetentionPolicy:
        return cls(
            claimed_max_age_ms=settings.claimed_max_age_minutes * MINUTE_MS,
            failed_max_age_ms=settings.failed_max_age_minutes * MINUTE_MS,
            scheduled_max_age_ms=settings.scheduled_max_age_hours * HOUR_MS,
            active_max_age_ms=settings.active_max_age_hours * HOUR_MS,
            max_scheduled_calls=settings.max_scheduled_calls,
            max_active_calls=settings.max_active_calls,
        )

    def select_scheduled(
        self, jobs: list[ScheduledCall], now: int
    ) -> dict[str, EvictionReason]:
        """Pick the scheduled calls to evict.

        Age rules apply first. If the survivors still exceed the cap,
        claimed calls go oldest-by-``call_at`` first, then unclaimed ones.

        Returns:
            Evicted job ids mapped to the rule that evicted them
        """
        doomed: dict[str, EvictionReason] = {}
        survivors: list[ScheduledCall] = []

        for job in jobs:
            reason = self._scheduled_age_reason(job, now)
            if reason is None:
                survivors.append(job)
            else:
                doomed[job.id] = reason

        excess = len(survivors) - self.max_scheduled_calls
        if excess > 0:
            by_age = sorted(survivors, key=lambda j: (not j.claimed, j.call_at_ms))
            for job in by_age[:excess]:
                doomed[job.id] = EvictionReason.OVER_CAPACITY

        return doomed

    def select_active(
        self, calls: list[ActiveCall], now: int
    ) -> dict[str, EvictionReason]:
        """Pick the active calls to evict, status is not considered."""
        doomed: dict[str, EvictionReason] = {}
        survivors: list[ActiveCall] = []

        for call in calls:
            if now - call.created_at_ms > self.active_max_age_ms:
                doomed[call.call_reference_id] = EvictionReason.EXPIRED
            else:
                survivors.append(call)

        excess = len(survivors) - self.max_active_calls
        if excess > 0:
            for call in sorted(survivors, key=lambda c: c.created_at_ms)[:excess]:
                doomed[call.call_reference_id] = EvictionReason.OVER_CAPACITY

        return doomed

    def _scheduled_age_reason(
        self, job: ScheduledCall, now: int
    ) -> EvictionReason | None:
        age = now - job.call_at_ms
        if age > self.scheduled_max_age_ms:
            return EvictionReason.EXPIRED
        if job.claimed and age > self.claimed_max_age_ms:
            return EvictionReason.CLAIMED_AGED
        if job.status == CallStatus.FAILED and age > self.failed_max_age_ms:
            return EvictionReason.FAILED_AGED
        return None


@dataclass
class RetentionResult:
    """Result of one cleanup pass over a single store."""

    store: str
    scanned_count: int = 0
    evicted: dict[str, int] = field(default_factory=dict)

    @property
    def evicted_count(self) -> int:
        return sum(self.evicted.values())


@dataclass
class RetentionReport:
    """Full report of a retention cleanup run."""

    started_at: datetime
    dry_run: bool = False
    completed_at: datetime | None = None
    scheduled: RetentionResult = field(default_factory=lambda: RetentionResult("scheduled"))
    active: RetentionResult = field(default_factory=lambda: RetentionResult("active"))

    @property
    def total_evicted(self) -> int:
        return self.scheduled.evicted_count + self.active.evicted_count

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/API."""
        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "dry_run": self.dry_run,
            "total_evicted": self.total_evicted,
            "results": [
                {
                    "store": r.store,
                    "scanned": r.scanned_count,
                    "evicted": r.evicted_count,
                    "by_reason": dict(r.evicted),
                }
                for r in (self.scheduled, self.active)
            ],
        }


def _tally(result: RetentionResult, reasons: dict[str, EvictionReason]) -> None:
    for reason in reasons.values():
        result.evicted[reason.value] = result.evicted.get(reason.value, 0) + 1


class RetentionService:
    """Applies a ``RetentionPolicy`` to the job and call stores."""

    def __init__(
        self,
        job_store: JobStore,
        call_store: CallStore,
        policy: RetentionPolicy | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._jobs = job_store
        self._calls = call_store
        self.policy = policy or RetentionPolicy()
        self._clock = clock

    def run_cleanup(self, dry_run: bool = False) -> RetentionReport:
        """Run one retention pass over both stores.

        Args:
            dry_run: If True, only report what would be evicted

        Returns:
            Cleanup report with counts per eviction rule
        """
        report = RetentionReport(started_at=datetime.now(timezone.utc), dry_run=dry_run)
        now = self._clock()

        scheduled_reasons: dict[str, EvictionReason] = {}
        active_reasons: dict[str, EvictionReason] = {}

        def pick_scheduled(jobs: list[ScheduledCall]) -> list[str]:
            report.scheduled.scanned_count = len(jobs)
            scheduled_reasons.update(self.policy.select_scheduled(jobs, now))
            return [] if dry_run else list(scheduled_reasons)

        def pick_active(calls: list[ActiveCall]) -> list[str]:
            report.active.scanned_count = len(calls)
            active_reasons.update(self.policy.select_active(calls, now))
            return [] if dry_run else list(active_reasons)

        self._jobs.prune(pick_scheduled)
        self._calls.prune(pick_active)

        _tally(report.scheduled, scheduled_reasons)
        _tally(report.active, active_reasons)
        report.completed_at = datetime.now(timezone.utc)

        if report.total_evicted:
            log.info(
                "Retention cleanup completed",
                dry_run=dry_run,
                scheduled=report.scheduled.evicted,
                active=report.active.evicted,
                remaining_scheduled=len(self._jobs),
                remaining_active=len(self._calls),
            )
        else:
            log.debug("Retention cleanup found nothing to evict")

        return report


class RetentionScheduler:
    """Runs ``RetentionService.run_cleanup`` on a fixed interval."""

    def __init__(
        self,
        service: RetentionService,
        interval_seconds: float = 300.0,
        error_backoff_seconds: float = 60.0,
    ) -> None:
        self.service = service
        self.interval_seconds = interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self._task: asyncio.Task | None = None
        self._running = False
        self.last_report: RetentionReport | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the periodic cleanup task."""
        if self._running:
            log.warning("Retention scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info("Retention scheduler started", interval=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the periodic cleanup task."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        log.info("Retention scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                if not self._running:
                    break
                self.last_report = self.service.run_cleanup()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error(f"Retention scheduler error: {e}")
                await asyncio.sleep(self.error_backoff_seconds)
