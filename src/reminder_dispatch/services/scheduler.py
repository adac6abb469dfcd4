"""Call Scheduler Service.

Background scheduler that promotes due reminder calls to dispatch.
Runs as an asyncio task and polls the job store on a fixed interval.

Features:
- Configurable polling interval
- At-most-once dispatch: jobs are claimed before any dispatch work starts
- One independent task per dispatch, so slow calls never delay a poll
- Out-of-band scans (health checks, immediate calls)
- Graceful shutdown
- Metrics collection
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from reminder_dispatch.core.exceptions import DispatchFailureError, wrap_exception
from reminder_dispatch.core.models import (
    USER_DECIDED_STATUSES,
    ActiveCall,
    CallStatus,
    Clock,
    DialStatus,
    ScheduledCall,
    now_ms,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.stores.base import CallStore, JobStore
from reminder_dispatch.telephony.base import CallDispatcher, CallRequest

log = get_logger(__name__)


class SchedulerState(str, Enum):
    """Scheduler states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"


@dataclass
class SchedulerConfig:
    """Call scheduler configuration."""

    # How often to check for due jobs
    poll_interval_seconds: float = 30.0

    # Pause after an unexpected loop error
    error_backoff_seconds: float = 5.0

    # How long stop() waits for in-flight dispatches
    shutdown_timeout_seconds: float = 10.0


@dataclass
class SchedulerMetrics:
    """Scheduler performance metrics."""

    started_at: datetime | None = None
    polls: int = 0
    jobs_claimed: int = 0
    claims_lost: int = 0
    calls_initiated: int = 0
    calls_failed: int = 0
    errors: int = 0
    last_poll_at: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "polls": self.polls,
            "jobs_claimed": self.jobs_claimed,
            "claims_lost": self.claims_lost,
            "calls_initiated": self.calls_initiated,
            "calls_failed": self.calls_failed,
            "errors": self.errors,
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "last_error": self.last_error,
        }


class CallScheduler:
    """Background scheduler for reminder calls.

    Each poll fetches the due jobs, claims every one of them synchronously
    and only then spawns a dispatch task per claimed job. A job that lost
    its claim (cancelled, or claimed by an overlapping scan) is skipped.

    Usage:
        scheduler = CallScheduler(job_store, call_store, dispatcher)

        # In application lifespan
        await scheduler.start()

        # When shutting down
        await scheduler.stop()
    """

    def __init__(
        self,
        job_store: JobStore,
        call_store: CallStore,
        dispatcher: CallDispatcher,
        config: SchedulerConfig | None = None,
        clock: Clock = now_ms,
    ) -> None:
        """Initialize scheduler.

        Args:
            job_store: Store of scheduled calls
            call_store: Store of dispatched calls
            dispatcher: Call placement capability
            config: Scheduler configuration
            clock: Epoch millisecond time source
        """
        self.config = config or SchedulerConfig()
        self._jobs = job_store
        self._calls = call_store
        self._dispatcher = dispatcher
        self._clock = clock

        self._state = SchedulerState.STOPPED
        self._task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()
        self._metrics = SchedulerMetrics()

        self._stop_event = asyncio.Event()

    @property
    def state(self) -> SchedulerState:
        """Get current scheduler state."""
        return self._state

    @property
    def metrics(self) -> SchedulerMetrics:
        """Get scheduler metrics."""
        return self._metrics

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._state == SchedulerState.RUNNING

    @property
    def in_flight_count(self) -> int:
        """Number of dispatches currently awaiting the provider."""
        return len(self._in_flight)

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._state != SchedulerState.STOPPED:
            log.warning(f"Scheduler already in state: {self._state}")
            return

        self._state = SchedulerState.STARTING
        self._stop_event.clear()
        self._metrics = SchedulerMetrics(started_at=datetime.now())

        log.info(
            "Starting call scheduler",
            poll_interval=self.config.poll_interval_seconds,
        )

        self._task = asyncio.create_task(self._run_loop())
        self._state = SchedulerState.RUNNING

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop the scheduler gracefully.

        Args:
            timeout: Maximum time to wait for the poll loop to finish
        """
        if self._state == SchedulerState.STOPPED:
            return

        log.info("Stopping call scheduler")
        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        if self._task:
            try:
                await asyncio.wait_for(self._task, timeout=timeout)
            except asyncio.TimeoutError:
                log.warning("Scheduler stop timed out, cancelling task")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        await self.wait_for_dispatches(timeout=self.config.shutdown_timeout_seconds)

        self._state = SchedulerState.STOPPED
        log.info("Call scheduler stopped")

    async def pause(self) -> None:
        """Pause the scheduler (stop claiming new jobs)."""
        if self._state == SchedulerState.RUNNING:
            self._state = SchedulerState.PAUSED
            log.info("Call scheduler paused")

    async def resume(self) -> None:
        """Resume a paused scheduler."""
        if self._state == SchedulerState.PAUSED:
            self._state = SchedulerState.RUNNING
            log.info("Call scheduler resumed")

    async def scan_now(self) -> list[str]:
        """Run one poll immediately, outside the regular interval.

        Used when polling ticks may have been skipped (host suspension).

        Returns:
            IDs of the jobs claimed by this scan
        """
        return self._scan()

    async def dispatch_now(self, job_id: str) -> ScheduledCall | None:
        """Claim a single job and wait for its dispatch to finish.

        Cancelling the caller does not cancel the dispatch; the call is
        still placed and its outcome recorded on the job.

        Returns:
            The job after dispatch, or None if the claim was lost
        """
        if not self._jobs.claim(job_id):
            self._metrics.claims_lost += 1
            return None

        self._metrics.jobs_claimed += 1
        await asyncio.shield(self._spawn(self._jobs.get(job_id)))
        return self._jobs.get(job_id)

    async def wait_for_dispatches(self, timeout: float | None = None) -> None:
        """Wait until all in-flight dispatch tasks have finished."""
        if not self._in_flight:
            return

        log.info(f"Waiting for {len(self._in_flight)} in-flight dispatches")
        done, pending = await asyncio.wait(set(self._in_flight), timeout=timeout)
        if pending:
            log.warning("Dispatches still in flight after timeout", pending=len(pending))

    async def _run_loop(self) -> None:
        """Main scheduler loop."""
        while not self._stop_event.is_set():
            try:
                if self._state == SchedulerState.RUNNING:
                    self._scan()

                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self.config.poll_interval_seconds,
                    )
                except asyncio.TimeoutError:
                    pass  # Normal timeout, continue loop

            except Exception as e:
                self._metrics.errors += 1
                self._metrics.last_error = str(e)
                log.error(f"Scheduler loop error: {e}")

                await asyncio.sleep(self.config.error_backoff_seconds)

    def _scan(self) -> list[str]:
        """Claim all due jobs, then spawn their dispatches."""
        now = self._clock()
        self._metrics.polls += 1
        self._metrics.last_poll_at = datetime.now()

        claimed: list[ScheduledCall] = []
        for job in self._jobs.due_jobs(now):
            if self._jobs.claim(job.id):
                claimed.append(job)
            else:
                # Cancelled or claimed elsewhere between fetch and claim
                self._metrics.claims_lost += 1
                log.debug("Job no longer claimable", job_id=job.id)

        self._metrics.jobs_claimed += len(claimed)
        if claimed:
            log.info("Claimed due jobs", count=len(claimed))

        for job in claimed:
            self._spawn(job)

        return [job.id for job in claimed]

    def _spawn(self, job: ScheduledCall) -> asyncio.Task:
        task = asyncio.create_task(self._dispatch(job))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _dispatch(self, job: ScheduledCall) -> None:
        """Place the call for a claimed job and record the outcome.

        Never raises on dispatcher errors: every failure is recorded on the
        job. Cancellation is recorded as a failure and then propagated.
        """
        request = CallRequest(
            to=job.destination,
            title=job.title,
            description=job.description,
            due_time_label=job.due_time_label,
            job_id=job.id,
        )

        try:
            result = await self._dispatcher.place_call(request)
        except asyncio.CancelledError:
            self._record_failure(job, "Dispatch cancelled before the call was placed")
            raise
        except DispatchFailureError as e:
            self._record_failure(job, e.message)
            return
        except Exception as e:
            failure = wrap_exception(
                e,
                DispatchFailureError,
                message=str(e) or type(e).__name__,
                job_id=job.id,
            )
            self._metrics.errors += 1
            self._metrics.last_error = failure.message
            log.error(
                "Unexpected dispatcher error",
                job_id=job.id,
                error=failure.message,
                error_type=type(e).__name__,
            )
            self._record_failure(job, failure.message)
            return

        self._calls.record(ActiveCall(
            call_reference_id=result.call_reference_id,
            destination=job.destination,
            title=job.title,
            scheduled_call_id=job.id,
            status=DialStatus.INITIATED.value,
        ))

        updated = self._jobs.update(
            job.id,
            protected=USER_DECIDED_STATUSES,
            status=CallStatus.INITIATED,
            call_reference_id=result.call_reference_id,
        )
        self._metrics.calls_initiated += 1

        if updated is None:
            log.info(
                "Call placed for job that changed during dispatch",
                job_id=job.id,
                call_sid=result.call_reference_id,
            )
        else:
            log.info("Call initiated", job_id=job.id, call_sid=result.call_reference_id)

    def _record_failure(self, job: ScheduledCall, error: str) -> None:
        self._metrics.calls_failed += 1
        self._jobs.update(job.id, status=CallStatus.FAILED, error=error)
        log.warning("Call dispatch failed", job_id=job.id, error=error)

    def get_status(self) -> dict[str, Any]:
        """Get scheduler status.

        Returns:
            Status dictionary
        """
        return {
            "state": self._state.value,
            "is_running": self.is_running,
            "in_flight": self.in_flight_count,
            "poll_interval_seconds": self.config.poll_interval_seconds,
            "metrics": self._metrics.to_dict(),
        }
