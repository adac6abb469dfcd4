"""In-memory store implementations.

Process-local dict-backed stores guarded by a ``threading.Lock``. Every
operation is a short critical section without I/O, so they are safe to call
from the event loop, from request handlers and from worker threads alike.
Nothing survives a restart.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Any

from reminder_dispatch.core.exceptions import (
    InvalidScheduleError,
    NotFoundError,
    ScheduleConflictError,
)
from reminder_dispatch.core.models import (
    MINUTE_MS,
    ActiveCall,
    CallStatus,
    Clock,
    ScheduledCall,
    now_ms,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.stores.base import (
    ActiveSelector,
    CallStore,
    JobStore,
    ScheduledSelector,
)

log = get_logger(__name__)

DEFAULT_MAX_PAST_SKEW_MS = 5 * MINUTE_MS

# Fields a resubmission may change on an unclaimed job
_RESUBMIT_FIELDS = ("title", "description", "call_at_ms", "due_time_label")


class InMemoryJobStore(JobStore):
    """Dict-backed ``JobStore``."""

    def __init__(
        self,
        clock: Clock = now_ms,
        max_past_skew_ms: int = DEFAULT_MAX_PAST_SKEW_MS,
    ) -> None:
        self._clock = clock
        self._max_past_skew_ms = max_past_skew_ms
        self._jobs: dict[str, ScheduledCall] = {}
        self._lock = threading.Lock()

    def submit(self, job: ScheduledCall) -> ScheduledCall:
        self._validate(job)

        with self._lock:
            existing = self._jobs.get(job.id)

            if existing is None:
                stored = replace(job, claimed=False, status=CallStatus.SCHEDULED)
                self._jobs[job.id] = stored
                log.debug("Job stored", job_id=job.id, call_at=job.call_at_ms)
                return replace(stored)

            if existing.claimed:
                raise ScheduleConflictError(
                    "Job was already claimed for dispatch; submit a new id",
                    details={"id": job.id, "status": existing.status.value},
                )

            for name in _RESUBMIT_FIELDS:
                setattr(existing, name, getattr(job, name))
            log.debug("Job updated by resubmission", job_id=job.id)
            return replace(existing)

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.claimed:
                # The call is out; its record stays until retention evicts it
                log.debug("Cancel ignored for claimed job", job_id=job_id)
                return False
            del self._jobs[job_id]
        log.info("Job cancelled", job_id=job_id)
        return True

    def due_jobs(self, now: int) -> list[ScheduledCall]:
        with self._lock:
            return [replace(job) for job in self._jobs.values() if job.is_due(now)]

    def claim(self, job_id: str) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.claimed:
                return False
            job.claimed = True
            job.status = CallStatus.CALLING
            return True

    def update(
        self,
        job_id: str,
        *,
        protected: frozenset[CallStatus] = frozenset(),
        **changes: Any,
    ) -> ScheduledCall | None:
        if "claimed" in changes:
            raise ValueError("claimed can only be changed through claim()")

        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status in protected:
                return None
            for name, value in changes.items():
                setattr(job, name, value)
            return replace(job)

    def get(self, job_id: str) -> ScheduledCall:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("Scheduled call not found", details={"id": job_id})
            return replace(job)

    def list(self) -> list[ScheduledCall]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def prune(self, selector: ScheduledSelector) -> list[ScheduledCall]:
        with self._lock:
            snapshot = [replace(job) for job in self._jobs.values()]
            doomed = set(selector(snapshot))
            return [self._jobs.pop(job_id) for job_id in doomed if job_id in self._jobs]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _validate(self, job: ScheduledCall) -> None:
        missing = [
            name
            for name, value in (("id", job.id), ("destination", job.destination), ("title", job.title))
            if not (value or "").strip()
        ]
        if missing:
            raise InvalidScheduleError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

        earliest = self._clock() - self._max_past_skew_ms
        if job.call_at_ms < earliest:
            raise InvalidScheduleError(
                "callAt is too far in the past",
                details={
                    "call_at": job.call_at_ms,
                    "max_past_skew_ms": self._max_past_skew_ms,
                },
            )


class InMemoryCallStore(CallStore):
    """Dict-backed ``CallStore``."""

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._calls: dict[str, ActiveCall] = {}
        self._lock = threading.Lock()

    def record(self, call: ActiveCall) -> ActiveCall:
        now = self._clock()
        stored = replace(
            call,
            created_at_ms=call.created_at_ms or now,
            updated_at_ms=call.updated_at_ms or now,
        )
        with self._lock:
            self._calls[stored.call_reference_id] = stored
        return replace(stored)

    def update_status(self, call_reference_id: str, status: str) -> ActiveCall | None:
        with self._lock:
            call = self._calls.get(call_reference_id)
            if call is None:
                return None
            call.status = status
            call.updated_at_ms = self._clock()
            return replace(call)

    def get(self, call_reference_id: str) -> ActiveCall:
        with self._lock:
            call = self._calls.get(call_reference_id)
            if call is None:
                raise NotFoundError(
                    "Call not found",
                    details={"call_reference_id": call_reference_id},
                )
            return replace(call)

    def list(self) -> list[ActiveCall]:
        with self._lock:
            return [replace(call) for call in self._calls.values()]

    def prune(self, selector: ActiveSelector) -> list[ActiveCall]:
        with self._lock:
            snapshot = [replace(call) for call in self._calls.values()]
            doomed = set(selector(snapshot))
            return [self._calls.pop(ref) for ref in doomed if ref in self._calls]

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)
