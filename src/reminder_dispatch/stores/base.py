"""Store interfaces for scheduled and active calls.

Defines the abstract contracts the scheduler and response handler work
against. The in-memory implementations live in ``stores.memory``; a durable
backend only has to implement these methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable

from reminder_dispatch.core.models import ActiveCall, CallStatus, ScheduledCall

# Receives a snapshot of all entries, returns the keys to remove
ScheduledSelector = Callable[[list[ScheduledCall]], Iterable[str]]
ActiveSelector = Callable[[list[ActiveCall]], Iterable[str]]


class JobStore(ABC):
    """Keyed collection of pending and in-flight scheduled calls.

    Implementations must make ``claim`` atomic with respect to ``due_jobs``,
    ``cancel`` and other ``claim`` calls: a job is claimed at most once.
    Entries handed out are copies; callers mutate through ``update``.
    """

    @abstractmethod
    def submit(self, job: ScheduledCall) -> ScheduledCall:
        """Insert a job, or update an unclaimed job with the same id.

        Raises:
            InvalidScheduleError: Missing fields or ``call_at`` too far in the past
            ScheduleConflictError: The id belongs to an already claimed job
        """

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Remove an unclaimed job.

        Idempotent and never an error: missing ids and claimed jobs (whose
        call is already out) are left alone and return False.
        """

    @abstractmethod
    def due_jobs(self, now: int) -> list[ScheduledCall]:
        """Unclaimed jobs with ``call_at_ms <= now``."""

    @abstractmethod
    def claim(self, job_id: str) -> bool:
        """Mark a job claimed and ``calling``.

        Returns:
            True only for the single caller that performed the transition
        """

    @abstractmethod
    def update(
        self,
        job_id: str,
        *,
        protected: frozenset[CallStatus] = frozenset(),
        **changes: Any,
    ) -> ScheduledCall | None:
        """Apply field changes atomically.

        Args:
            job_id: Job to change
            protected: Leave the job untouched if its status is one of these
            **changes: Field values to set

        Returns:
            Updated copy, or None if the job is missing or protected
        """

    @abstractmethod
    def get(self, job_id: str) -> ScheduledCall:
        """Look up a job.

        Raises:
            NotFoundError: If the job does not exist
        """

    @abstractmethod
    def list(self) -> list[ScheduledCall]:
        """Snapshot of all jobs."""

    @abstractmethod
    def prune(self, selector: ScheduledSelector) -> list[ScheduledCall]:
        """Remove the jobs chosen by ``selector`` in one atomic step."""

    @abstractmethod
    def __len__(self) -> int:
        ...


class CallStore(ABC):
    """Keyed collection of dispatched call status records."""

    @abstractmethod
    def record(self, call: ActiveCall) -> ActiveCall:
        """Insert the record for a freshly dispatched call."""

    @abstractmethod
    def update_status(self, call_reference_id: str, status: str) -> ActiveCall | None:
        """Set the dispatcher status. Unknown references return None."""

    @abstractmethod
    def get(self, call_reference_id: str) -> ActiveCall:
        """Look up a call record.

        Raises:
            NotFoundError: If the record does not exist
        """

    @abstractmethod
    def list(self) -> list[ActiveCall]:
        """Snapshot of all call records."""

    @abstractmethod
    def prune(self, selector: ActiveSelector) -> list[ActiveCall]:
        """Remove the records chosen by ``selector`` in one atomic step."""

    @abstractmethod
    def __len__(self) -> int:
        ...
