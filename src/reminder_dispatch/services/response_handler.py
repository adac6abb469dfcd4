"""In-call response and status callback handling.

Applies dispatcher events to both stores:
- keypresses during the call (acknowledge, snooze, anything else)
- call status callbacks (ringing, answered, completed, failed, ...)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable
from uuid import uuid4

from reminder_dispatch.core.exceptions import NotFoundError
from reminder_dispatch.core.models import (
    MINUTE_MS,
    TERMINAL_DIAL_STATUSES,
    USER_DECIDED_STATUSES,
    ActiveCall,
    CallStatus,
    Clock,
    ScheduledCall,
    format_due_time_label,
    now_ms,
)
from reminder_dispatch.log_setup import get_logger
from reminder_dispatch.stores.base import CallStore, JobStore
from reminder_dispatch.telephony.twiml import ACKNOWLEDGE_DIGIT, SNOOZE_DIGIT

log = get_logger(__name__)


class KeypressAction(str, Enum):
    """What the dispatcher should tell the callee."""

    ACKNOWLEDGED = "acknowledged"
    SNOOZED = "snoozed"
    REPROMPT = "reprompt"
    UNKNOWN_CALL = "unknown_call"


@dataclass
class KeypressResult:
    """Outcome of a keypress event."""

    action: KeypressAction
    job_id: str | None = None
    snoozed_job: ScheduledCall | None = None


class ResponseHandler:
    """Applies keypress and status events to the job and call stores."""

    def __init__(
        self,
        job_store: JobStore,
        call_store: CallStore,
        clock: Clock = now_ms,
        snooze_minutes: int = 5,
        timezone: str = "UTC",
        id_factory: Callable[[], str] = lambda: str(uuid4()),
    ) -> None:
        self._jobs = job_store
        self._calls = call_store
        self._clock = clock
        self.snooze_minutes = snooze_minutes
        self._timezone = timezone
        self._new_id = id_factory

    def handle_keypress(self, call_reference_id: str, digit: str) -> KeypressResult:
        """Handle a digit pressed during a reminder call.

        Args:
            call_reference_id: Dispatcher call reference (Twilio CallSid)
            digit: Pressed digit(s)

        Returns:
            Result telling the webhook layer how to answer
        """
        digit = (digit or "").strip()

        if digit not in (ACKNOWLEDGE_DIGIT, SNOOZE_DIGIT):
            log.info("Unrecognized keypress", call_sid=call_reference_id, digit=digit)
            return KeypressResult(action=KeypressAction.REPROMPT)

        try:
            call = self._calls.get(call_reference_id)
        except NotFoundError:
            log.debug("Keypress for untracked call", call_sid=call_reference_id)
            return KeypressResult(action=KeypressAction.UNKNOWN_CALL)

        if call.scheduled_call_id is None:
            return KeypressResult(action=KeypressAction.UNKNOWN_CALL)

        if digit == ACKNOWLEDGE_DIGIT:
            self.acknowledge(call.scheduled_call_id)
            return KeypressResult(
                action=KeypressAction.ACKNOWLEDGED,
                job_id=call.scheduled_call_id,
            )

        return KeypressResult(
            action=KeypressAction.SNOOZED,
            job_id=call.scheduled_call_id,
            snoozed_job=self.snooze(call.scheduled_call_id, fallback=call),
        )

    def acknowledge(self, job_id: str) -> ScheduledCall | None:
        """Mark a job acknowledged. Terminal, and never overwritten."""
        job = self._jobs.update(job_id, status=CallStatus.ACKNOWLEDGED)
        log.info("Reminder acknowledged", job_id=job_id, tracked=job is not None)
        return job

    def snooze(self, job_id: str, fallback: ActiveCall | None = None) -> ScheduledCall | None:
        """Mark a job snoozed and schedule its follow-up call.

        A repeated snooze for the same job does not create a second
        follow-up. If the job was already evicted, the follow-up is built
        from the active call record.

        Returns:
            The new follow-up job, or None if nothing was scheduled
        """
        previous = self._jobs.update(
            job_id,
            protected=frozenset({CallStatus.SNOOZED}),
            status=CallStatus.SNOOZED,
        )

        if previous is None:
            try:
                self._jobs.get(job_id)
            except NotFoundError:
                if fallback is None:
                    return None
            else:
                log.debug("Job already snoozed", job_id=job_id)
                return None

        source_destination = previous.destination if previous else fallback.destination
        source_title = previous.title if previous else fallback.title
        source_description = previous.description if previous else ""

        now = self._clock()
        call_at = now + self.snooze_minutes * MINUTE_MS
        follow_up = self._jobs.submit(ScheduledCall(
            id=self._new_id(),
            destination=source_destination,
            title=source_title,
            description=source_description,
            call_at_ms=call_at,
            scheduled_at_ms=now,
            due_time_label=format_due_time_label(call_at, self._timezone),
            snoozed_from_id=job_id,
        ))

        log.info(
            "Reminder snoozed",
            job_id=job_id,
            follow_up_id=follow_up.id,
            call_at=call_at,
        )
        return follow_up

    def handle_status(self, call_reference_id: str, status: str) -> ActiveCall | None:
        """Apply a dispatcher status callback.

        The active call always takes the new status. Terminal statuses carry
        over to the scheduled call unless the user already decided
        (acknowledged or snoozed).

        Returns:
            Updated active call, or None if the reference is not tracked
        """
        call = self._calls.update_status(call_reference_id, status)
        if call is None:
            log.debug("Status for untracked call", call_sid=call_reference_id, status=status)
            return None

        log.info("Call status", call_sid=call_reference_id, status=status)

        if status in TERMINAL_DIAL_STATUSES and call.scheduled_call_id:
            job = self._jobs.update(
                call.scheduled_call_id,
                protected=USER_DECIDED_STATUSES,
                status=CallStatus(status),
            )
            if job is None:
                log.debug(
                    "Terminal status not applied to job",
                    job_id=call.scheduled_call_id,
                    status=status,
                )

        return call
