"""Domain models for scheduled reminder calls.

A ``ScheduledCall`` is one requested reminder call; an ``ActiveCall`` tracks
one dispatcher-level call attempt produced by it. All timestamps are integer
epoch milliseconds.
"""

from __future__ import annotations

import math
import re
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum
from typing import Any, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reminder_dispatch.core.exceptions import InvalidScheduleError

Clock = Callable[[], int]

MINUTE_MS = 60_000
HOUR_MS = 60 * MINUTE_MS

# 9999-12-31T23:59:59.999Z
MAX_CALL_AT_MS = 253_402_300_799_999

_EPOCH_MS_PATTERN = re.compile(r"-?[0-9]+")


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class CallStatus(str, Enum):
    """Lifecycle status of a scheduled call."""

    SCHEDULED = "scheduled"
    CALLING = "calling"
    INITIATED = "initiated"
    COMPLETED = "completed"
    ACKNOWLEDGED = "acknowledged"
    SNOOZED = "snoozed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"


class DialStatus(str, Enum):
    """Call status as reported by the dispatcher."""

    INITIATED = "initiated"
    QUEUED = "queued"
    RINGING = "ringing"
    ANSWERED = "answered"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BUSY = "busy"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"


# Dispatcher statuses that end a call and carry over to the scheduled call
TERMINAL_DIAL_STATUSES: frozenset[str] = frozenset({
    DialStatus.COMPLETED.value,
    DialStatus.FAILED.value,
    DialStatus.BUSY.value,
    DialStatus.NO_ANSWER.value,
    DialStatus.CANCELED.value,
})

# Statuses set by the user during the call; transport status never overrides them
USER_DECIDED_STATUSES: frozenset[CallStatus] = frozenset({
    CallStatus.ACKNOWLEDGED,
    CallStatus.SNOOZED,
})


@dataclass
class ScheduledCall:
    """A pending request to place a reminder call."""

    id: str
    destination: str
    title: str
    call_at_ms: int
    scheduled_at_ms: int
    due_time_label: str
    description: str = ""
    claimed: bool = False
    status: CallStatus = CallStatus.SCHEDULED
    call_reference_id: str | None = None
    snoozed_from_id: str | None = None
    error: str | None = None

    def is_due(self, now: int) -> bool:
        """Check whether the job should be dispatched at ``now``."""
        return not self.claimed and self.call_at_ms <= now

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class ActiveCall:
    """Status record of a dispatched call."""

    call_reference_id: str
    destination: str
    title: str
    scheduled_call_id: str | None
    status: str = DialStatus.INITIATED.value
    created_at_ms: int = 0
    updated_at_ms: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DIAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


def parse_call_at(value: Any) -> int:
    """Parse a client supplied call time into epoch milliseconds.

    Accepts integer epoch milliseconds (or a numeric string) and ISO-8601
    timestamps. Naive timestamps are read as UTC. The result must fall
    between the epoch and the end of year 9999.

    Raises:
        InvalidScheduleError: If the value cannot be interpreted.
    """
    if value is None or isinstance(value, bool):
        raise InvalidScheduleError("callAt is required", details={"call_at": value})

    if isinstance(value, float) and not math.isfinite(value):
        raise InvalidScheduleError(
            "callAt must be a finite number",
            details={"call_at": repr(value)},
        )

    if isinstance(value, (int, float)):
        return _checked_call_at(int(value), value)

    if isinstance(value, str):
        text = value.strip()
        if _EPOCH_MS_PATTERN.fullmatch(text):
            return _checked_call_at(int(text), value)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            call_at_ms = int(parsed.timestamp() * 1000)
        except (ValueError, OverflowError, OSError) as e:
            raise InvalidScheduleError(
                "callAt is not a valid timestamp",
                details={"call_at": value},
                cause=e,
            ) from e
        return _checked_call_at(call_at_ms, value)

    raise InvalidScheduleError(
        "callAt must be epoch milliseconds or an ISO-8601 string",
        details={"call_at": repr(value)},
    )


def _checked_call_at(call_at_ms: int, raw: Any) -> int:
    if not 0 <= call_at_ms <= MAX_CALL_AT_MS:
        raise InvalidScheduleError(
            "callAt is out of range",
            details={"call_at": raw if isinstance(raw, str) else repr(raw)},
        )
    return call_at_ms


def format_due_time_label(call_at_ms: int, tz_name: str = "UTC") -> str:
    """Render the spoken due time, e.g. ``3:45 PM``.

    Raises:
        InvalidScheduleError: If the time cannot be represented in ``tz_name``.
    """
    tz: tzinfo
    try:
        tz = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        tz = timezone.utc
    try:
        moment = datetime.fromtimestamp(call_at_ms / 1000, tz=tz)
    except (ValueError, OverflowError, OSError) as e:
        raise InvalidScheduleError(
            "callAt is out of range",
            details={"call_at": call_at_ms},
            cause=e,
        ) from e
    return moment.strftime("%I:%M %p").lstrip("0")
