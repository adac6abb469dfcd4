"""Core domain types for reminder dispatch."""

from reminder_dispatch.core.exceptions import (
    ReminderDispatchError,
    SchedulingError,
    InvalidScheduleError,
    ScheduleConflictError,
    NotFoundError,
    TelephonyError,
    DispatchFailureError,
    WebhookSecurityError,
)
from reminder_dispatch.core.models import (
    ActiveCall,
    CallStatus,
    Clock,
    DialStatus,
    ScheduledCall,
    TERMINAL_DIAL_STATUSES,
    USER_DECIDED_STATUSES,
    format_due_time_label,
    now_ms,
    parse_call_at,
)

__all__ = [
    # Models
    "ActiveCall",
    "CallStatus",
    "Clock",
    "DialStatus",
    "ScheduledCall",
    "TERMINAL_DIAL_STATUSES",
    "USER_DECIDED_STATUSES",
    "format_due_time_label",
    "now_ms",
    "parse_call_at",
    # Exceptions
    "ReminderDispatchError",
    "SchedulingError",
    "InvalidScheduleError",
    "ScheduleConflictError",
    "NotFoundError",
    "TelephonyError",
    "DispatchFailureError",
    "WebhookSecurityError",
]
