"""Business services for reminder dispatch.

- CallScheduler: background polling and dispatch of due reminder calls
- ResponseHandler: keypress and call status callback handling
- RetentionService / RetentionScheduler: bounded-memory cleanup
- ReminderService: boundary operations used by the API and CLI
"""

from reminder_dispatch.services.scheduler import (
    CallScheduler,
    SchedulerConfig,
    SchedulerMetrics,
    SchedulerState,
)
from reminder_dispatch.services.response_handler import (
    KeypressAction,
    KeypressResult,
    ResponseHandler,
)
from reminder_dispatch.services.retention import (
    EvictionReason,
    RetentionPolicy,
    RetentionReport,
    RetentionScheduler,
    RetentionService,
)
from reminder_dispatch.services.reminders import ReminderService, SubmitResult

__all__ = [
    "CallScheduler",
    "SchedulerConfig",
    "SchedulerMetrics",
    "SchedulerState",
    "KeypressAction",
    "KeypressResult",
    "ResponseHandler",
    "EvictionReason",
    "RetentionPolicy",
    "RetentionReport",
    "RetentionScheduler",
    "RetentionService",
    "ReminderService",
    "SubmitResult",
]
