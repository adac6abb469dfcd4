"""Reminder Dispatch Exception Hierarchy.

Provides structured error handling with context preservation
and proper HTTP status code mapping.
"""

from __future__ import annotations

from typing import Any


class ReminderDispatchError(Exception):
    """Base exception for all reminder dispatch errors.

    Provides:
    - Structured error context
    - HTTP status code mapping
    - Logging-friendly representation
    """

    status_code: int = 500
    error_code: str = "REMINDER_DISPATCH_ERROR"

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error message
            details: Additional context for debugging
            cause: Original exception if wrapping
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to API-friendly dictionary."""
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        if self.cause:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        """String representation for logging."""
        parts = [f"{self.error_code}: {self.message}"]
        if self.details:
            parts.append(f"details={self.details}")
        if self.cause:
            parts.append(f"cause={self.cause}")
        return " | ".join(parts)


# =============================================================================
# Scheduling Errors
# =============================================================================


class SchedulingError(ReminderDispatchError):
    """Base class for schedule submission errors."""

    status_code = 400
    error_code = "SCHEDULING_ERROR"


class InvalidScheduleError(SchedulingError):
    """Submission is malformed or dated too far in the past."""

    error_code = "INVALID_SCHEDULE"


class ScheduleConflictError(SchedulingError):
    """Resubmission targets a job that was already claimed for dispatch."""

    status_code = 409
    error_code = "SCHEDULE_CONFLICT"


# =============================================================================
# Lookup Errors
# =============================================================================


class NotFoundError(ReminderDispatchError):
    """Requested job or call record does not exist (or was evicted)."""

    status_code = 404
    error_code = "NOT_FOUND"


# =============================================================================
# Telephony Errors
# =============================================================================


class TelephonyError(ReminderDispatchError):
    """Base class for telephony-related errors."""

    status_code = 502
    error_code = "TELEPHONY_ERROR"


class DispatchFailureError(TelephonyError):
    """Call dispatcher rejected or failed to place a call."""

    error_code = "DISPATCH_FAILURE"


class WebhookSecurityError(TelephonyError):
    """Inbound webhook failed signature validation."""

    status_code = 403
    error_code = "WEBHOOK_SIGNATURE_INVALID"


# =============================================================================
# Utility Functions
# =============================================================================


def wrap_exception(
    exc: Exception,
    wrapper_class: type[ReminderDispatchError] = ReminderDispatchError,
    message: str | None = None,
    **details: Any,
) -> ReminderDispatchError:
    """Wrap a generic exception in a ReminderDispatchError.

    Args:
        exc: Original exception to wrap
        wrapper_class: ReminderDispatchError subclass to use
        message: Override message (defaults to str(exc))
        **details: Additional context details

    Returns:
        Wrapped ReminderDispatchError instance
    """
    return wrapper_class(
        message=message or str(exc),
        details=details or None,
        cause=exc,
    )
