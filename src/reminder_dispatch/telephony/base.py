"""Base Call Dispatcher Interface.

Defines the abstract capability the scheduler uses to place reminder calls.
The core never talks to a telephony provider directly; status and keypress
events come back through the webhook endpoints.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import uuid4

from reminder_dispatch.core.exceptions import DispatchFailureError
from reminder_dispatch.core.models import DialStatus
from reminder_dispatch.log_setup import get_logger

log = get_logger(__name__)


@dataclass
class CallRequest:
    """Reminder call to place."""

    to: str  # Destination phone number
    title: str
    description: str = ""
    due_time_label: str = ""
    job_id: str | None = None  # Scheduled call that produced this request


@dataclass
class DispatchResult:
    """Accepted call placement."""

    call_reference_id: str
    status: str = DialStatus.INITIATED.value
    provider: str = ""
    placed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "call_reference_id": self.call_reference_id,
            "status": self.status,
            "provider": self.provider,
            "placed_at": self.placed_at.isoformat() if self.placed_at else None,
        }


class CallDispatcher(ABC):
    """Abstract base class for call dispatchers.

    Implementations place the call and return as soon as the provider has
    accepted it. Timeouts are owned by the implementation.
    """

    provider: str = ""

    @abstractmethod
    async def place_call(self, request: CallRequest) -> DispatchResult:
        """Place a reminder call.

        Args:
            request: Call to place

        Returns:
            Result carrying the provider's call reference

        Raises:
            DispatchFailureError: If the provider rejected or failed the call
        """

    async def close(self) -> None:
        """Release provider resources."""


class MockCallDispatcher(CallDispatcher):
    """Mock dispatcher for development and testing."""

    provider = "mock"

    def __init__(self, delay: float = 0.0, fail_with: str | None = None) -> None:
        """Initialize mock dispatcher.

        Args:
            delay: Simulated provider latency in seconds
            fail_with: If set, every call fails with this message
        """
        self.delay = delay
        self.fail_with = fail_with
        self._placed_calls: list[dict[str, Any]] = []

    async def place_call(self, request: CallRequest) -> DispatchResult:
        """Mock placement - records the request and returns a fake SID."""
        if self.delay:
            await asyncio.sleep(self.delay)

        if self.fail_with:
            raise DispatchFailureError(
                self.fail_with,
                details={"to": request.to, "provider": self.provider},
            )

        call_sid = f"CA{uuid4().hex}"
        log.info("Mock call placed", call_sid=call_sid, to=request.to, job_id=request.job_id)

        self._placed_calls.append({
            "call_sid": call_sid,
            "to": request.to,
            "title": request.title,
            "description": request.description,
            "due_time_label": request.due_time_label,
            "job_id": request.job_id,
            "placed_at": datetime.now(),
        })

        return DispatchResult(
            call_reference_id=call_sid,
            provider=self.provider,
            placed_at=datetime.now(),
        )

    def get_placed_calls(self) -> list[dict[str, Any]]:
        """Get list of all placed calls (for testing)."""
        return self._placed_calls.copy()

    def clear_placed_calls(self) -> None:
        """Clear placed calls list (for testing)."""
        self._placed_calls.clear()
