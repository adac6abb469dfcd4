"""Reminder and call endpoints.

Clients register reminder calls here, cancel them, list them and look up
the status of dispatched calls.

Field names are snake_case in both directions. Requests also accept the
camelCase names used by the mobile client (``callAt``, ``dueTime``) and the
names a listed reminder comes back with (``due_time_label``), so a row from
``GET /reminders`` can be resubmitted as is.
"""

from fastapi import APIRouter, Request
from pydantic import AliasChoices, BaseModel, Field

from reminder_dispatch.api.rate_limits import RateLimits, limiter
from reminder_dispatch.core.models import ActiveCall, ScheduledCall
from reminder_dispatch.dependencies import ReminderServiceDep


router = APIRouter()


# ============================================================================
# Pydantic Schemas
# ============================================================================

class ReminderCreate(BaseModel):
    """Schema for registering a reminder call.

    Required fields are validated by the job store so that a missing
    destination or title is reported as ``INVALID_SCHEDULE``.
    """

    id: str | None = Field(default=None, max_length=128)
    destination: str | None = Field(
        default=None,
        max_length=32,
        description="Phone number in E.164 format",
    )
    title: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    call_at: int | float | str | None = Field(
        default=None,
        validation_alias=AliasChoices("call_at", "callAt"),
        description="Epoch milliseconds or ISO-8601 timestamp",
    )
    due_time: str | None = Field(
        default=None,
        validation_alias=AliasChoices("due_time", "dueTime", "due_time_label"),
        max_length=64,
        description="Spoken due time; derived from callAt when omitted",
    )


class ReminderCreated(BaseModel):
    """Accepted reminder."""

    success: bool = True
    id: str
    due_time_label: str
    minutes_until_call: int
    call_at: int


class CallNowRequest(BaseModel):
    """Schema for an immediate reminder call."""

    destination: str | None = Field(default=None, max_length=32)
    title: str | None = Field(default=None, max_length=500)
    description: str | None = Field(default=None, max_length=2000)
    due_time: str | None = Field(
        default=None,
        validation_alias=AliasChoices("due_time", "dueTime"),
        max_length=64,
    )


class CallNowResponse(BaseModel):
    """Immediate call result."""

    success: bool = True
    id: str
    call_sid: str | None
    status: str
    message: str = "Call initiated successfully"


class CancelResponse(BaseModel):
    success: bool = True
    removed: bool


class ScheduledCallResponse(BaseModel):
    """Scheduled call as exposed by the API."""

    id: str
    title: str
    destination: str
    description: str
    call_at: int
    scheduled_at: int
    due_time_label: str
    status: str
    claimed: bool
    call_reference_id: str | None
    snoozed_from_id: str | None
    error: str | None

    @classmethod
    def from_job(cls, job: ScheduledCall) -> "ScheduledCallResponse":
        return cls(
            id=job.id,
            title=job.title,
            destination=job.destination,
            description=job.description,
            call_at=job.call_at_ms,
            scheduled_at=job.scheduled_at_ms,
            due_time_label=job.due_time_label,
            status=job.status.value,
            claimed=job.claimed,
            call_reference_id=job.call_reference_id,
            snoozed_from_id=job.snoozed_from_id,
            error=job.error,
        )


class ActiveCallResponse(BaseModel):
    """Dispatched call status."""

    call_reference_id: str
    destination: str
    title: str
    scheduled_call_id: str | None
    status: str
    created_at: int
    updated_at: int

    @classmethod
    def from_call(cls, call: ActiveCall) -> "ActiveCallResponse":
        return cls(
            call_reference_id=call.call_reference_id,
            destination=call.destination,
            title=call.title,
            scheduled_call_id=call.scheduled_call_id,
            status=call.status,
            created_at=call.created_at_ms,
            updated_at=call.updated_at_ms,
        )


# ============================================================================
# Reminder Endpoints
# ============================================================================

@router.post("/reminders", response_model=ReminderCreated)
@limiter.limit(RateLimits.WRITE)
async def submit_reminder(
    request: Request,
    body: ReminderCreate,
    service: ReminderServiceDep,
) -> ReminderCreated:
    """Register a reminder call.

    Resubmitting an id that has not been dispatched yet updates the
    reminder in place.

    Raises:
        InvalidScheduleError: Missing fields or callAt too far in the past (400)
        ScheduleConflictError: The id was already dispatched (409)
    """
    result = service.submit(
        destination=body.destination,
        title=body.title,
        call_at=body.call_at,
        description=body.description,
        job_id=body.id,
        due_time=body.due_time,
    )
    return ReminderCreated(**result.to_dict())


@router.delete("/reminders/{reminder_id}", response_model=CancelResponse)
@limiter.limit(RateLimits.WRITE)
async def cancel_reminder(
    request: Request,
    reminder_id: str,
    service: ReminderServiceDep,
) -> CancelResponse:
    """Cancel a reminder call.

    Always succeeds; unknown and already dispatched reminders are left as
    they are.
    """
    return CancelResponse(removed=service.cancel(reminder_id))


@router.get("/reminders", response_model=list[ScheduledCallResponse])
@limiter.limit(RateLimits.READ)
async def list_reminders(
    request: Request,
    service: ReminderServiceDep,
) -> list[ScheduledCallResponse]:
    """List all tracked reminder calls, earliest first."""
    return [ScheduledCallResponse.from_job(job) for job in service.list_scheduled()]


# ============================================================================
# Call Endpoints
# ============================================================================

@router.get("/calls/{call_reference_id}", response_model=ActiveCallResponse)
@limiter.limit(RateLimits.READ)
async def get_call_status(
    request: Request,
    call_reference_id: str,
    service: ReminderServiceDep,
) -> ActiveCallResponse:
    """Get the status of a dispatched call.

    Raises:
        NotFoundError: Unknown or evicted call reference (404)
    """
    return ActiveCallResponse.from_call(service.get_active_call(call_reference_id))


@router.post("/calls", response_model=CallNowResponse)
@limiter.limit(RateLimits.CALL_NOW)
async def call_now(
    request: Request,
    body: CallNowRequest,
    service: ReminderServiceDep,
) -> CallNowResponse:
    """Place a reminder call immediately.

    Raises:
        InvalidScheduleError: Missing destination or title (400)
        DispatchFailureError: The provider rejected the call (502)
    """
    job = await service.call_now(
        destination=body.destination,
        title=body.title,
        description=body.description,
        due_time=body.due_time,
    )
    return CallNowResponse(
        id=job.id,
        call_sid=job.call_reference_id,
        status=job.status.value,
    )

