"""Tests for the call scheduler."""

from __future__ import annotations

import asyncio

import pytest

from reminder_dispatch.core.exceptions import DispatchFailureError
from reminder_dispatch.core.models import CallStatus
from reminder_dispatch.services.scheduler import CallScheduler, SchedulerConfig, SchedulerState
from reminder_dispatch.telephony.base import (
    CallDispatcher,
    CallRequest,
    DispatchResult,
    MockCallDispatcher,
)


class SelectiveDispatcher(CallDispatcher):
    """Fails calls to chosen numbers, succeeds for everything else."""

    provider = "selective"

    def __init__(self, failing: dict[str, Exception]) -> None:
        self.failing = failing
        self.requests: list[CallRequest] = []

    async def place_call(self, request: CallRequest) -> DispatchResult:
        self.requests.append(request)
        if request.to in self.failing:
            raise self.failing[request.to]
        return DispatchResult(call_reference_id=f"CA-{request.job_id}", provider=self.provider)


class TestScan:
    """Tests for a single scheduler poll."""

    @pytest.mark.asyncio
    async def test_scan_dispatches_due_jobs(self, scheduler, job_store, call_store, dispatcher, make_job):
        """Due jobs are claimed, dispatched and recorded as initiated."""
        job_store.submit(make_job("due", in_minutes=-1))
        job_store.submit(make_job("later", in_minutes=10))

        claimed = await scheduler.scan_now()
        await scheduler.wait_for_dispatches()

        assert claimed == ["due"]

        job = job_store.get("due")
        assert job.status == CallStatus.INITIATED
        assert job.call_reference_id is not None

        active = call_store.get(job.call_reference_id)
        assert active.status == "initiated"
        assert active.scheduled_call_id == "due"

        assert job_store.get("later").status == CallStatus.SCHEDULED
        assert len(dispatcher.get_placed_calls()) == 1

    @pytest.mark.asyncio
    async def test_request_carries_job_content(self, scheduler, job_store, dispatcher, make_job):
        job_store.submit(make_job("r1", in_minutes=0, description="With water"))

        await scheduler.scan_now()
        await scheduler.wait_for_dispatches()

        placed = dispatcher.get_placed_calls()[0]
        assert placed["to"] == "+15551234567"
        assert placed["title"] == "Take medicine"
        assert placed["description"] == "With water"
        assert placed["due_time_label"] == "3:45 PM"
        assert placed["job_id"] == "r1"

    @pytest.mark.asyncio
    async def test_concurrent_scans_dispatch_once(self, job_store, call_store, clock, make_job):
        """Overlapping scans never dispatch the same job twice."""
        dispatcher = MockCallDispatcher(delay=0.05)
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        results = await asyncio.gather(*(scheduler.scan_now() for _ in range(10)))
        await scheduler.wait_for_dispatches()

        assert sum(len(r) for r in results) == 1
        assert len(dispatcher.get_placed_calls()) == 1
        assert len(call_store) == 1

    @pytest.mark.asyncio
    async def test_cancelled_job_is_not_dispatched(self, scheduler, job_store, dispatcher, make_job):
        job_store.submit(make_job("r1", in_minutes=0))
        job_store.cancel("r1")

        assert await scheduler.scan_now() == []
        assert dispatcher.get_placed_calls() == []

    @pytest.mark.asyncio
    async def test_cancel_after_claim_does_not_stop_dispatch(self, job_store, call_store, clock, make_job):
        dispatcher = MockCallDispatcher(delay=0.05)
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.scan_now()
        job_store.cancel("r1")
        await scheduler.wait_for_dispatches()

        assert len(dispatcher.get_placed_calls()) == 1
        assert job_store.get("r1").status == CallStatus.INITIATED


class TestDispatchFailures:
    """Tests for failure isolation."""

    @pytest.mark.asyncio
    async def test_dispatch_failure_marks_job_failed(self, job_store, call_store, clock, make_job):
        dispatcher = MockCallDispatcher(fail_with="[21211] Invalid 'To' Phone Number")
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.scan_now()
        await scheduler.wait_for_dispatches()

        job = job_store.get("r1")
        assert job.status == CallStatus.FAILED
        assert job.error == "[21211] Invalid 'To' Phone Number"
        assert job.claimed is True
        assert len(call_store) == 0
        assert scheduler.metrics.calls_failed == 1

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_jobs(self, job_store, call_store, clock, make_job):
        """One failing and one crashing dispatch leave the third untouched."""
        dispatcher = SelectiveDispatcher({
            "+15550000001": DispatchFailureError("Rejected"),
            "+15550000002": RuntimeError("connection reset"),
        })
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)

        job_store.submit(make_job("bad", in_minutes=0, destination="+15550000001"))
        job_store.submit(make_job("crash", in_minutes=0, destination="+15550000002"))
        job_store.submit(make_job("good", in_minutes=0))

        await scheduler.scan_now()
        await scheduler.wait_for_dispatches()

        assert job_store.get("bad").status == CallStatus.FAILED
        assert job_store.get("crash").status == CallStatus.FAILED
        assert job_store.get("crash").error == "connection reset"
        assert job_store.get("good").status == CallStatus.INITIATED
        assert call_store.get("CA-good").scheduled_call_id == "good"
        assert scheduler.metrics.errors == 1

    @pytest.mark.asyncio
    async def test_failed_job_is_not_retried(self, job_store, call_store, clock, make_job):
        dispatcher = SelectiveDispatcher({"+15551234567": DispatchFailureError("Rejected")})
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.scan_now()
        await scheduler.wait_for_dispatches()
        await scheduler.scan_now()
        await scheduler.wait_for_dispatches()

        assert len(dispatcher.requests) == 1


class TestDispatchNow:
    """Tests for immediate dispatch."""

    @pytest.mark.asyncio
    async def test_dispatch_now_waits_for_result(self, scheduler, job_store, make_job):
        job_store.submit(make_job("r1", in_minutes=0))

        job = await scheduler.dispatch_now("r1")

        assert job.status == CallStatus.INITIATED
        assert job.call_reference_id.startswith("CA")

    @pytest.mark.asyncio
    async def test_dispatch_now_lost_claim(self, scheduler, job_store, make_job):
        job_store.submit(make_job("r1", in_minutes=0))
        job_store.claim("r1")

        assert await scheduler.dispatch_now("r1") is None
        assert scheduler.metrics.claims_lost == 1

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_dispatch(
        self, job_store, call_store, clock, make_job
    ):
        """A client disconnect mid-dispatch still places the call."""
        dispatcher = MockCallDispatcher(delay=0.2)
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        caller = asyncio.create_task(scheduler.dispatch_now("r1"))
        await asyncio.sleep(0.05)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        await scheduler.wait_for_dispatches()

        job = job_store.get("r1")
        assert job.status == CallStatus.INITIATED
        assert len(dispatcher.get_placed_calls()) == 1
        assert call_store.get(job.call_reference_id).scheduled_call_id == "r1"

    @pytest.mark.asyncio
    async def test_cancelled_dispatch_is_recorded_as_failed(
        self, job_store, call_store, clock, make_job
    ):
        dispatcher = MockCallDispatcher(delay=0.2)
        scheduler = CallScheduler(job_store, call_store, dispatcher, clock=clock)
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.scan_now()
        await asyncio.sleep(0.02)
        for task in list(scheduler._in_flight):
            task.cancel()
        await scheduler.wait_for_dispatches()

        job = job_store.get("r1")
        assert job.claimed is True
        assert job.status == CallStatus.FAILED
        assert "cancelled" in job.error


class TestLifecycle:
    """Tests for the background loop."""

    @pytest.mark.asyncio
    async def test_end_to_end_scheduled_call(self, scheduler, job_store, call_store, make_job, clock):
        """A job one second out is initiated after a couple of ticks."""
        job_store.submit(make_job("r1", in_minutes=1 / 60))

        await scheduler.start()
        try:
            await asyncio.sleep(0.06)
            assert job_store.get("r1").status == CallStatus.SCHEDULED

            clock.advance(1_000)
            await asyncio.sleep(0.15)
        finally:
            await scheduler.stop()

        assert scheduler.metrics.polls >= 2

        listed = {job.id: job for job in job_store.list()}
        assert listed["r1"].status == CallStatus.INITIATED
        assert listed["r1"].call_reference_id is not None
        assert call_store.get(listed["r1"].call_reference_id).status == "initiated"

    @pytest.mark.asyncio
    async def test_start_stop_states(self, scheduler):
        assert scheduler.state == SchedulerState.STOPPED

        await scheduler.start()
        assert scheduler.is_running

        await scheduler.stop()
        assert scheduler.state == SchedulerState.STOPPED

    @pytest.mark.asyncio
    async def test_paused_scheduler_does_not_poll(self, scheduler, job_store, dispatcher, make_job):
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.start()
        await scheduler.pause()
        polls = scheduler.metrics.polls
        await asyncio.sleep(0.12)
        placed_while_paused = len(dispatcher.get_placed_calls())
        await scheduler.stop()

        assert scheduler.metrics.polls == polls
        assert placed_while_paused == 0

    @pytest.mark.asyncio
    async def test_stop_waits_for_in_flight_dispatch(self, job_store, call_store, clock, make_job):
        dispatcher = MockCallDispatcher(delay=0.1)
        scheduler = CallScheduler(
            job_store,
            call_store,
            dispatcher,
            config=SchedulerConfig(poll_interval_seconds=0.01),
            clock=clock,
        )
        job_store.submit(make_job("r1", in_minutes=0))

        await scheduler.start()
        await asyncio.sleep(0.03)
        await scheduler.stop()

        assert scheduler.in_flight_count == 0
        assert job_store.get("r1").status == CallStatus.INITIATED

    @pytest.mark.asyncio
    async def test_get_status(self, scheduler):
        status = scheduler.get_status()

        assert status["state"] == "stopped"
        assert status["in_flight"] == 0
        assert "polls" in status["metrics"]
