"""Tests for the retention policy and cleanup service."""

from __future__ import annotations

import asyncio

import pytest

from reminder_dispatch.config import RetentionSettings
from reminder_dispatch.core.models import ActiveCall, CallStatus, HOUR_MS, MINUTE_MS
from reminder_dispatch.services.retention import (
    EvictionReason,
    RetentionPolicy,
    RetentionScheduler,
    RetentionService,
)


@pytest.fixture
def retention(job_store, call_store, clock) -> RetentionService:
    return RetentionService(job_store, call_store, RetentionPolicy(), clock=clock)


def _record_call(call_store, ref: str) -> ActiveCall:
    return call_store.record(ActiveCall(
        call_reference_id=ref,
        destination="+15551234567",
        title="Take medicine",
        scheduled_call_id=None,
    ))


class TestScheduledAgeRules:
    """Tests for age-based eviction of scheduled calls."""

    def test_claimed_job_61_minutes_old_is_evicted(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("claimed", in_minutes=0))
        job_store.claim("claimed")
        clock.advance_minutes(61)

        report = retention.run_cleanup()

        assert len(job_store) == 0
        assert report.scheduled.evicted == {"claimed_aged": 1}

    def test_claimed_job_59_minutes_old_is_kept(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("claimed", in_minutes=0))
        job_store.claim("claimed")
        clock.advance_minutes(59)

        retention.run_cleanup()

        assert len(job_store) == 1

    def test_unclaimed_job_23_hours_old_is_kept(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("unclaimed", in_minutes=0))
        clock.advance(23 * HOUR_MS)

        retention.run_cleanup()

        assert job_store.get("unclaimed").claimed is False

    def test_job_25_hours_old_is_evicted_regardless_of_status(
        self, retention, job_store, make_job, clock
    ):
        job_store.submit(make_job("unclaimed", in_minutes=0))
        job_store.submit(make_job("acked", in_minutes=0))
        job_store.update("acked", status=CallStatus.ACKNOWLEDGED)
        clock.advance(25 * HOUR_MS)

        report = retention.run_cleanup()

        assert len(job_store) == 0
        assert report.scheduled.evicted == {"expired": 2}

    def test_failed_job_over_an_hour_old_is_evicted(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("failed", in_minutes=0))
        job_store.update("failed", status=CallStatus.FAILED, error="Rejected")
        clock.advance_minutes(61)

        report = retention.run_cleanup()

        assert len(job_store) == 0
        assert report.scheduled.evicted == {"failed_aged": 1}

    def test_future_jobs_are_kept(self, retention, job_store, make_job):
        job_store.submit(make_job("future", in_minutes=60 * 48))

        retention.run_cleanup()

        assert len(job_store) == 1

    def test_dry_run_reports_without_evicting(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("old", in_minutes=0))
        clock.advance(25 * HOUR_MS)

        report = retention.run_cleanup(dry_run=True)

        assert report.total_evicted == 1
        assert len(job_store) == 1


class TestHardCaps:
    """Tests for count-based eviction."""

    def test_scheduled_cap_prefers_claimed(self, retention, job_store, make_job, clock):
        """1001 jobs are trimmed to 1000, claimed ones going first."""
        for i in range(1001):
            job_store.submit(make_job(f"job-{i:04d}", in_minutes=10 + i))
        # Claim the latest two; they still go before any unclaimed job
        job_store.claim("job-1000")
        job_store.claim("job-0999")

        report = retention.run_cleanup()

        assert len(job_store) <= 1000
        assert report.scheduled.evicted == {"over_capacity": 1}
        remaining = {job.id for job in job_store.list()}
        assert "job-0999" not in remaining
        assert "job-1000" in remaining
        assert "job-0000" in remaining

    def test_scheduled_cap_continues_into_unclaimed_oldest_first(
        self, job_store, call_store, make_job, clock
    ):
        policy = RetentionPolicy(max_scheduled_calls=3)
        retention = RetentionService(job_store, call_store, policy, clock=clock)
        for i in range(5):
            job_store.submit(make_job(f"job-{i}", in_minutes=10 + i))
        job_store.claim("job-4")

        retention.run_cleanup()

        assert sorted(job.id for job in job_store.list()) == ["job-1", "job-2", "job-3"]

    def test_active_cap_evicts_oldest_by_creation(self, job_store, call_store, clock):
        policy = RetentionPolicy(max_active_calls=2)
        retention = RetentionService(job_store, call_store, policy, clock=clock)
        for ref in ("CA1", "CA2", "CA3"):
            _record_call(call_store, ref)
            clock.advance(1_000)

        report = retention.run_cleanup()

        assert sorted(call.call_reference_id for call in call_store.list()) == ["CA2", "CA3"]
        assert report.active.evicted == {"over_capacity": 1}


class TestActiveAgeRule:
    """Tests for age-based eviction of active calls."""

    def test_active_call_older_than_two_hours_is_evicted(self, retention, call_store, clock):
        _record_call(call_store, "CA-old")
        clock.advance(2 * HOUR_MS + 1)
        _record_call(call_store, "CA-new")

        retention.run_cleanup()

        assert [c.call_reference_id for c in call_store.list()] == ["CA-new"]

    def test_active_call_exactly_two_hours_old_is_kept(self, retention, call_store, clock):
        _record_call(call_store, "CA1")
        clock.advance(2 * HOUR_MS)

        retention.run_cleanup()

        assert len(call_store) == 1


class TestPolicy:
    """Tests for policy construction and selection."""

    def test_from_settings(self):
        policy = RetentionPolicy.from_settings(RetentionSettings(
            claimed_max_age_minutes=30,
            max_scheduled_calls=10,
        ))

        assert policy.claimed_max_age_ms == 30 * MINUTE_MS
        assert policy.scheduled_max_age_ms == 24 * HOUR_MS
        assert policy.max_scheduled_calls == 10
        assert policy.max_active_calls == 500

    def test_report_to_dict(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("old", in_minutes=0))
        clock.advance(25 * HOUR_MS)

        data = retention.run_cleanup().to_dict()

        assert data["total_evicted"] == 1
        assert data["results"][0]["by_reason"] == {EvictionReason.EXPIRED.value: 1}


class TestRetentionScheduler:
    """Tests for the periodic cleanup task."""

    @pytest.mark.asyncio
    async def test_runs_periodically(self, retention, job_store, make_job, clock):
        job_store.submit(make_job("old", in_minutes=0))
        clock.advance(25 * HOUR_MS)

        scheduler = RetentionScheduler(retention, interval_seconds=0.02)
        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert len(job_store) == 0
        assert scheduler.last_report is not None
        assert not scheduler.is_running
