"""
Unit tests for the background job scheduler.

WHAT: Tests job registration, lifecycle and the scheduled entry points.
"""

import pytest
from unittest.mock import AsyncMock, patch

from seatsync.core.exceptions import ConfigurationError
from seatsync.services import scheduler
from seatsync.services.scheduler import (
    PENDING_CHANGES_JOB_ID,
    RECONCILIATION_JOB_ID,
    get_scheduler,
    get_scheduler_status,
    run_pending_changes,
    run_reconciliation,
    shutdown_scheduler,
    start_scheduler,
)


@pytest.mark.asyncio
class TestSchedulerLifecycle:
    async def test_status_before_start(self):
        status = get_scheduler_status()

        assert status["running"] is False
        assert status["message"] == "Scheduler not initialized"

    async def test_start_registers_both_jobs(self):
        try:
            await start_scheduler()

            assert get_scheduler().running is True
            status = get_scheduler_status()
            job_ids = {job["id"] for job in status["jobs"]}
            assert job_ids == {PENDING_CHANGES_JOB_ID, RECONCILIATION_JOB_ID}
            assert status["message"] == "Scheduler is running"
        finally:
            await shutdown_scheduler()

        assert get_scheduler() is None

    async def test_start_twice_keeps_one_scheduler(self):
        try:
            await start_scheduler()
            first = get_scheduler()
            await start_scheduler()
            assert get_scheduler() is first
        finally:
            await shutdown_scheduler()

    async def test_shutdown_when_not_running(self):
        await shutdown_scheduler()
        assert scheduler._scheduler is None


@pytest.mark.asyncio
class TestScheduledEntryPoints:
    async def test_pending_changes_returns_summary(self):
        with patch.object(scheduler, "PendingChangesJob") as job_class:
            job_class.return_value.run = AsyncMock(return_value={"processed": 2})

            assert await run_pending_changes() == {"processed": 2}

    async def test_pending_changes_error_logged_not_raised(self):
        with patch.object(scheduler, "PendingChangesJob") as job_class:
            job_class.return_value.run = AsyncMock(
                side_effect=ConfigurationError(message="LemonSqueezy API key is not configured")
            )

            assert await run_pending_changes() is None

    async def test_reconciliation_error_logged_not_raised(self):
        with patch.object(scheduler, "ReconciliationJob") as job_class:
            job_class.return_value.run = AsyncMock(side_effect=ConfigurationError())

            assert await run_reconciliation() is None
