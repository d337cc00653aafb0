"""
Unit tests for the background scheduler.

WHY: If the reconciliation job is not registered, pending M-Pesa payments
whose webhook was lost stay pending forever.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from boinvit.services import scheduler as scheduler_module
from boinvit.services.scheduler import (
    RECONCILE_JOB_ID,
    get_scheduler,
    get_scheduler_status,
    run_reconciliation_now,
    shutdown_scheduler,
    start_scheduler,
)


@pytest.fixture
def reconciliation(monkeypatch):
    service = MagicMock()
    service.reconcile_pending = AsyncMock(return_value={"checked": 2, "completed": 1})
    monkeypatch.setattr(scheduler_module, "get_reconciliation_service", lambda: service)
    return service


class TestScheduler:
    def test_status_before_start(self):
        status = get_scheduler_status()

        assert status["running"] is False
        assert status["message"] == "Scheduler not initialized"

    @pytest.mark.asyncio
    async def test_start_registers_reconciliation(self, reconciliation):
        await start_scheduler()
        try:
            scheduler = get_scheduler()
            job = scheduler.get_job(RECONCILE_JOB_ID)

            assert scheduler.running is True
            assert job is not None
            assert job.name == "Payment Reconciliation"
            assert job.trigger.interval.total_seconds() == 60

            status = get_scheduler_status()
            assert status["running"] is True
            assert [j["id"] for j in status["jobs"]] == [RECONCILE_JOB_ID]
        finally:
            await shutdown_scheduler()

        assert get_scheduler() is None

    @pytest.mark.asyncio
    async def test_start_twice_keeps_one_scheduler(self, reconciliation):
        await start_scheduler()
        try:
            first = get_scheduler()
            await start_scheduler()

            assert get_scheduler() is first
            assert len(first.get_jobs()) == 1
        finally:
            await shutdown_scheduler()

    @pytest.mark.asyncio
    async def test_shutdown_without_start(self):
        await shutdown_scheduler()

        assert get_scheduler() is None

    @pytest.mark.asyncio
    async def test_run_now(self, reconciliation):
        counts = await run_reconciliation_now()

        assert counts == {"checked": 2, "completed": 1}
        reconciliation.reconcile_pending.assert_awaited_once()
