"""
Background scheduler for payment reconciliation.

WHY: Pending payments have to be settled even when nobody is looking at
them. An M-Pesa prompt approved after the customer closed the page, or a
webhook Paystack never delivered, is only caught by this periodic job.

HOW: One AsyncIOScheduler on the application's event loop. Reconciliation
applies payments through the same reference-checked path as the webhook,
so overlapping or repeated runs are harmless; the schedule itself lives in
memory and is rebuilt on every start.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from boinvit.core.config import settings
from boinvit.services.payment_polling import get_reconciliation_service

logger = logging.getLogger(__name__)


RECONCILE_JOB_ID = "payment_reconciliation"

# Let the app finish starting before the first sweep
FIRST_RUN_DELAY = timedelta(seconds=10)

_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    return _scheduler


async def _reconcile_job() -> dict:
    counts = await get_reconciliation_service().reconcile_pending()
    if counts.get("checked"):
        logger.info(f"Payment reconciliation: {counts}")
    return counts


def _on_job_error(event: JobExecutionEvent) -> None:
    logger.error(f"Scheduled job {event.job_id} failed: {event.exception!r}")


async def start_scheduler() -> None:
    """
    Start the scheduler and register reconciliation.

    Calling it again while running is a no-op.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        # A slow Paystack must never stack up overlapping sweeps
        job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 60},
        timezone="UTC",
    )
    _scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    _scheduler.add_job(
        _reconcile_job,
        trigger=IntervalTrigger(seconds=settings.PAYMENT_RECONCILE_INTERVAL_SECONDS),
        id=RECONCILE_JOB_ID,
        name="Payment Reconciliation",
        next_run_time=datetime.utcnow() + FIRST_RUN_DELAY,
        replace_existing=True,
    )
    _scheduler.start()

    logger.info(
        f"Scheduler started; reconciling pending payments every "
        f"{settings.PAYMENT_RECONCILE_INTERVAL_SECONDS}s"
    )


async def shutdown_scheduler() -> None:
    global _scheduler

    if _scheduler is None:
        return

    if _scheduler.running:
        _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Scheduler stopped")


async def run_reconciliation_now() -> dict:
    """Run one reconciliation sweep outside the schedule."""
    return await _reconcile_job()


def get_scheduler_status() -> dict:
    """Running flag and registered jobs, for /health."""
    if _scheduler is None:
        return {"running": False, "jobs": [], "message": "Scheduler not initialized"}

    return {
        "running": _scheduler.running,
        "jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
                "trigger": str(job.trigger),
            }
            for job in _scheduler.get_jobs()
        ],
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
