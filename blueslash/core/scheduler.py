"""Scheduler for the periodic reminder sweep."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from blueslash.core.context import AppContext
from blueslash.services import reminder_service


logger = logging.getLogger(__name__)

REMINDER_SWEEP_JOB_ID = "reminder_sweep"


class JobTracker:
    """In-process record of job runs, surfaced on the health endpoint."""

    def __init__(self) -> None:
        self._status: dict[str, dict[str, Any]] = {}

    def record_job_start(self, job_name: str) -> None:
        entry = self._status.setdefault(job_name, {"consecutive_failures": 0})
        entry["last_start"] = datetime.now(UTC).isoformat()

    def record_job_success(self, job_name: str) -> None:
        entry = self._status.setdefault(job_name, {})
        entry["last_success"] = datetime.now(UTC).isoformat()
        entry["consecutive_failures"] = 0
        entry.pop("last_error", None)

    def record_job_failure(self, job_name: str, error: str) -> int:
        entry = self._status.setdefault(job_name, {"consecutive_failures": 0})
        entry["last_failure"] = datetime.now(UTC).isoformat()
        entry["last_error"] = error
        entry["consecutive_failures"] = entry.get("consecutive_failures", 0) + 1
        return entry["consecutive_failures"]

    def get_job_status(self, job_name: str) -> dict[str, Any]:
        return dict(self._status.get(job_name, {}))


job_tracker = JobTracker()


async def retry_job_with_backoff(
    job_func: Callable[[], Awaitable[Any]],
    job_name: str,
    max_retries: int = 3,
    base_delay: float = 2.0,
) -> None:
    """Execute job with retry logic and exponential backoff.

    Args:
        job_func: Async function to execute
        job_name: Name of the job for tracking
        max_retries: Maximum number of retry attempts
        base_delay: Base delay in seconds for exponential backoff
    """
    job_tracker.record_job_start(job_name)

    last_error = None
    for attempt in range(max_retries):
        try:
            logger.info("Executing %s (attempt %d/%d)", job_name, attempt + 1, max_retries)
            await job_func()
            job_tracker.record_job_success(job_name)
            logger.info("%s completed successfully", job_name)
            return
        except Exception as e:
            last_error = str(e)
            logger.error("%s failed on attempt %d/%d: %s", job_name, attempt + 1, max_retries, last_error)
            if attempt < max_retries - 1:
                delay = base_delay**attempt
                logger.info("Retrying %s in %.1fs", job_name, delay)
                await asyncio.sleep(delay)

    error_msg = f"Failed after {max_retries} attempts: {last_error}"
    consecutive_failures = job_tracker.record_job_failure(job_name, error_msg)
    logger.error(
        "%s failed after all retry attempts",
        job_name,
        extra={"error": error_msg, "consecutive_failures": consecutive_failures},
    )


async def run_reminder_sweep(ctx: AppContext) -> None:
    """Scheduled entry point: deliver due reminders, retrying on failure."""
    await retry_job_with_backoff(lambda: reminder_service.process_due_reminders(ctx), REMINDER_SWEEP_JOB_ID)


def start_scheduler(ctx: AppContext) -> AsyncIOScheduler:
    """Create a scheduler bound to the running loop, register the reminder sweep and start it.

    Called from the FastAPI lifespan on startup.
    """
    scheduler = AsyncIOScheduler(timezone=UTC)
    cron = ctx.settings.reminder_sweep_cron
    scheduler.add_job(
        run_reminder_sweep,
        args=[ctx],
        trigger=CronTrigger.from_crontab(cron, timezone=UTC),
        id=REMINDER_SWEEP_JOB_ID,
        name="Deliver Due Task Reminders",
        replace_existing=True,
    )
    logger.info("Scheduled reminder sweep job: %s", cron)

    scheduler.start()
    logger.info("Scheduler started successfully")
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler on application shutdown."""
    if not scheduler.running:
        return
    logger.info("Stopping scheduler")
    scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")
