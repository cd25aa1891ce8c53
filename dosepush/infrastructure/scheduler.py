"""
APScheduler setup for the in-process reminder pass.

The job is one more concurrent caller of the resolver; overlap with the cron
endpoint or a manual trigger is made safe by the dispatch ledger.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from dosepush.config.settings import Settings
from dosepush.usecases.reminder_resolver import ReminderResolver

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "process_reminders"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler(timezone: str = "UTC") -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        scheduler = AsyncIOScheduler(timezone=timezone)

    return scheduler


async def run_reminder_pass(resolver: ReminderResolver, deadline: Optional[float] = None) -> None:
    """
    Run one unrestricted reminder pass.

    This function is called by the scheduler every interval.
    """
    try:
        result = await resolver.resolve_due(deadline=deadline)
        if result.due:
            logger.info(f"Scheduled reminder pass dispatched {result.due} schedule(s), {result.sent} sent")
    except Exception as e:
        logger.exception(f"Scheduled reminder pass failed: {e}")


async def start_scheduler(settings: Settings, resolver: ReminderResolver) -> None:
    """Start the scheduler with the reminder job, if enabled."""
    if not settings.scheduler_enabled:
        logger.info("Reminder scheduler disabled via settings (SCHEDULER_ENABLED=false)")
        return

    sched = get_scheduler(settings.app_timezone)
    sched.add_job(
        run_reminder_pass,
        trigger=IntervalTrigger(seconds=settings.reminder_interval_seconds),
        id=REMINDER_JOB_ID,
        replace_existing=True,
        max_instances=1,  # never overlap with itself
        coalesce=True,  # merge missed runs
        kwargs={
            "resolver": resolver,
            "deadline": settings.batch_deadline_seconds,
        },
    )

    if not sched.running:
        sched.start()
        logger.info(f"Scheduler started: reminder pass every {settings.reminder_interval_seconds}s")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None
