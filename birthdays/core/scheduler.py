"""
APScheduler integration for FastAPI.

Runs the two recurring passes in-process:

Jobs:
- Daily scan: schedules today's birthday messages (00:00 UTC by default)
- Dispatch pass: claims and delivers due messages (every 15 min by default)

Both passes are safe to overlap with themselves and with each other; the
scheduler only decides when they run.
"""

from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from birthdays.config import get_config, get_settings
from birthdays.core.database import AsyncSessionLocal
from birthdays.core.datetime_utils import utc_now
from birthdays.core.logging import get_logger
from birthdays.services.delivery import open_delivery_engine
from birthdays.services.message_lifecycle import run_dispatch_pass
from birthdays.services.scan_planner import run_daily_scan
from birthdays.services.schedule_store import SqlScheduleStore

logger = get_logger(__name__)

DAILY_SCAN_ID = "daily_scan"
DISPATCH_PASS_ID = "dispatch_pass"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def daily_scan_job() -> None:
    """Daily scan job - schedules birthday messages due on the current UTC day."""
    logger.info("scheduled_daily_scan_started")
    async with AsyncSessionLocal() as db:
        try:
            summary = await run_daily_scan(SqlScheduleStore(db), utc_now())
            logger.bind(
                scan_date=str(summary.scan_date),
                scheduled=summary.scheduled_count,
            ).info("scheduled_daily_scan_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_daily_scan_failed")
            raise  # Re-raise so APScheduler records the failure


async def dispatch_pass_job() -> None:
    """Dispatch pass job - delivers every pending message that is due."""
    logger.debug("scheduled_dispatch_pass_started")
    async with AsyncSessionLocal() as db, open_delivery_engine() as engine:
        try:
            summary = await run_dispatch_pass(SqlScheduleStore(db), engine, utc_now())
            if summary.claimed:
                logger.bind(
                    claimed=summary.claimed,
                    sent=summary.sent,
                    failed=summary.failed,
                ).info("scheduled_dispatch_pass_completed")
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_dispatch_pass_failed")
            raise


async def _on_job_released(event: Any) -> None:
    """Log failed job runs."""
    if isinstance(event, JobReleased) and event.outcome == JobOutcome.error:
        exception = getattr(event, "exception", None)
        logger.bind(
            schedule_id=event.schedule_id or "unknown",
            error=str(exception) if exception else None,
        ).warning("scheduled_job_errored")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    config = get_config()

    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_released)

    await scheduler.add_schedule(
        daily_scan_job,
        CronTrigger(hour=config.scan.cron_hour, minute=config.scan.cron_minute, timezone="UTC"),
        id=DAILY_SCAN_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.add_schedule(
        dispatch_pass_job,
        CronTrigger(minute=config.dispatch.cron_minute, timezone="UTC"),
        id=DISPATCH_PASS_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    # Start the scheduler's background worker to actually process jobs
    await scheduler.start_in_background()

    logger.bind(jobs=[DAILY_SCAN_ID, DISPATCH_PASS_ID]).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]
