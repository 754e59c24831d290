"""
Daily scan job.

Run with: python -m birthdays.jobs.scan
Options:
  --date DATE   Scan as if the current UTC day were DATE (default: today)

This job:
1. Finds users with a birthday today or tomorrow
2. Resolves each birthday to 09:00 local time in UTC
3. Schedules the ones due on the current UTC day
"""

import argparse
import asyncio
from datetime import date, datetime, time

from birthdays.core.database import AsyncSessionLocal
from birthdays.core.datetime_utils import utc_now
from birthdays.core.logging import get_logger, setup_logging
from birthdays.services.scan_planner import ScanSummary, run_daily_scan
from birthdays.services.schedule_store import SqlScheduleStore

logger = get_logger(__name__)


async def main(scan_date: date | None = None) -> ScanSummary:
    """Run the daily scan job."""
    setup_logging()
    now = datetime.combine(scan_date, time.min) if scan_date else utc_now()

    async with AsyncSessionLocal() as db:
        try:
            summary = await run_daily_scan(SqlScheduleStore(db), now)
        except Exception as e:
            logger.bind(error=str(e)).error("scan_job_failed")
            raise

    print(f"\nScan Results for {summary.scan_date}")
    print("-" * 40)
    for message in summary.scheduled:
        print(f"  user {message.user_id}: {message.dispatch_at:%Y-%m-%d %H:%M:%S} UTC")
    for user_id in summary.invalid_user_ids:
        print(f"  user {user_id}: skipped (invalid timezone)")
    print(f"\n{summary.scheduled_count}/{summary.candidate_count} candidates scheduled")
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Schedule today's birthday messages")
    parser.add_argument(
        "--date",
        type=lambda s: datetime.strptime(s, "%Y-%m-%d").date(),
        default=None,
        help="Scan date (YYYY-MM-DD). Default: today (UTC)",
    )
    args = parser.parse_args()

    asyncio.run(main(scan_date=args.date))
