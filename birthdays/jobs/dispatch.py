"""
Dispatch pass job.

Run with: python -m birthdays.jobs.dispatch
Options:
  --concurrency N   Concurrent deliveries (default: EMAIL_SERVICE_CONCURRENCY)

Claims every pending message that is due, sends it to the email service,
then deletes delivered messages and returns failed ones to the queue.
"""

import argparse
import asyncio

from birthdays.core.database import AsyncSessionLocal
from birthdays.core.datetime_utils import utc_now
from birthdays.core.logging import get_logger, setup_logging
from birthdays.services.delivery import open_delivery_engine
from birthdays.services.message_lifecycle import DispatchSummary, run_dispatch_pass
from birthdays.services.schedule_store import SqlScheduleStore

logger = get_logger(__name__)


async def main(concurrency: int | None = None) -> DispatchSummary:
    """Run one dispatch pass."""
    setup_logging()

    async with AsyncSessionLocal() as db, open_delivery_engine() as engine:
        try:
            summary = await run_dispatch_pass(
                SqlScheduleStore(db), engine, utc_now(), concurrency=concurrency
            )
        except Exception as e:
            logger.bind(error=str(e)).error("dispatch_job_failed")
            raise

    print(f"\nDispatch Results at {summary.dispatched_at:%Y-%m-%d %H:%M:%S} UTC")
    print("-" * 40)
    for message_id in summary.sent_ids:
        print(f"  [OK] message {message_id}")
    for message_id in summary.failed_ids:
        print(f"  [FAILED] message {message_id}")
    if summary.released:
        print(f"  {summary.released} stale claims released")
    print(f"\n{summary.sent}/{summary.claimed} messages sent")
    return summary


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Deliver due birthday messages")
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Number of concurrent deliveries",
    )
    args = parser.parse_args()

    asyncio.run(main(concurrency=args.concurrency))
