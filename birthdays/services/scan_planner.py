"""Daily birthday scan.

Decides, once per UTC calendar day, which users get a newly scheduled
birthday message and when it should go out.

A user's 09:00 local can land on the UTC day before their birthday (zones
ahead of UTC, up to UTC+14) or late on the birthday itself (zones behind
UTC, down to UTC-12). The scan for UTC day T therefore looks at birthdays on
T and T+1, resolves each one to its UTC dispatch instant, and keeps only the
ones whose instant falls on T. The other half of the window belongs to
tomorrow's run.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from birthdays.config import get_config
from birthdays.core.datetime_utils import (
    birthday_occurrences,
    date_range,
    parse_send_time,
    resolve_dispatch_instant,
    to_naive_utc,
)
from birthdays.core.exceptions import InvalidTimezone
from birthdays.core.logging import get_logger
from birthdays.schemas.message import BirthdayCandidate, ScheduledMessage
from birthdays.services.schedule_store import ScheduleStore

logger = get_logger(__name__)


@dataclass
class ScanSummary:
    """Result of one daily scan."""

    scan_date: date
    candidate_count: int = 0
    scheduled: list[ScheduledMessage] = field(default_factory=list)
    invalid_user_ids: list[int] = field(default_factory=list)

    @property
    def scheduled_count(self) -> int:
        return len(self.scheduled)


def scan_window(today: date) -> tuple[date, date]:
    """Inclusive birthday range a scan for ``today`` must look at."""
    return today, today + timedelta(days=1)


def plan_scan(
    today: date,
    candidates: Iterable[BirthdayCandidate],
    template_id: int,
    send_time: time,
    invalid_user_ids: list[int] | None = None,
) -> list[ScheduledMessage]:
    """Select the candidates whose dispatch instant falls on the UTC day ``today``.

    A candidate with an unknown timezone is skipped (and its id appended to
    ``invalid_user_ids`` when given); it never aborts the rest of the batch.

    Args:
        today: UTC calendar date of this run
        candidates: Users with a birthday occurrence in the scan window
        template_id: Template to schedule
        send_time: Local wall-clock send time

    Returns:
        One ScheduledMessage per accepted candidate
    """
    accepted = []
    for candidate in candidates:
        try:
            dispatch_at = resolve_dispatch_instant(
                candidate.birth_date, candidate.timezone, send_time
            )
        except InvalidTimezone:
            logger.bind(
                user_id=candidate.user_id,
                timezone=candidate.timezone,
            ).warning("candidate_skipped_invalid_timezone")
            if invalid_user_ids is not None:
                invalid_user_ids.append(candidate.user_id)
            continue

        if dispatch_at.date() != today:
            continue

        accepted.append(
            ScheduledMessage(
                user_id=candidate.user_id,
                template_id=template_id,
                dispatch_at=dispatch_at,
            )
        )
    return accepted


async def run_daily_scan(
    store: ScheduleStore,
    now: datetime,
    template_id: int | None = None,
    send_time: time | None = None,
) -> ScanSummary:
    """Schedule today's birthday messages.

    Idempotent for a given day: the store ignores an upsert for a
    (user, template) pair that already has a message, and the summary only
    counts messages actually written.

    Args:
        store: Schedule store
        now: Current instant; its UTC calendar date is the scan date
        template_id: Template to schedule, defaults to config.yml scan.template_id
        send_time: Local send time, defaults to config.yml scan.send_time_local

    Returns:
        ScanSummary for the run

    Raises:
        StoreUnavailable: If the store fails; nothing after the failure is written
    """
    config = get_config()
    if template_id is None:
        template_id = config.scan.template_id
    if send_time is None:
        send_time = parse_send_time(config.scan.send_time_local)

    today = to_naive_utc(now).date()
    summary = ScanSummary(scan_date=today)
    logger.bind(scan_date=str(today)).info("daily_scan_started")

    start, end = scan_window(today)
    candidates = await store.list_users_with_birthday_in_range(start, end)
    summary.candidate_count = len(candidates)
    if not candidates:
        logger.bind(scan_date=str(today)).info("daily_scan_no_candidates")
        return summary

    planned = plan_scan(today, candidates, template_id, send_time, summary.invalid_user_ids)
    for message in planned:
        written = await store.upsert_pending_message(
            message.user_id,
            message.template_id,
            message.dispatch_at,
            overwrite=False,
        )
        if written:
            summary.scheduled.append(message)

    logger.bind(
        scan_date=str(today),
        candidates=summary.candidate_count,
        scheduled=summary.scheduled_count,
        invalid=len(summary.invalid_user_ids),
    ).info("daily_scan_completed")
    return summary


def _plan_user(
    user_id: int,
    birth_date: date,
    timezone: str,
    today: date,
    template_id: int,
    send_time: time,
) -> ScheduledMessage | None:
    candidates = [
        BirthdayCandidate(user_id=user_id, birth_date=occurrence, timezone=timezone)
        for occurrence in birthday_occurrences(birth_date, date_range(*scan_window(today)))
    ]
    planned = plan_scan(today, candidates, template_id, send_time)
    return planned[0] if planned else None


async def schedule_user(
    store: ScheduleStore,
    user_id: int,
    birth_date: date,
    timezone: str,
    now: datetime,
    template_id: int | None = None,
    send_time: time | None = None,
) -> ScheduledMessage | None:
    """Schedule a newly created user.

    Today's scan may already have run, so a user created during
    the day is scheduled here if today's run is responsible for their
    birthday and the dispatch instant is still ahead. Anything later is left
    to the next daily scan.

    Returns:
        The scheduled message, or None if nothing was scheduled
    """
    config = get_config()
    if template_id is None:
        template_id = config.scan.template_id
    if send_time is None:
        send_time = parse_send_time(config.scan.send_time_local)

    now = to_naive_utc(now)
    message = _plan_user(user_id, birth_date, timezone, now.date(), template_id, send_time)
    if message is None or message.dispatch_at <= now:
        return None

    await store.upsert_pending_message(
        message.user_id, message.template_id, message.dispatch_at, overwrite=True
    )
    logger.bind(user_id=user_id, dispatch_at=str(message.dispatch_at)).info("user_scheduled")
    return message


async def reschedule_user(
    store: ScheduleStore,
    user_id: int,
    birth_date: date,
    timezone: str,
    now: datetime,
    birthday_moved: bool,
    template_id: int | None = None,
    send_time: time | None = None,
) -> ScheduledMessage | None:
    """Re-plan a user's message after their birth date or location changed.

    Three cases, by what today's run would plan for the new record:

    - nothing: if the birthday moved to another day of the year, the pending
      message is cancelled. A location change alone keeps it, since the
      message may belong to yesterday's run and still be due.
    - an instant still ahead: the pending message is moved there, or created
    - an instant already behind: any pending message is left as it is, so a
      greeting that is already due still goes out on the next dispatch pass.
      Nothing new is created, since the greeting may have been delivered.

    Args:
        birthday_moved: Whether the month or day of the birth date changed

    Returns:
        The message now scheduled for today's instant, or None
    """
    config = get_config()
    if template_id is None:
        template_id = config.scan.template_id
    if send_time is None:
        send_time = parse_send_time(config.scan.send_time_local)

    now = to_naive_utc(now)
    message = _plan_user(user_id, birth_date, timezone, now.date(), template_id, send_time)
    if message is None:
        if not birthday_moved:
            return None
        removed = await store.delete_pending_messages_for_user(user_id, template_id)
        logger.bind(user_id=user_id, removed=removed).info("user_unscheduled")
        return None

    if message.dispatch_at <= now:
        logger.bind(user_id=user_id, dispatch_at=str(message.dispatch_at)).info(
            "user_reschedule_kept_due"
        )
        return None

    await store.upsert_pending_message(
        message.user_id, message.template_id, message.dispatch_at, overwrite=True
    )
    logger.bind(user_id=user_id, dispatch_at=str(message.dispatch_at)).info("user_rescheduled")
    return message
