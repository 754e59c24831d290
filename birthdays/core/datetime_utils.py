"""Centralized datetime utilities for consistent timezone handling.

All functions return naive UTC datetimes for database compatibility
(SQLAlchemy models use naive UTC).

Usage:
    from birthdays.core.datetime_utils import resolve_dispatch_instant, utc_now

    # 09:00 local on the user's birthday, as naive UTC
    dispatch_at = resolve_dispatch_instant(date(2025, 1, 1), "Pacific/Kiritimati")
    # -> datetime(2024, 12, 31, 19, 0)
"""

import calendar
from collections.abc import Sequence
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from birthdays.core.exceptions import InvalidTimezone

DEFAULT_SEND_TIME = time(hour=9, minute=0)


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    Replaces deprecated datetime.utcnow().
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    # Convert to UTC and strip timezone
    return dt.astimezone(UTC).replace(tzinfo=None)


def get_zone(tz_name: str) -> ZoneInfo:
    """Load an IANA timezone, raising InvalidTimezone for unknown identifiers."""
    if not tz_name or tz_name != tz_name.strip():
        raise InvalidTimezone(tz_name)
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidTimezone(tz_name) from e


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is valid IANA identifier.

    Args:
        tz_name: Timezone string (e.g., "America/New_York")

    Returns:
        True if valid IANA timezone
    """
    try:
        get_zone(tz_name)
        return True
    except InvalidTimezone:
        return False


def parse_send_time(send_time_local: str) -> time:
    """Parse a send time string (HH:MM) into a time object.

    Args:
        send_time_local: Time in "HH:MM" format (e.g., "09:00")

    Returns:
        time object, defaults to 09:00 if parsing fails
    """
    try:
        parts = send_time_local.split(":")
        return time(hour=int(parts[0]), minute=int(parts[1]))
    except (ValueError, IndexError):
        return DEFAULT_SEND_TIME


def resolve_dispatch_instant(
    day: date,
    timezone: str,
    at: time = DEFAULT_SEND_TIME,
) -> datetime:
    """Convert a civil date at a local wall-clock time into a UTC instant.

    The offset is taken from the zone's rules on that specific date, so DST
    and historical offset changes are honoured. A wall time that falls in a
    DST gap resolves with the pre-transition offset (``fold=0``).

    Args:
        day: Calendar date in the user's timezone
        timezone: IANA timezone identifier (e.g., "Pacific/Niue")
        at: Local wall-clock time, 09:00 by default

    Returns:
        Naive UTC datetime

    Raises:
        InvalidTimezone: If the timezone identifier is not recognised
    """
    zone = get_zone(timezone)
    local = datetime.combine(day, at, tzinfo=zone)
    return to_naive_utc(local)


def date_range(start: date, end: date) -> list[date]:
    """Inclusive list of calendar dates from start to end."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def is_leap_day_observed(day: date) -> bool:
    """True if Feb 29 birthdays are observed on this day (Feb 28, non-leap year)."""
    return (day.month, day.day) == (2, 28) and not calendar.isleap(day.year)


def birthday_occurrences(birth_date: date, days: Sequence[date]) -> list[date]:
    """Return the days on which a birth date's anniversary falls.

    Feb 29 birthdays are observed on Feb 28 in non-leap years.
    """
    occurrences = []
    for day in days:
        if (day.month, day.day) == (birth_date.month, birth_date.day):
            occurrences.append(day)
        elif (birth_date.month, birth_date.day) == (2, 29) and is_leap_day_observed(day):
            occurrences.append(day)
    return occurrences
