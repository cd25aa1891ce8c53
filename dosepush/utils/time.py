"""
Time utilities for the deployment timezone.

Reminder schedules carry a wall-clock time of day with no date; every
"calendar day" computation happens in the configured APP_TIMEZONE.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

TIME_OF_DAY_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)(?::([0-5]\d))?$")


def get_zone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name."""
    return ZoneInfo(name)


def get_current_time(zone: ZoneInfo) -> datetime:
    """Get the current time in the given timezone."""
    return datetime.now(zone)


def to_zone(dt: datetime, zone: ZoneInfo) -> datetime:
    """
    Convert a datetime to the given timezone.

    Args:
        dt: Datetime to convert (can be naive or aware)
        zone: Target timezone

    Returns:
        Aware datetime in the target timezone
    """
    if dt.tzinfo is None:
        # Assume naive datetime is already local wall time
        return dt.replace(tzinfo=zone)
    return dt.astimezone(zone)


def parse_time_of_day(value: str) -> Optional[time]:
    """
    Parse a 24-hour HH:MM or HH:MM:SS string.

    Returns:
        The parsed time, or None if the value is not a valid time of day
    """
    if not isinstance(value, str):
        return None

    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        return None

    hour, minute, second = match.groups()
    return time(int(hour), int(minute), int(second or 0))


def format_time_of_day(value: time) -> str:
    """Format a time of day the way it is stored."""
    return value.strftime("%H:%M:%S")


def day_bounds(day: date, zone: ZoneInfo) -> Tuple[datetime, datetime]:
    """
    Get [start of day, start of next day) as aware datetimes.

    Args:
        day: Calendar day
        zone: Timezone the day is interpreted in
    """
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return start, end


def scheduled_instant(day: date, time_of_day: time, zone: ZoneInfo) -> datetime:
    """The aware instant a schedule is due on the given day."""
    return datetime.combine(day, time_of_day, tzinfo=zone)


def to_local_naive(dt: datetime, zone: ZoneInfo) -> datetime:
    """Local wall time without tzinfo, as stored in the database."""
    return to_zone(dt, zone).replace(tzinfo=None)
