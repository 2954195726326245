from __future__ import annotations

from datetime import date, datetime, timedelta

WEEK = timedelta(weeks=1)


def get_monday(reference: date | datetime) -> datetime:
    """Monday 00:00 of the calendar week containing ``reference``."""
    if not isinstance(reference, datetime):
        reference = datetime.combine(reference, datetime.min.time())
    # isoweekday: Monday=1 .. Sunday=7, so Sunday-based weekday is isoweekday % 7
    day_offset = (reference.isoweekday() % 7 + 6) % 7
    monday = reference - timedelta(days=day_offset)
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def week_range(reference: date | datetime) -> tuple[datetime, datetime]:
    """Return the half-open [monday, next monday) window around ``reference``."""
    monday = get_monday(reference)
    return monday, monday + WEEK


def shift_week(week_start: datetime, weeks: int) -> datetime:
    """Move a week start forwards (or backwards for negative ``weeks``)."""
    return get_monday(week_start) + timedelta(weeks=weeks)


def week_days(week_start: datetime) -> list[date]:
    monday = get_monday(week_start)
    return [(monday + timedelta(days=offset)).date() for offset in range(7)]
