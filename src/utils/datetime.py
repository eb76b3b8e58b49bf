# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for the analytics engine.

All datetimes handled by the engine are timezone-aware UTC. Records coming
from the backend may carry naive timestamps or bare dates; these helpers
normalize them before any comparison so naive/aware mixing never happens.

Usage:
------
    from src.utils.datetime import utc_now, subtract_months, floor_to_interval

    now = utc_now()
    year_ago = subtract_months(now, 12)
    bucket_start = floor_to_interval(now, 300)
"""

from datetime import date, datetime, time, timedelta, timezone

from dateutil.relativedelta import relativedelta

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        Naive datetimes are assumed to already be in UTC.
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def as_utc_datetime(value: date | datetime | None) -> datetime | None:
    """Coerce a date or datetime to an aware UTC datetime.

    Bare dates map to midnight UTC of that day.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def start_of_day(dt: datetime) -> datetime:
    """Truncate an aware datetime to 00:00:00 UTC of the same day."""
    return ensure_utc(dt).replace(hour=0, minute=0, second=0, microsecond=0)


def subtract_months(dt: datetime, months: int) -> datetime:
    """Move a datetime back by whole calendar months.

    The day of month is clamped to the length of the target month, so
    March 31 minus one month is the last day of February.

    Args:
        dt: Datetime to shift.
        months: Number of months to go back.

    Returns:
        Shifted datetime with the same time of day and tzinfo.
    """
    return dt - relativedelta(months=months)


def floor_to_interval(dt: datetime, seconds: float) -> datetime:
    """Truncate an aware datetime to a multiple of seconds since the epoch.

    Example:
        floor_to_interval(datetime(2025, 1, 29, 0, 3, 7, tzinfo=UTC), 300)
        # 2025-01-29 00:00:00+00:00
    """
    step = timedelta(seconds=seconds)
    return _EPOCH + (ensure_utc(dt) - _EPOCH) // step * step


def days_between(start: datetime, end: datetime) -> float:
    """Fractional days from start to end (negative if end is earlier)."""
    return (ensure_utc(end) - ensure_utc(start)) / timedelta(days=1)

