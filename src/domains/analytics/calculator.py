# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Shared numeric helpers for the metric calculators.

All helpers are pure. Functions returning ``float | None`` use None for
not-applicable results (empty input, zero denominator) instead of 0.
"""

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from src.domains.analytics.models import AttendanceEntry, AttendanceStatus, ProgressEntry
from src.domains.analytics.policy import AnalyticsPolicy
from src.domains.analytics.schemas import TimeRange


def round2(value: float) -> float:
    """Round to two decimals, the precision every metric is reported at."""
    return round(value, 2)


def round_optional(value: float | None) -> float | None:
    return None if value is None else round2(value)


def clamp(value: float, lower: float = 0.0, upper: float = 100.0) -> float:
    return max(lower, min(upper, value))


def mean(values: Iterable[float]) -> float | None:
    items = list(values)
    if not items:
        return None
    return math.fsum(items) / len(items)


def mean_present(values: Iterable[float | None]) -> float | None:
    """Mean of the non-None values, None if there are none."""
    return mean(v for v in values if v is not None)


def variance(values: Sequence[float]) -> float | None:
    """Population variance."""
    avg = mean(values)
    if avg is None:
        return None
    return math.fsum((v - avg) ** 2 for v in values) / len(values)


def percentage(part: float, total: float) -> float | None:
    if total <= 0:
        return None
    return part / total * 100


def entry_pages(entry: ProgressEntry, policy: AnalyticsPolicy) -> float:
    """Pages covered by one progress entry.

    Uses pages_memorized when recorded, otherwise converts a verse count
    (explicit, or derived from the ayat range) with ``verses_per_page``.
    """
    if entry.pages_memorized is not None:
        return max(0.0, entry.pages_memorized)
    if entry.verses_memorized is not None:
        return max(0, entry.verses_memorized) / policy.verses_per_page
    if entry.start_ayat is not None and entry.end_ayat is not None and entry.end_ayat >= entry.start_ayat:
        return (entry.end_ayat - entry.start_ayat + 1) / policy.verses_per_page
    return 0.0


def entries_between(
    entries: Iterable[ProgressEntry],
    start: datetime,
    end: datetime,
) -> list[ProgressEntry]:
    """Entries whose lesson time falls in ``[start, end]``."""
    return [e for e in entries if start <= e.occurred_at <= end]


def whole_days_between(start: datetime, end: datetime) -> int:
    return max(0, (end - start).days)


def longest_absence_streak(attendance: Iterable[AttendanceEntry]) -> int:
    """Longest run of consecutive absent records in chronological order."""
    longest = current = 0
    for entry in sorted(attendance, key=lambda a: (a.occurred_at, a.id)):
        if entry.status == AttendanceStatus.ABSENT:
            current += 1
            longest = max(longest, current)
        else:
            current = 0
    return longest


def weighted_score(factors: dict[str, float | None], weights: dict[str, float]) -> float | None:
    """Weighted mean over the factors that are available.

    Factors that are None are dropped and the remaining weights are
    renormalized, so a missing input neither raises nor lowers the score.
    """
    total_weight = 0.0
    total = 0.0
    for name, value in factors.items():
        weight = weights.get(name, 0.0)
        if value is None or weight <= 0:
            continue
        total += value * weight
        total_weight += weight
    if total_weight == 0:
        return None
    return total / total_weight


_WEEKDAYS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def weekday_key(name: str) -> str | None:
    """Normalize a weekday name ("Monday", "mon", "MON") to a 3-letter key."""
    key = name.strip().lower()[:3]
    return key if key in _WEEKDAYS else None


def scheduled_dates(days: Iterable[str], time_range: TimeRange) -> list[date]:
    """Calendar dates within the range that fall on one of the given weekdays."""
    keys = {weekday_key(d) for d in days} - {None}
    if not keys:
        return []
    result: list[date] = []
    day = time_range.from_.date()
    end = time_range.to.date()
    while day <= end:
        if _WEEKDAYS[day.weekday()] in keys:
            result.append(day)
        day += timedelta(days=1)
    return result


def weeks_in_range(time_range: TimeRange) -> int:
    """Number of (partial) weeks spanned by the range, at least one."""
    return max(1, math.ceil(time_range.days / 7))
