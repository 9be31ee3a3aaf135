"""Business-day arithmetic used to turn a date range into a balance charge."""

from __future__ import annotations

from datetime import date, timedelta

# 0=Mon … 6=Sun
WEEKEND_DAYS: frozenset[int] = frozenset({5, 6})


def business_days_between(start: date, end: date) -> int:
    """Inclusive count of Mon–Fri days in ``[start, end]``; 0 if ``end < start``.

    Holidays are not modeled, only weekends are excluded.
    """
    if end < start:
        return 0

    total_days = (end - start).days + 1
    full_weeks, remainder = divmod(total_days, 7)
    count = full_weeks * 5

    current = start + timedelta(days=full_weeks * 7)
    for _ in range(remainder):
        if current.weekday() not in WEEKEND_DAYS:
            count += 1
        current += timedelta(days=1)
    return count
