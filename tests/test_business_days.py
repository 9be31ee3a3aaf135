"""Business-day counting."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from leave_ledger.leave.business_days import business_days_between


def _naive_count(start: date, end: date) -> int:
    days = 0
    current = start
    while current <= end:
        if current.weekday() < 5:
            days += 1
        current += timedelta(days=1)
    return days


class TestBusinessDaysBetween:
    def test_monday_to_friday(self):
        assert business_days_between(date(2026, 3, 2), date(2026, 3, 6)) == 5

    def test_weekend_only(self):
        assert business_days_between(date(2026, 3, 7), date(2026, 3, 8)) == 0

    def test_friday_to_monday(self):
        assert business_days_between(date(2026, 3, 6), date(2026, 3, 9)) == 2

    def test_single_weekday(self):
        assert business_days_between(date(2026, 3, 4), date(2026, 3, 4)) == 1

    def test_single_saturday(self):
        assert business_days_between(date(2026, 3, 7), date(2026, 3, 7)) == 0

    def test_inverted_range_is_zero(self):
        assert business_days_between(date(2026, 3, 6), date(2026, 3, 2)) == 0

    def test_two_full_weeks(self):
        assert business_days_between(date(2026, 3, 2), date(2026, 3, 15)) == 10

    def test_spans_year_boundary(self):
        """Wed 30 Dec – Sat 2 Jan counts Wed, Thu, Fri."""
        assert business_days_between(date(2026, 12, 30), date(2027, 1, 2)) == 3

    @pytest.mark.parametrize("offset", range(7))
    @pytest.mark.parametrize("length", [0, 1, 6, 7, 8, 13, 30, 366])
    def test_matches_day_by_day_count(self, offset, length):
        start = date(2026, 3, 2) + timedelta(days=offset)
        end = start + timedelta(days=length)
        assert business_days_between(start, end) == _naive_count(start, end)
