"""
Deadline calculator tests: business/calendar day arithmetic and overdue rule.
"""

from datetime import date, datetime, timezone

import pytest

from grievance_engine.core.exceptions import ErrorKind, InvalidArgumentError
from grievance_engine.services.deadline_calculator import (
    add_business_days,
    compute_due_date,
    days_remaining,
    is_overdue,
)

MONDAY = datetime(2025, 12, 1, 9, 30, tzinfo=timezone.utc)


class TestComputeDueDate:
    def test_business_days_skip_weekend(self):
        assert compute_due_date(MONDAY, 5, calendar_days=False).date() == date(2025, 12, 8)

    def test_calendar_days(self):
        assert compute_due_date(MONDAY, 5, calendar_days=True).date() == date(2025, 12, 6)

    def test_time_of_day_preserved(self):
        due = compute_due_date(MONDAY, 3, calendar_days=False)
        assert (due.hour, due.minute, due.tzinfo) == (9, 30, timezone.utc)

    def test_zero_days_returns_anchor(self):
        assert compute_due_date(MONDAY, 0, calendar_days=False) == MONDAY
        assert compute_due_date(MONDAY, 0, calendar_days=True) == MONDAY

    def test_negative_days_rejected(self):
        with pytest.raises(InvalidArgumentError) as exc:
            compute_due_date(MONDAY, -1, calendar_days=False)
        assert exc.value.kind == ErrorKind.INVALID_ARGUMENT

    def test_deterministic(self):
        assert compute_due_date(MONDAY, 12, False) == compute_due_date(MONDAY, 12, False)


class TestAddBusinessDays:
    @pytest.mark.parametrize("anchor,days,expected", [
        (date(2025, 12, 5), 1, date(2025, 12, 8)),    # Fri + 1 → Mon
        (date(2025, 12, 4), 2, date(2025, 12, 8)),    # Thu + 2 → Mon
        (date(2025, 12, 1), 10, date(2025, 12, 15)),  # two full weeks
        (date(2025, 12, 6), 1, date(2025, 12, 8)),    # Sat + 1 → Mon
        (date(2025, 12, 6), 5, date(2025, 12, 12)),   # Sat + 5 → Fri
        (date(2025, 12, 7), 5, date(2025, 12, 12)),   # Sun + 5 → Fri
        (date(2025, 12, 6), 6, date(2025, 12, 15)),   # Sat + 6 → Mon
    ])
    def test_known_dates(self, anchor, days, expected):
        assert add_business_days(anchor, days) == expected

    def test_never_lands_on_weekend(self):
        start = date(2025, 12, 1)
        for days in range(1, 30):
            assert add_business_days(start, days).weekday() < 5


class TestOverdue:
    def test_active_and_past_due(self):
        assert is_overdue("ACTIVE", datetime(2025, 12, 8, 17, 0), date(2025, 12, 9)) is True

    def test_due_today_is_not_overdue(self):
        # Date-truncated: 23:59 on the due date is still on time.
        assert is_overdue("ACTIVE", datetime(2025, 12, 8, 9, 0), datetime(2025, 12, 8, 23, 59)) is False

    def test_resolved_never_overdue(self):
        assert is_overdue("SETTLED", datetime(2025, 12, 1), date(2026, 1, 1)) is False

    def test_no_deadline(self):
        assert is_overdue("ACTIVE", None, date(2026, 1, 1)) is False

    def test_days_remaining(self):
        assert days_remaining(datetime(2025, 12, 8, 9, 0), date(2025, 12, 1)) == 7
        assert days_remaining(datetime(2025, 12, 8, 9, 0), date(2025, 12, 10)) == -2
        assert days_remaining(None, date(2025, 12, 10)) is None
