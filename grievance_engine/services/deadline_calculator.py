"""
Deadline Calculator

Pure date arithmetic for grievance step time limits.

    compute_due_date(anchor, days, calendar_days)
        calendar_days=True  → anchor + days calendar days
        calendar_days=False → anchor advanced by `days` business days
                              (Saturday/Sunday skipped; no statutory holidays)

Time of day on the anchor is preserved. ``days == 0`` returns the anchor
unchanged; callers that treat a zero time limit as "no deadline" must not
call this at all (see grievance_lifecycle / grievance_schedule).

Overdue rule (date-truncated): a step is overdue iff the grievance is ACTIVE
and today's date is strictly after the due date.
"""

from datetime import date, datetime, timedelta

from grievance_engine.core.exceptions import InvalidArgumentError

SATURDAY = 5
SUNDAY = 6


def _is_weekend(day: date) -> bool:
    return day.weekday() in (SATURDAY, SUNDAY)


def add_business_days(anchor: datetime, days: int) -> datetime:
    """
    Advance ``anchor`` by ``days`` weekdays.

    Each counted day must be a Monday to Friday; weekend days are skipped
    without being counted. Monday + 5 → the following Monday; from a
    weekend anchor the first counted day is Monday (Saturday + 5 → Friday).
    """
    result = anchor
    remaining = days
    while remaining > 0:
        result += timedelta(days=1)
        if not _is_weekend(result):
            remaining -= 1
    return result


def compute_due_date(anchor: datetime, days: int, calendar_days: bool) -> datetime:
    """
    Return the due date for a step that started at ``anchor``.

    Raises:
        InvalidArgumentError: ``days`` is negative.
    """
    if days is None or days < 0:
        raise InvalidArgumentError(
            f"days must be a non-negative integer (got {days!r})",
            details={"days": days},
        )
    if calendar_days:
        return anchor + timedelta(days=days)
    return add_business_days(anchor, days)


def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def is_overdue(status: str, due_date: datetime | date | None, today: date | datetime) -> bool:
    """ACTIVE and strictly past the due date, comparing calendar dates only."""
    if due_date is None or status != "ACTIVE":
        return False
    return _as_date(today) > _as_date(due_date)


def days_remaining(due_date: datetime | date | None, today: date | datetime) -> int | None:
    """Signed whole days until the due date (negative once overdue)."""
    if due_date is None:
        return None
    return (_as_date(due_date) - _as_date(today)).days
