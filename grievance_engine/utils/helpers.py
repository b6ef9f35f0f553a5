"""
Shared helper utilities for services and models.

Datetime normalisation lives here so SQLite and PostgreSQL round-trips
compare the same way everywhere.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite.

    PostgreSQL returns aware values for ``DateTime(timezone=True)`` columns;
    SQLite drops the offset. Comparisons need one or the other, never both.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iso(value: datetime | date | None) -> str | None:
    """ISO-8601 string or None."""
    return value.isoformat() if value else None
