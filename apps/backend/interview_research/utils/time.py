"""Timezone helpers.

SQLite drops tzinfo on round-trip while PostgreSQL keeps it; every
timestamp leaving the data layer goes through as_utc so comparisons
against utcnow never mix naive and aware values.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC.

    Naive values are assumed to already be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
