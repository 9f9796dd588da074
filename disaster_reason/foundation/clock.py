"""Timezone-aware clock utilities.

Every timestamp in disaster-reason is UTC-aware.  Components read "now"
through this module so tests can freeze it with ``unittest.mock.patch``.
"""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_day(value: datetime) -> date:
    """Calendar day (UTC) a timestamp falls on, used for daily aggregates."""
    return ensure_utc(value).date()
