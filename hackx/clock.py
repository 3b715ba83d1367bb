"""
hackx.clock — UTC wall-clock helpers
=====================================

Every deadline and execution-time comparison goes through these helpers.
SQLite hands timezone-aware columns back as naive datetimes, so values read
from the store are normalised to UTC before they are compared.
"""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def resolve_now(now: datetime | None) -> datetime:
    """Return *now* normalised to UTC, or the current time if omitted."""
    return utcnow() if now is None else as_utc(now)
