"""
timeutil.py — UTC timestamp helpers.

All timestamps are stored timezone-aware. SQLite hands back naive datetimes
for DateTime(timezone=True) columns, so every comparison goes through as_utc().
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Treats naive datetimes as UTC; leaves aware ones untouched."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def isoformat(value: datetime | None) -> str | None:
    value = as_utc(value)
    return value.isoformat() if value is not None else None
