"""
Trust Radar — UTC time helpers

All timestamps inside the engine are timezone-aware UTC. Some drivers
(SQLite in tests) hand back naive datetimes; as_utc() normalizes them.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def window_bucket(moment: datetime, window: timedelta) -> int:
    """Index of the fixed-size window containing `moment` (epoch aligned)."""
    seconds = int(window.total_seconds())
    if seconds <= 0:
        raise ValueError("window must be positive")
    return int(as_utc(moment).timestamp()) // seconds
