"""
Time sources.

Every "now" in the lifecycle manager and the delivery engine comes from a
Clock so backoff and duration arithmetic can be tested deterministically.
"""
from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock, timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """
    Clock that only moves when told to.

    Usage:
        clock = FrozenClock(datetime(2026, 1, 1, tzinfo=timezone.utc))
        clock.advance(minutes=2)
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


system_clock = SystemClock()


def as_utc(value: datetime | None) -> datetime | None:
    """
    Normalise a datetime read back from the database to aware UTC.

    SQLite drops tzinfo on DateTime(timezone=True) columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
