"""Time sources and calendar-day helpers.

Everything in the engine asks a ``Clock`` for "now" instead of calling
``datetime.now`` directly so tests can drive sessions minute by minute.
Timestamps are always UTC; calendar days are derived in the configured
timezone.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional, Protocol, Union


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = as_utc(start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc))
        self._lock = threading.Lock()

    def now(self) -> datetime:
        with self._lock:
            return self._now

    def set(self, value: datetime) -> None:
        with self._lock:
            self._now = as_utc(value)

    def advance(self, minutes: float = 0, seconds: float = 0, days: float = 0) -> datetime:
        with self._lock:
            self._now = self._now + timedelta(days=days, minutes=minutes, seconds=seconds)
            return self._now


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Return ``dt`` as an aware UTC datetime.

    SQLite hands datetimes back without tzinfo; those were written as UTC
    so a naive value is taken to be UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_day(value: Union[date, datetime], tz: tzinfo) -> date:
    """Calendar day of ``value`` in ``tz``; plain dates pass through."""
    if isinstance(value, datetime):
        return as_utc(value).astimezone(tz).date()
    return value


def day_start(day: date, tz: tzinfo) -> datetime:
    """Local midnight of ``day`` expressed in UTC."""
    return datetime(day.year, day.month, day.day, tzinfo=tz).astimezone(timezone.utc)


def round_minutes(delta: timedelta) -> int:
    """Whole minutes in ``delta``, halves rounded up."""
    return int((delta.total_seconds() + 30) // 60)
