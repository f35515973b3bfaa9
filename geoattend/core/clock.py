"""
Clock / timezone provider.

Every policy decision (lateness, early departure, absence cutoff, "is it
the last day of the month") is made in ONE configured IANA zone, never the
host's ambient zone.  Timestamps are persisted in UTC and converted back
with :func:`to_local` before comparison.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo


def parse_hhmm(value: str) -> time:
    """``"09:30"`` → ``time(9, 30)``."""
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp (SQLite drops tzinfo) to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_key(day: date) -> str:
    return day.strftime("%Y-%m-%d")


class Clock:
    """Supplies "now" in the configured reference timezone."""

    def __init__(self, tz: str | ZoneInfo) -> None:
        self.tz = tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)

    def now(self) -> datetime:
        return datetime.now(self.tz)

    def today(self) -> date:
        return self.now().date()

    def to_local(self, dt: datetime) -> datetime:
        return ensure_utc(dt).astimezone(self.tz)

    def at(self, day: date, at_time: time) -> datetime:
        """Aware local datetime for *at_time* on *day*."""
        return datetime.combine(day, at_time, tzinfo=self.tz)
