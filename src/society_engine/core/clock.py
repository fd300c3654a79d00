"""Clock abstraction.

WallClock: real wall-clock time
SimClock: deterministic simulated time (tests, replays)

Components never call datetime.now() directly. Day boundaries are always
computed in an explicit timezone, never by assuming UTC.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Protocol


class IClock(Protocol):
    """Clock interface used by all time-dependent code."""

    def now(self) -> datetime:
        """Current time as timezone-aware UTC datetime."""
        ...


class WallClock:
    """Real wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class SimClock:
    """Simulated clock. Time advances only when explicitly set."""

    def __init__(self, start: datetime | None = None) -> None:
        self._time = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._time

    def set_time(self, t: datetime) -> None:
        """Move time forward. Must be monotonically increasing."""
        if t.tzinfo is None:
            raise ValueError("SimClock requires timezone-aware datetimes")
        if t < self._time:
            raise ValueError(
                f"SimClock cannot go backwards: {t} < {self._time}"
            )
        self._time = t

    def advance(self, delta: timedelta) -> None:
        self.set_time(self._time + delta)


def local_day_bounds(moment: datetime, tz: tzinfo) -> tuple[datetime, datetime]:
    """Return ``[local midnight, next local midnight)`` containing *moment*.

    Both bounds are aware datetimes in *tz*; they compare correctly against
    UTC timestamps.
    """
    local_day = moment.astimezone(tz).date()
    return day_bounds(local_day, tz)


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start, end


def local_month(moment: datetime, tz: tzinfo) -> str:
    """Billing month ("YYYY-MM") of *moment* in *tz*."""
    local = moment.astimezone(tz)
    return f"{local.year:04d}-{local.month:02d}"
