"""
Time-window arithmetic.

Windows are half-open: ``[start, end)``. Touching endpoints do not overlap,
and an instant equal to ``end`` is outside the window. Every comparison in
the reservation core goes through these helpers so the convention is applied
uniformly.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalise to an aware UTC datetime. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", ensure_utc(self.start))
        object.__setattr__(self, "end", ensure_utc(self.end))

    @property
    def is_valid(self) -> bool:
        return self.start < self.end

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def overlaps(self, other: "TimeWindow") -> bool:
        return overlaps(self, other)

    def contains(self, instant: datetime) -> bool:
        return is_within(instant, self.start, self.end)

    @classmethod
    def instant(cls, at: datetime) -> "TimeWindow":
        """Smallest window containing ``at``; used for the current-instant view."""
        return cls(at, ensure_utc(at) + timedelta(microseconds=1))


def overlaps(a: TimeWindow, b: TimeWindow) -> bool:
    return a.start < b.end and b.start < a.end


def is_future(instant: datetime, now: datetime) -> bool:
    return ensure_utc(instant) > ensure_utc(now)


def is_within(now: datetime, start: datetime, end: datetime) -> bool:
    now = ensure_utc(now)
    return ensure_utc(start) <= now < ensure_utc(end)


def is_expired(end: datetime, now: datetime) -> bool:
    return ensure_utc(end) < ensure_utc(now)


def is_near(instant: datetime, now: datetime, tolerance: timedelta) -> bool:
    """True when ``instant`` lies within ``tolerance`` of ``now`` on either side."""
    return abs(ensure_utc(instant) - ensure_utc(now)) <= tolerance
