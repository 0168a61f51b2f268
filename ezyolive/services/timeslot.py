"""
Time slot primitives shared by conflict checking, availability and
slot suggestion.

All intervals are half-open ``[start, end)``: two slots that merely touch
(one ends when the next starts) do not overlap.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Iterator, Tuple


@dataclass(frozen=True)
class TimeSlot:
    start: datetime
    end: datetime

    def __post_init__(self):
        if self.end <= self.start:
            raise ValueError("A time slot must end after it starts")

    def overlaps(self, other: "TimeSlot") -> bool:
        return overlaps(self.start, self.end, other.start, other.end)

    def to_dict(self) -> dict:
        return {"start": self.start, "end": self.end}


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """Return True when ``[start1, end1)`` and ``[start2, end2)`` intersect."""
    return start1 < end2 and start2 < end1


def overlaps_any(slot: TimeSlot, busy: Iterable) -> bool:
    """Check ``slot`` against anything exposing ``start_time``/``end_time``."""
    return any(
        overlaps(slot.start, slot.end, other.start_time, other.end_time)
        for other in busy
    )


def iter_day_slots(
    day: date,
    start_hour: int,
    end_hour: int,
    slot_minutes: int
) -> Iterator[TimeSlot]:
    """
    Partition ``day`` between ``start_hour`` and ``end_hour`` into
    consecutive slots of ``slot_minutes``.

    Slots are yielded in chronological order; a trailing fragment shorter
    than ``slot_minutes`` is dropped.
    """
    window_end = datetime.combine(day, time()) + timedelta(hours=end_hour)
    step = timedelta(minutes=slot_minutes)
    current = datetime.combine(day, time()) + timedelta(hours=start_hour)

    while current + step <= window_end:
        yield TimeSlot(current, current + step)
        current += step


def day_bounds(day: date) -> Tuple[datetime, datetime]:
    """Return ``[midnight, next midnight)`` for ``day``."""
    start = datetime.combine(day, time())
    return start, start + timedelta(days=1)
