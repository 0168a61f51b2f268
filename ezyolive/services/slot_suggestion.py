"""
Heuristic slot suggestion.

Looks at a patient's recent completed visits to guess which weekday and
which part of the day they prefer, then walks the coming days looking for
free slots that match. Nothing here touches the database; the appointment
service feeds it the data it needs.
"""

from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .timeslot import TimeSlot, iter_day_slots, overlaps_any


class TimeOfDay(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"


# Declaration order doubles as the tie-break order
TIME_OF_DAY_ORDER = list(TimeOfDay)

# (start_hour, end_hour) searched for each preferred part of the day
TIME_OF_DAY_HOURS = {
    TimeOfDay.MORNING: (9, 12),
    TimeOfDay.AFTERNOON: (12, 17),
    TimeOfDay.EVENING: (17, 19),
}


@dataclass(frozen=True)
class Preference:
    day_of_week: int  # 0 = Monday ... 6 = Sunday
    time_of_day: TimeOfDay


def time_of_day(moment: datetime) -> TimeOfDay:
    if moment.hour < 12:
        return TimeOfDay.MORNING
    if moment.hour < 17:
        return TimeOfDay.AFTERNOON
    return TimeOfDay.EVENING


def _most_common(counts: Counter, order: Sequence):
    """Highest count wins; ties go to whichever key comes first in ``order``."""
    return min(counts, key=lambda key: (-counts[key], order.index(key)))


def infer_preference(visit_starts: Iterable[datetime]) -> Optional[Preference]:
    """
    Infer a weekday / time-of-day preference from past visit start times.

    Returns None when there is no history to learn from.
    """
    starts = list(visit_starts)
    if not starts:
        return None

    day_counts = Counter(start.weekday() for start in starts)
    time_counts = Counter(time_of_day(start) for start in starts)

    return Preference(
        day_of_week=_most_common(day_counts, list(range(7))),
        time_of_day=_most_common(time_counts, TIME_OF_DAY_ORDER),
    )


def search_hours(
    preference: Optional[Preference],
    default_hours: Tuple[int, int]
) -> Tuple[int, int]:
    if preference is None:
        return default_hours
    return TIME_OF_DAY_HOURS[preference.time_of_day]


def suggest_slots(
    now: datetime,
    busy: Sequence,
    preference: Optional[Preference],
    window_days: int,
    limit: int,
    slot_minutes: int,
    default_hours: Tuple[int, int],
) -> List[TimeSlot]:
    """
    Collect up to ``limit`` free future slots, earliest first.

    Days from today through ``now + window_days`` are walked in order. When
    a preference is known only its weekday is searched, and only within the
    hours of its time of day. ``busy`` holds the doctor's blocking
    appointments (anything with ``start_time`` / ``end_time``).
    """
    start_hour, end_hour = search_hours(preference, default_hours)
    last_day = (now + timedelta(days=window_days)).date()
    day = now.date()
    found: List[TimeSlot] = []

    while day <= last_day and len(found) < limit:
        if preference is None or day.weekday() == preference.day_of_week:
            for slot in iter_day_slots(day, start_hour, end_hour, slot_minutes):
                if slot.start <= now or overlaps_any(slot, busy):
                    continue
                found.append(slot)
                if len(found) >= limit:
                    break
        day += timedelta(days=1)

    return found
