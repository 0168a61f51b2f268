from abc import ABC, abstractmethod
from datetime import datetime
from zoneinfo import ZoneInfo

from .config import settings


def practice_tz() -> ZoneInfo:
    return ZoneInfo(settings.PRACTICE_TIMEZONE)


def to_practice_time(value: datetime) -> datetime:
    """Convert an aware datetime to naive practice-local wall time.

    Naive values are assumed to already be practice-local and are returned
    untouched.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone(practice_tz()).replace(tzinfo=None)


class Clock(ABC):
    """Source of "now" for the services."""

    @abstractmethod
    def now(self) -> datetime:
        """Current naive practice-local time."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(practice_tz()).replace(tzinfo=None)


system_clock = SystemClock()


# Clock dependency
def get_clock() -> Clock:
    """Get the practice clock."""
    return system_clock
