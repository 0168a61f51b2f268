from datetime import datetime
from types import SimpleNamespace

from ezyolive.services.slot_suggestion import (
    Preference, TimeOfDay, infer_preference, suggest_slots, time_of_day
)

# 2025-01-06 is a Monday
MONDAY_8AM = datetime(2025, 1, 6, 8, 0)

def suggest(now=MONDAY_8AM, busy=(), preference=None, limit=5):
    return suggest_slots(
        now=now,
        busy=list(busy),
        preference=preference,
        window_days=7,
        limit=limit,
        slot_minutes=30,
        default_hours=(9, 17),
    )

class TestPreference:

    def test_no_history(self):
        assert infer_preference([]) is None

    def test_time_of_day_buckets(self):
        assert time_of_day(datetime(2025, 1, 6, 11, 59)) == TimeOfDay.MORNING
        assert time_of_day(datetime(2025, 1, 6, 12, 0)) == TimeOfDay.AFTERNOON
        assert time_of_day(datetime(2025, 1, 6, 16, 59)) == TimeOfDay.AFTERNOON
        assert time_of_day(datetime(2025, 1, 6, 17, 0)) == TimeOfDay.EVENING

    def test_most_frequent_day_and_time(self):
        visits = [
            datetime(2024, 12, 4, 14, 0),   # Wednesday afternoon
            datetime(2024, 12, 11, 15, 30),  # Wednesday afternoon
            datetime(2024, 12, 16, 9, 0),   # Monday morning
        ]
        assert infer_preference(visits) == Preference(2, TimeOfDay.AFTERNOON)

    def test_ties_go_to_earliest_day_and_time(self):
        visits = [
            datetime(2025, 1, 1, 14, 0),   # Wednesday afternoon
            datetime(2024, 12, 30, 10, 0),  # Monday morning
        ]
        assert infer_preference(visits) == Preference(0, TimeOfDay.MORNING)

class TestSuggestSlots:

    def test_without_preference_returns_earliest_free_slots(self):
        slots = suggest()

        assert len(slots) == 5
        assert [s.start.hour for s in slots] == [9, 9, 10, 10, 11]
        assert slots[0].start == datetime(2025, 1, 6, 9, 0)

    def test_skips_busy_and_past_slots(self):
        now = datetime(2025, 1, 6, 10, 15)
        busy = [SimpleNamespace(
            start_time=datetime(2025, 1, 6, 10, 30),
            end_time=datetime(2025, 1, 6, 11, 30),
        )]

        slots = suggest(now=now, busy=busy)

        assert slots[0].start == datetime(2025, 1, 6, 11, 30)
        assert all(s.start > now for s in slots)

    def test_preference_restricts_day_and_hours(self):
        slots = suggest(preference=Preference(2, TimeOfDay.EVENING))

        # Only one Wednesday falls inside the week, and evenings run 17:00-19:00
        assert [s.start for s in slots] == [
            datetime(2025, 1, 8, 17, 0),
            datetime(2025, 1, 8, 17, 30),
            datetime(2025, 1, 8, 18, 0),
            datetime(2025, 1, 8, 18, 30),
        ]

    def test_window_includes_day_one_week_out(self):
        # Monday preference: today is Monday before opening, and so is the last day
        slots = suggest(preference=Preference(0, TimeOfDay.AFTERNOON), limit=20)

        days = sorted({s.start.date() for s in slots})
        assert [d.isoformat() for d in days] == ["2025-01-06", "2025-01-13"]

    def test_fully_booked_week(self):
        busy = [SimpleNamespace(
            start_time=datetime(2025, 1, 6, 0, 0),
            end_time=datetime(2025, 1, 14, 0, 0),
        )]
        assert suggest(busy=busy) == []

    def test_limit_is_respected(self):
        assert len(suggest(limit=3)) == 3
