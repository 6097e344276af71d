"""Booking period calendar.

Defines the universe of bookable slot identifiers: weekdays inside the
count period, a fixed half-hour grid per day, and the per-date capacity
that steps up on the cutover date. Nothing here looks at rosters or
bookings.
"""
from __future__ import annotations
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import List, Tuple
import re

from settings import Settings

SLOT_KEY_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}-\d{2}:\d{2}$")


def format_date_key(day: date) -> str:
    return day.strftime("%Y-%m-%d")


def format_slot_key(day: date, hour: int, minute: int) -> str:
    return f"{format_date_key(day)}-{hour:02d}:{minute:02d}"


def parse_slot_key(slot_key: str) -> Tuple[date, float]:
    """Split ``YYYY-MM-DD-HH:MM`` into its date and fractional hour (14:30 -> 14.5)."""
    if not isinstance(slot_key, str) or not SLOT_KEY_PATTERN.match(slot_key):
        raise ValueError(f"malformed slot key: {slot_key!r}")
    day = datetime.strptime(slot_key[:10], "%Y-%m-%d").date()
    hour, minute = int(slot_key[11:13]), int(slot_key[14:16])
    if hour > 23 or minute > 59:
        raise ValueError(f"malformed slot key: {slot_key!r}")
    return day, hour + minute / 60


def slot_time(slot_key: str) -> str:
    return slot_key[11:]


def is_weekday(day: date) -> bool:
    return day.weekday() < 5


@dataclass(frozen=True)
class BookingPeriod:
    start: date
    end: date
    cutover: date
    capacity_before: int = 1
    capacity_from: int = 2
    day_start_hour: int = 6
    day_end_hour: int = 18
    slot_minutes: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> "BookingPeriod":
        return cls(
            start=settings.count_start,
            end=settings.count_end,
            cutover=settings.double_slots_start,
            capacity_before=settings.slots_before_cutover,
            capacity_from=settings.slots_from_cutover,
            day_start_hour=settings.day_start_hour,
            day_end_hour=settings.day_end_hour,
            slot_minutes=settings.slot_minutes,
        )

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def is_bookable_date(self, day: date) -> bool:
        return self.contains(day) and is_weekday(day)

    def generate_dates(self) -> List[date]:
        dates: List[date] = []
        current = self.start
        while current <= self.end:
            if is_weekday(current):
                dates.append(current)
            current += timedelta(days=1)
        return dates

    def capacity_for(self, day: date) -> int:
        if not self.contains(day):
            return 0
        return self.capacity_from if day >= self.cutover else self.capacity_before

    def enumerate_slots(self, day: date) -> List[str]:
        if not self.is_bookable_date(day):
            return []
        slots: List[str] = []
        for hour in range(self.day_start_hour, self.day_end_hour):
            for minute in range(0, 60, self.slot_minutes):
                slots.append(format_slot_key(day, hour, minute))
        return slots

    def is_on_grid(self, hour: float) -> bool:
        if not self.day_start_hour <= hour < self.day_end_hour:
            return False
        minutes = round(hour * 60)
        return minutes % self.slot_minutes == 0

    def check_slot_key(self, slot_key: str) -> Tuple[bool, str]:
        """Booking validity gate. Returns ``(ok, reason)``; never coerces input."""
        try:
            day, hour = parse_slot_key(slot_key)
        except ValueError:
            return False, "malformed"
        if not self.contains(day):
            return False, "outside_period"
        if not is_weekday(day):
            return False, "weekend"
        if not self.is_on_grid(hour):
            return False, "off_grid"
        return True, "ok"
