from __future__ import annotations
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from state.models import Booking, CHAT, ROSTER_METHODS
from .period import BookingPeriod, format_date_key, parse_slot_key, slot_time
from .roster import VolunteerRoster, YouthRoster


def format_time_display(hh_mm: str) -> str:
    hour, minute = int(hh_mm[:2]), hh_mm[3:]
    period = "PM" if hour >= 12 else "AM"
    display_hour = hour - 12 if hour > 12 else (12 if hour == 0 else hour)
    return f"{display_hour}:{minute} {period}"


@dataclass(frozen=True)
class SlotView:
    """One bookable slot as the public page sees it.

    ``is_available``/``is_discord_available`` need a free volunteer of that pool
    *and* a spot left under the date capacity, so a slot is never offered that
    the booking path would refuse as full.
    """

    slot_key: str
    capacity: int
    booked_count: int
    has_volunteer: bool
    available_volunteer_count: int
    has_discord_volunteer: bool
    available_discord_volunteer_count: int

    @property
    def spots_left(self) -> int:
        return max(0, self.capacity - self.booked_count)

    @property
    def is_available(self) -> bool:
        return self.available_volunteer_count > 0 and self.spots_left > 0

    @property
    def is_discord_available(self) -> bool:
        return self.available_discord_volunteer_count > 0 and self.spots_left > 0

    def to_dict(self) -> dict:
        time_str = slot_time(self.slot_key)
        return {
            "slotKey": self.slot_key,
            "time": time_str,
            "displayTime": format_time_display(time_str),
            "capacity": self.capacity,
            "bookedCount": self.booked_count,
            "spotsLeft": self.spots_left,
            "hasVolunteer": self.has_volunteer,
            "availableVolunteerCount": self.available_volunteer_count,
            "isAvailable": self.is_available,
            "hasDiscordVolunteer": self.has_discord_volunteer,
            "availableDiscordVolunteerCount": self.available_discord_volunteer_count,
            "isDiscordAvailable": self.is_discord_available,
        }


def _index_bookings(bookings: Iterable[Booking]):
    counts: Dict[str, int] = {}
    # (slot, pool) -> committed ids; "chat" for the youth roster, "roster" otherwise
    committed: Dict[Tuple[str, str], Set[str]] = {}
    for booking in bookings:
        counts[booking.slot_key] = counts.get(booking.slot_key, 0) + 1
        if booking.assigned_volunteer:
            pool = CHAT if booking.contact_method == CHAT else "roster"
            committed.setdefault((booking.slot_key, pool), set()).add(booking.assigned_volunteer)
    return counts, committed


def project_slot(
    slot_key: str,
    capacity: int,
    roster: VolunteerRoster,
    youth_roster: YouthRoster,
    booked_count: int,
    roster_taken: Set[str],
    youth_taken: Set[str],
) -> SlotView:
    day, hour = parse_slot_key(slot_key)
    roster_ids = [
        vol.id
        for vol in roster
        if any(vol.supports(m) for m in ROSTER_METHODS) and roster.is_available(vol.id, day, hour)
    ]
    youth_ids = [v.id for v in youth_roster.eligible_volunteers(slot_key)]
    return SlotView(
        slot_key=slot_key,
        capacity=capacity,
        booked_count=booked_count,
        has_volunteer=roster.has_coverage(day, hour),
        available_volunteer_count=sum(1 for vid in roster_ids if vid not in roster_taken),
        has_discord_volunteer=bool(youth_ids),
        available_discord_volunteer_count=sum(1 for vid in youth_ids if vid not in youth_taken),
    )


def project(
    period: BookingPeriod,
    roster: VolunteerRoster,
    youth_roster: YouthRoster,
    bookings: Sequence[Booking],
    dates: Optional[Iterable[date]] = None,
) -> Dict[str, List[SlotView]]:
    """Per-date slot views over the live booking list.

    Recomputed from ``bookings`` on every call; nothing is cached between
    calls because a stale count here turns into a double booking.
    """
    counts, committed = _index_bookings(bookings)
    out: Dict[str, List[SlotView]] = {}
    for day in (period.generate_dates() if dates is None else dates):
        slots = period.enumerate_slots(day)
        if not slots:
            continue
        capacity = period.capacity_for(day)
        out[format_date_key(day)] = [
            project_slot(
                slot_key,
                capacity,
                roster,
                youth_roster,
                counts.get(slot_key, 0),
                committed.get((slot_key, "roster"), set()),
                committed.get((slot_key, CHAT), set()),
            )
            for slot_key in slots
        ]
    return out


def serialize_projection(projection: Dict[str, List[SlotView]]) -> Dict[str, List[dict]]:
    return {day_key: [view.to_dict() for view in views] for day_key, views in projection.items()}
