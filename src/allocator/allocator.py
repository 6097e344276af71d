from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from availability.period import parse_slot_key
from availability.roster import VolunteerRoster, YouthRoster
from state.models import Booking, Volunteer, YouthVolunteer, CHAT, ROSTER_METHODS, CONTACT_METHODS

Candidate = Union[Volunteer, YouthVolunteer]


@dataclass(frozen=True)
class Assignment:
    volunteer_id: str
    volunteer_name: str
    assignment_count: int


def pool_methods(method: str) -> Tuple[str, ...]:
    # phone and video share one roster, so their loads pool together
    return ROSTER_METHODS if method in ROSTER_METHODS else (CHAT,)


def no_volunteer_reason(method: str) -> str:
    return "no_youth_volunteer_available" if method == CHAT else "no_volunteer_available"


def assignment_counts(bookings: Iterable[Booking], method: str) -> Dict[str, int]:
    pool = pool_methods(method)
    counts: Dict[str, int] = {}
    for booking in bookings:
        if booking.assigned_volunteer and booking.contact_method in pool:
            counts[booking.assigned_volunteer] = counts.get(booking.assigned_volunteer, 0) + 1
    return counts


def committed_volunteers(slot_key: str, bookings: Iterable[Booking], method: str) -> Set[str]:
    # roster ids and youth usernames are separate namespaces; only the same pool excludes
    pool = pool_methods(method)
    return {
        b.assigned_volunteer
        for b in bookings
        if b.slot_key == slot_key and b.assigned_volunteer and b.contact_method in pool
    }


def bookings_for_slot(slot_key: str, bookings: Iterable[Booking]) -> int:
    return sum(1 for b in bookings if b.slot_key == slot_key)


def eligible_for(slot_key: str, method: str, roster: VolunteerRoster, youth_roster: YouthRoster) -> List[Candidate]:
    if method == CHAT:
        return list(youth_roster.eligible_volunteers(slot_key))
    day, hour = parse_slot_key(slot_key)
    return list(roster.eligible_volunteers(day, hour, method))


def unbooked_eligible(
    slot_key: str,
    method: str,
    bookings: Sequence[Booking],
    roster: VolunteerRoster,
    youth_roster: YouthRoster,
) -> List[Candidate]:
    taken = committed_volunteers(slot_key, bookings, method)
    return [c for c in eligible_for(slot_key, method, roster, youth_roster) if c.id not in taken]


def select_least_loaded(candidates: Sequence[Candidate], counts: Dict[str, int]) -> Optional[Candidate]:
    """Strictly smallest count wins; ties go to the earliest candidate in roster order."""
    selected: Optional[Candidate] = None
    best = None
    for candidate in candidates:
        count = counts.get(candidate.id, 0)
        if best is None or count < best:
            best = count
            selected = candidate
    return selected


def assign(
    slot_key: str,
    method: str,
    bookings: Sequence[Booking],
    roster: VolunteerRoster,
    youth_roster: YouthRoster,
) -> Tuple[bool, Optional[Assignment], str]:
    """Pick the volunteer for a new booking. Pure: the caller persists the result."""
    if method not in CONTACT_METHODS:
        return False, None, "unsupported_method"
    try:
        candidates = unbooked_eligible(slot_key, method, bookings, roster, youth_roster)
    except ValueError:
        return False, None, "invalid_slot"
    if not candidates:
        return False, None, no_volunteer_reason(method)
    counts = assignment_counts(bookings, method)
    chosen = select_least_loaded(candidates, counts)
    return True, Assignment(chosen.id, chosen.name, counts.get(chosen.id, 0)), "ok"


def check_forced(
    slot_key: str,
    volunteer_id: str,
    method: str,
    bookings: Sequence[Booking],
    roster: VolunteerRoster,
    youth_roster: YouthRoster,
) -> Tuple[bool, Optional[Assignment], str]:
    """Admin override: skip the availability check but never double-book the volunteer."""
    source = youth_roster if method == CHAT else roster
    volunteer = source.get(volunteer_id)
    if not volunteer:
        return False, None, "unknown_volunteer"
    if method != CHAT and not volunteer.supports(method):
        return False, None, "unsupported_method"
    if volunteer_id in committed_volunteers(slot_key, bookings, method):
        return False, None, "volunteer_already_booked"
    counts = assignment_counts(bookings, method)
    return True, Assignment(volunteer.id, volunteer.name, counts.get(volunteer.id, 0)), "ok"
