from __future__ import annotations
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from availability.period import BookingPeriod
from state import locks
from state.event_log import log
from state.models import YouthVolunteer, CHAT, _now
from .ledger import BookingLedger
from .service import BookingRejected

logger = logging.getLogger(__name__)


class YouthRosterService:
    """Self-service edits to the chat roster.

    Each operation is one read-modify-write of a single volunteer's hash
    field, held under that volunteer's shard lock.
    """

    def __init__(self, ledger: BookingLedger, period: BookingPeriod, lock_ttl_seconds: int = 30):
        self.ledger = ledger
        self.period = period
        self.lock_ttl_seconds = lock_ttl_seconds

    def _check_slots(self, slot_keys: Iterable[str]) -> List[str]:
        checked: List[str] = []
        for slot_key in slot_keys:
            ok, why = self.period.check_slot_key(slot_key)
            if not ok:
                raise BookingRejected("invalid_slot", f"Invalid time slot {slot_key!r} ({why})")
            if slot_key not in checked:
                checked.append(slot_key)
        return checked

    def _edit(
        self,
        volunteer_id: str,
        correlation_id: str,
        kind: str,
        change: Callable[[Optional[YouthVolunteer]], YouthVolunteer],
        data: Dict[str, Any],
    ) -> YouthVolunteer:
        shard = locks.youth_shard(volunteer_id)
        try:
            with locks.hold(self.ledger.store, shard, f"youth:{correlation_id}", ttl_seconds=self.lock_ttl_seconds):
                updated = change(self.ledger.get_youth(volunteer_id))
                self.ledger.save_youth(updated)
        except locks.ShardBusy:
            log(self.ledger.store, "shard_busy", correlation_id, volunteer_id, shard, data)
            raise BookingRejected("slot_busy", "Your availability is being updated elsewhere. Please try again.")
        log(self.ledger.store, kind, correlation_id, volunteer_id, shard, data)
        return updated

    def ensure(self, volunteer_id: str, correlation_id: str, name: Optional[str] = None) -> YouthVolunteer:
        existing = self.ledger.get_youth(volunteer_id)
        if existing:
            return existing
        logger.info("Creating youth volunteer record for %s", volunteer_id)
        return self.register(volunteer_id, correlation_id, name)

    def register(self, volunteer_id: str, correlation_id: str, name: Optional[str] = None) -> YouthVolunteer:
        def change(current: Optional[YouthVolunteer]) -> YouthVolunteer:
            if current:
                if name and name != current.name:
                    return replace(current, name=name, updated_at=_now())
                return current
            return YouthVolunteer(id=volunteer_id, name=name or volunteer_id)

        return self._edit(volunteer_id, correlation_id, "youth_registered", change, {"name": name})

    def update_availability(self, volunteer_id: str, slot_keys: List[str], correlation_id: str) -> YouthVolunteer:
        slots = self._check_slots(slot_keys)

        def change(current: Optional[YouthVolunteer]) -> YouthVolunteer:
            base = current or YouthVolunteer(id=volunteer_id, name=volunteer_id)
            return replace(base, availability=slots, updated_at=_now())

        return self._edit(volunteer_id, correlation_id, "youth_availability_updated", change, {"slots": len(slots)})

    def add_slot(self, volunteer_id: str, slot_key: str, correlation_id: str) -> YouthVolunteer:
        self._check_slots([slot_key])

        def change(current: Optional[YouthVolunteer]) -> YouthVolunteer:
            base = current or YouthVolunteer(id=volunteer_id, name=volunteer_id)
            if slot_key in base.availability:
                return base
            return replace(base, availability=base.availability + [slot_key], updated_at=_now())

        return self._edit(volunteer_id, correlation_id, "youth_slot_added", change, {"slot": slot_key})

    def remove_slot(self, volunteer_id: str, slot_key: str, correlation_id: str) -> YouthVolunteer:
        def change(current: Optional[YouthVolunteer]) -> YouthVolunteer:
            if current is None:
                raise BookingRejected("volunteer_not_found")
            if slot_key not in current.availability:
                return current
            remaining = [s for s in current.availability if s != slot_key]
            return replace(current, availability=remaining, updated_at=_now())

        return self._edit(volunteer_id, correlation_id, "youth_slot_removed", change, {"slot": slot_key})

    def view(self) -> List[Dict[str, Any]]:
        """All youth volunteers with the chat bookings assigned to each."""
        assigned: Dict[str, List[dict]] = {}
        for booking in self.ledger.list():
            if booking.contact_method == CHAT and booking.assigned_volunteer:
                assigned.setdefault(booking.assigned_volunteer, []).append(booking.to_record())
        return [
            {"username": vol.id, **vol.to_record(), "bookings": assigned.get(vol.id, [])}
            for vol in self.ledger.youth_roster()
        ]
