from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional
import logging

from allocator.allocator import assign, assignment_counts, bookings_for_slot, check_forced, pool_methods
from availability.period import BookingPeriod, format_date_key, parse_slot_key
from availability.projector import project, serialize_projection
from availability.roster import VolunteerRoster
from gates.rate_limit import RateLimiter
from gates.verification import RecaptchaVerifier
from observability import metrics
from observability.logging import structured_log
from state import locks
from state.event_log import log
from state.models import Booking, CHAT, ROSTER_METHODS, new_id, normalize_method, _now
from .ledger import BookingLedger, legacy_slots

logger = logging.getLogger(__name__)

MESSAGES = {
    "invalid_slot": "Invalid time slot. Please choose a weekday time within the count period.",
    "missing_contact_method": "Please choose how you would like to be contacted.",
    "missing_field": "Name and contact information are required.",
    "rate_limited": "Too many booking attempts. Please try again later.",
    "verification_failed": "Verification failed. Please try again.",
    "no_volunteer_available": "This time slot is no longer available. Please choose another time.",
    "no_youth_volunteer_available": "No youth volunteers are available for this time. Please choose another time.",
    "slot_full": "This time slot is full. Please choose another time.",
    "slot_busy": "Someone else is booking this time slot right now. Please try again.",
    "volunteer_already_booked": "That volunteer is already booked for this time slot.",
    "unknown_volunteer": "Unknown volunteer.",
    "unsupported_method": "That volunteer does not take this contact method.",
    "booking_not_found": "Booking not found.",
    "volunteer_not_found": "Volunteer not found.",
    "not_assigned_volunteer": "Only the assigned volunteer or an admin can complete this booking.",
}


class BookingRejected(Exception):
    def __init__(self, reason: str, message: Optional[str] = None):
        self.reason = reason
        self.message = message or MESSAGES.get(reason, reason)
        super().__init__(f"{reason}: {self.message}")


@dataclass
class BookingRequest:
    slot_key: str
    contact_method: Optional[str]
    name: str
    contact_info: str
    reminder_email: Optional[str] = None
    recaptcha_token: Optional[str] = None
    recaptcha_v3_token: Optional[str] = None


class BookingService:
    """The booking write path plus the admin operations on the booking list.

    Validation and verification happen before any store access. The
    read -> assign -> write sequence runs under the slot's shard lock and is
    committed with a versioned write, so neither a same-slot race nor a
    concurrent write to another slot can lose or overbook anything.
    """

    def __init__(
        self,
        ledger: BookingLedger,
        period: BookingPeriod,
        roster: VolunteerRoster,
        verifier: Optional[RecaptchaVerifier] = None,
        limiter: Optional[RateLimiter] = None,
        on_booked: Optional[Callable[[Booking], Any]] = None,
        lock_ttl_seconds: int = 30,
    ):
        self.ledger = ledger
        self.period = period
        self.roster = roster
        self.verifier = verifier
        self.limiter = limiter
        self.on_booked = on_booked
        self.lock_ttl_seconds = lock_ttl_seconds

    @property
    def store(self):
        return self.ledger.store

    # Reads
    def list_slots(self) -> Dict[str, List[dict]]:
        projection = project(self.period, self.roster, self.ledger.youth_roster(), self.ledger.list())
        return serialize_projection(projection)

    def admin_view(self) -> Dict[str, Any]:
        bookings = self.ledger.list()
        roster_counts = assignment_counts(bookings, ROSTER_METHODS[0])
        youth_counts = assignment_counts(bookings, CHAT)
        return {
            "bookings": [b.to_record() for b in bookings],
            "bookedSlots": legacy_slots(bookings),
            "volunteerSummary": self.roster.summary(),
            "assignmentCounts": {**roster_counts, **youth_counts},
        }

    # Validation
    def validate(self, request: BookingRequest) -> str:
        """Field checks; returns the normalised contact method."""
        ok, why = self.period.check_slot_key(request.slot_key)
        if not ok:
            raise BookingRejected("invalid_slot", f"{MESSAGES['invalid_slot']} ({why})")
        if not request.contact_method:
            raise BookingRejected("missing_contact_method")
        method = normalize_method(request.contact_method)
        if not method:
            raise BookingRejected("missing_contact_method", f"Unsupported contact method: {request.contact_method}")
        if not (request.name or "").strip() or not (request.contact_info or "").strip():
            raise BookingRejected("missing_field")
        return method

    def _reject(self, reason: str, correlation_id: str, data: Dict[str, Any], shard: Optional[str] = None):
        metrics.inc(f"bookings.rejected.{reason}")
        log(self.store, "booking_rejected", correlation_id, "public", shard, {"reason": reason, **data})
        structured_log("booking_rejected", correlation_id, {"reason": reason, **data})
        raise BookingRejected(reason)

    # Public booking
    def book(self, request: BookingRequest, correlation_id: str, client_key: Optional[str] = None) -> Booking:
        try:
            method = self.validate(request)
        except BookingRejected as exc:
            metrics.inc(f"bookings.rejected.{exc.reason}")
            structured_log("booking_rejected", correlation_id, {"reason": exc.reason, "slot": request.slot_key})
            raise
        data = {"slot": request.slot_key, "method": method}
        if self.limiter and client_key:
            if not self.limiter.check(client_key).allowed:
                self._reject("rate_limited", correlation_id, data)
        if self.verifier and not self.verifier.passes(request.recaptcha_token, request.recaptcha_v3_token):
            self._reject("verification_failed", correlation_id, data)

        def change(bookings: List[Booking]):
            ok, chosen, reason = assign(request.slot_key, method, bookings, self.roster, self.ledger.youth_roster())
            if not ok:
                raise BookingRejected(reason)
            self._check_capacity(request.slot_key, bookings)
            booking = Booking(
                id=new_id(),
                slot_key=request.slot_key,
                contact_method=method,
                name=request.name.strip(),
                contact_info=request.contact_info.strip(),
                reminder_email=(request.reminder_email or "").strip() or None,
                assigned_volunteer=chosen.volunteer_id,
                assigned_volunteer_name=chosen.volunteer_name,
            )
            return bookings + [booking], (booking, chosen)

        booking, chosen = self._write_slot(request.slot_key, correlation_id, "public", change, data)
        log(self.store, "booking_created", correlation_id, "public", locks.slot_shard(booking.slot_key), {
            "booking_id": booking.id,
            "slot": booking.slot_key,
            "method": method,
            "volunteer": chosen.volunteer_id,
            "prior_count": chosen.assignment_count,
        })
        structured_log("booking_created", correlation_id, {
            "booking_id": booking.id,
            "slot": booking.slot_key,
            "volunteer": chosen.volunteer_id,
        })
        metrics.inc("bookings.created")
        self._notify(booking, correlation_id)
        return booking

    def _check_capacity(self, slot_key: str, bookings: List[Booking]):
        day, _ = parse_slot_key(slot_key)
        if bookings_for_slot(slot_key, bookings) >= self.period.capacity_for(day):
            raise BookingRejected("slot_full")

    def _write_slot(self, slot_key: str, correlation_id: str, actor: str, change, data: Dict[str, Any]):
        shard = locks.slot_shard(slot_key)
        try:
            with locks.hold(self.store, shard, f"book:{correlation_id}", ttl_seconds=self.lock_ttl_seconds):
                return self.ledger.mutate(change)
        except locks.ShardBusy:
            log(self.store, "shard_busy", correlation_id, actor, shard, data)
            self._reject("slot_busy", correlation_id, data, shard)
        except BookingRejected as exc:
            metrics.inc(f"bookings.rejected.{exc.reason}")
            log(self.store, "booking_rejected", correlation_id, actor, shard, {"reason": exc.reason, **data})
            structured_log("booking_rejected", correlation_id, {"reason": exc.reason, **data})
            raise

    def _notify(self, booking: Booking, correlation_id: str):
        if not self.on_booked:
            return
        try:
            self.on_booked(booking)
        except Exception:
            # the booking is already committed
            logger.exception("Booking notification failed for %s", booking.id)
            metrics.inc("notifications.failed")
            structured_log("notification_failed", correlation_id, {"booking_id": booking.id})

    # Admin operations
    def add(
        self,
        record: Dict[str, Any],
        correlation_id: str,
        actor: str = "admin",
        assigned_volunteer: Optional[str] = None,
    ) -> Booking:
        """Admin-curated booking: assignment gate unless an assignee is forced; capacity always holds."""
        request = BookingRequest(
            slot_key=record.get("slotKey", ""),
            contact_method=record.get("contactMethod"),
            name=record.get("name") or "",
            contact_info=record.get("contactInfo") or "",
            reminder_email=record.get("reminderEmail"),
        )
        method = self.validate(request)
        forced = assigned_volunteer or None
        data = {"slot": request.slot_key, "method": method, "forced": forced}

        def change(bookings: List[Booking]):
            youth_roster = self.ledger.youth_roster()
            if forced:
                ok, chosen, reason = check_forced(request.slot_key, forced, method, bookings, self.roster, youth_roster)
            else:
                ok, chosen, reason = assign(request.slot_key, method, bookings, self.roster, youth_roster)
            if not ok:
                raise BookingRejected(reason)
            self._check_capacity(request.slot_key, bookings)
            booking = Booking(
                id=record.get("id") or new_id(),
                slot_key=request.slot_key,
                contact_method=method,
                name=request.name.strip(),
                contact_info=request.contact_info.strip(),
                reminder_email=(request.reminder_email or "").strip() or None,
                assigned_volunteer=chosen.volunteer_id,
                assigned_volunteer_name=chosen.volunteer_name,
            )
            return bookings + [booking], booking

        booking = self._write_slot(request.slot_key, correlation_id, actor, change, data)
        log(self.store, "booking_created", correlation_id, actor, locks.slot_shard(booking.slot_key), {
            "booking_id": booking.id,
            "slot": booking.slot_key,
            "volunteer": booking.assigned_volunteer,
            "forced": bool(forced),
        })
        metrics.inc("bookings.created")
        return booking

    def remove(self, slot_key: str, correlation_id: str, actor: str = "admin", volunteer_id: Optional[str] = None) -> Optional[Booking]:
        """Remove the first booking on ``slot_key`` (optionally the one assigned to ``volunteer_id``)."""

        def change(bookings: List[Booking]):
            for idx, booking in enumerate(bookings):
                if booking.slot_key != slot_key:
                    continue
                if volunteer_id and booking.assigned_volunteer != volunteer_id:
                    continue
                return bookings[:idx] + bookings[idx + 1:], booking
            return None, None

        shard = locks.slot_shard(slot_key)
        try:
            with locks.hold(self.store, shard, f"remove:{correlation_id}", ttl_seconds=self.lock_ttl_seconds):
                removed = self.ledger.mutate(change)
        except locks.ShardBusy:
            raise BookingRejected("slot_busy")
        if removed:
            log(self.store, "booking_removed", correlation_id, actor, shard, {"booking_id": removed.id, "slot": slot_key})
            metrics.inc("bookings.removed")
        return removed

    def clear_date(self, date_key: str, correlation_id: str, actor: str = "admin") -> int:
        def change(bookings: List[Booking]):
            kept = [b for b in bookings if b.date_key != date_key]
            removed = len(bookings) - len(kept)
            return (kept if removed else None), removed

        removed = self.ledger.mutate(change)
        log(self.store, "bookings_cleared", correlation_id, actor, None, {"date": date_key, "removed": removed})
        return removed

    def clear_all(self, correlation_id: str, actor: str = "admin") -> int:
        removed = self.ledger.mutate(lambda bookings: ([], len(bookings)))
        log(self.store, "bookings_cleared", correlation_id, actor, None, {"date": None, "removed": removed})
        return removed

    def replace_all(self, records: List[Dict[str, Any]], correlation_id: str, actor: str = "admin") -> List[Booking]:
        """Bulk replace. Every record must carry a valid slot and the result must respect capacity and pairing."""
        bookings: List[Booking] = []
        for record in records:
            ok, why = self.period.check_slot_key(record.get("slotKey", ""))
            if not ok:
                raise BookingRejected("invalid_slot", f"{MESSAGES['invalid_slot']} ({record.get('slotKey')}: {why})")
            if not normalize_method(record.get("contactMethod")):
                raise BookingRejected(
                    "missing_contact_method",
                    f"Unsupported contact method: {record.get('contactMethod')} ({record.get('slotKey')})",
                )
            bookings.append(Booking.from_record(record))
        self._check_replacement(bookings)
        self.ledger.mutate(lambda _current: (bookings, None))
        log(self.store, "bookings_replaced", correlation_id, actor, None, {"count": len(bookings)})
        return bookings

    def _check_replacement(self, bookings: List[Booking]):
        per_slot: Dict[str, int] = {}
        pairs = set()
        for booking in bookings:
            per_slot[booking.slot_key] = per_slot.get(booking.slot_key, 0) + 1
            day, _ = parse_slot_key(booking.slot_key)
            if per_slot[booking.slot_key] > self.period.capacity_for(day):
                raise BookingRejected("slot_full", f"{MESSAGES['slot_full']} ({booking.slot_key})")
            if booking.assigned_volunteer:
                pair = (booking.slot_key, pool_methods(booking.contact_method), booking.assigned_volunteer)
                if pair in pairs:
                    raise BookingRejected("volunteer_already_booked", f"{MESSAGES['volunteer_already_booked']} ({booking.slot_key})")
                pairs.add(pair)

    # Completion
    def mark_complete(self, booking_id: str, correlation_id: str, actor: str, is_admin: bool = False) -> Booking:
        completed_at = _now()

        def change(bookings: List[Booking]):
            for idx, booking in enumerate(bookings):
                if booking.id != booking_id:
                    continue
                # youth credentials only ever vouch for a youth-roster (chat) assignment
                if not is_admin and (booking.contact_method != CHAT or booking.assigned_volunteer != actor):
                    raise BookingRejected("not_assigned_volunteer")
                if booking.completed:
                    return None, booking
                done = replace(booking, completed=True, completed_at=completed_at, completed_by=actor)
                return bookings[:idx] + [done] + bookings[idx + 1:], done
            raise BookingRejected("booking_not_found")

        booking = self.ledger.mutate(change)
        log(self.store, "booking_completed", correlation_id, actor, None, {"booking_id": booking_id})
        metrics.inc("bookings.completed")
        return booking

    def period_info(self) -> Dict[str, Any]:
        return {
            "start": format_date_key(self.period.start),
            "end": format_date_key(self.period.end),
            "cutover": format_date_key(self.period.cutover),
            "capacityBefore": self.period.capacity_before,
            "capacityFrom": self.period.capacity_from,
        }
