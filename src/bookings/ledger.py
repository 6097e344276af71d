from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar
import logging

from settings import BOOKINGS_KEY, LEGACY_SLOTS_KEY, YOUTH_VOLUNTEERS_KEY
from state.models import Booking, YouthVolunteer
from observability import metrics
from state.repository import InMemoryStore, StoreUnavailable
from availability.roster import YouthRoster

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WriteConflict(RuntimeError):
    """Another writer kept replacing the booking list between our read and write."""


def legacy_slots(bookings: List[Booking]) -> List[str]:
    return [b.slot_key for b in bookings]


class BookingLedger:
    """The booking list document plus the youth roster hash.

    The booking list is the only source of truth for what is taken. The
    legacy ``booked_slots`` document is a projection of it: after every
    successful commit it is rebuilt from the list as read at that moment and
    written with its own compare-and-swap, so a slower writer can never put
    back an older slot list. A mirror that failed to write is rebuilt by the
    next commit; the booking itself stands.
    """

    def __init__(self, store: InMemoryStore, retries: int = 5):
        self.store = store
        self.retries = retries

    # Bookings
    def load(self) -> Tuple[List[Booking], int]:
        raw, version = self.store.get_versioned(BOOKINGS_KEY)
        bookings = [Booking.from_record(item) for item in (raw or []) if isinstance(item, dict)]
        return bookings, version

    def list(self) -> List[Booking]:
        bookings, _ = self.load()
        return bookings

    def commit(self, bookings: List[Booking], expected_version: int) -> bool:
        records = [b.to_record() for b in bookings]
        if not self.store.set_if_version(BOOKINGS_KEY, records, expected_version):
            return False
        self.sync_mirror()
        return True

    def sync_mirror(self) -> bool:
        """Rewrite ``booked_slots`` from the current booking list. Never raises."""
        try:
            for _ in range(self.retries):
                # mirror version first: a list read after it is at least as new as any writer we race
                _, mirror_version = self.store.get_versioned(LEGACY_SLOTS_KEY)
                bookings, _ = self.load()
                if self.store.set_if_version(LEGACY_SLOTS_KEY, legacy_slots(bookings), mirror_version):
                    return True
            logger.warning("Legacy slot mirror kept changing underneath us; left for the next commit")
        except StoreUnavailable:
            logger.exception("Legacy slot mirror write failed; left for the next commit")
        metrics.inc("legacy_mirror.failed")
        return False

    def mutate(self, change: Callable[[List[Booking]], Tuple[List[Booking], T]]) -> T:
        """Read, apply ``change``, write back with compare-and-swap; re-run on conflict.

        ``change`` sees a fresh list on every attempt and may raise to abort;
        an abort writes nothing.
        """
        for attempt in range(self.retries):
            bookings, version = self.load()
            updated, result = change(list(bookings))
            if updated is None:
                return result
            if self.commit(updated, version):
                return result
            logger.info("Booking list changed underneath us (attempt %d); retrying", attempt + 1)
        raise WriteConflict(f"booking list write failed after {self.retries} attempts")

    # Youth roster
    def youth_records(self) -> Dict[str, Any]:
        return self.store.hgetall(YOUTH_VOLUNTEERS_KEY)

    def youth_roster(self) -> YouthRoster:
        return YouthRoster.from_records(self.youth_records())

    def get_youth(self, volunteer_id: str) -> Optional[YouthVolunteer]:
        data = self.store.hget(YOUTH_VOLUNTEERS_KEY, volunteer_id)
        if data is None:
            return None
        return YouthVolunteer.from_record(volunteer_id, data)

    def save_youth(self, volunteer: YouthVolunteer) -> None:
        self.store.hset(YOUTH_VOLUNTEERS_KEY, volunteer.id, volunteer.to_record())
