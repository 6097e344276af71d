from datetime import date

from availability.period import BookingPeriod
from availability.roster import VolunteerRoster, roster_from_config
from bookings.ledger import BookingLedger
from bookings.service import BookingRequest, BookingService
from bookings.youth import YouthRosterService
from settings import Settings
from state.models import Booking, new_id
from state.repository import InMemoryStore
from state.seed import snapshot_hash
from verbs.registry import VerbContext

ORIGIN = {"Origin": "https://azyouthcount.org"}


def default_period() -> BookingPeriod:
    return BookingPeriod(start=date(2026, 1, 28), end=date(2026, 2, 13), cutover=date(2026, 2, 6))


def app_settings(**overrides) -> Settings:
    values = dict(admin_secret="admin-pw", youth_password="youth-pw", youth_admin_usernames=("boss",), cron_secret="cron-pw")
    values.update(overrides)
    return Settings(**values)


def single_volunteer_roster() -> VolunteerRoster:
    """Volunteer A is the only one covering 2026-02-02 09:00-11:00."""
    return roster_from_config({
        "a": {"name": "Avery", "methods": ["phone", "video"], "availability": {"2026-02-02": {"start": 9, "end": 11}}},
    })


def two_volunteer_roster() -> VolunteerRoster:
    """B and C both cover all of 2026-02-09."""
    return roster_from_config({
        "b": {"name": "Blake", "methods": ["phone", "video"], "availability": {"2026-02-09": {"start": 6, "end": 18}}},
        "c": {"name": "Casey", "methods": ["phone"], "availability": {"2026-02-09": {"start": 6, "end": 18}}},
    })


def make_booking(slot_key: str, volunteer: str | None, method: str = "phone", **extra) -> Booking:
    return Booking(
        id=extra.pop("id", new_id()),
        slot_key=slot_key,
        contact_method=method,
        name=extra.pop("name", "Requester"),
        contact_info=extra.pop("contact_info", "555-0100"),
        assigned_volunteer=volunteer,
        assigned_volunteer_name=volunteer.title() if volunteer else None,
        **extra,
    )


def request_for(slot_key: str, method: str = "phone", **extra) -> BookingRequest:
    return BookingRequest(
        slot_key=slot_key,
        contact_method=method,
        name=extra.pop("name", "Jordan"),
        contact_info=extra.pop("contact_info", "555-0199"),
        **extra,
    )


def make_service(store: InMemoryStore | None = None, roster: VolunteerRoster | None = None, **kwargs) -> BookingService:
    store = store if store is not None else InMemoryStore()
    ledger = BookingLedger(store, retries=kwargs.pop("retries", 5))
    return BookingService(ledger, default_period(), roster or single_volunteer_roster(), **kwargs)


def make_youth(service: BookingService) -> YouthRosterService:
    return YouthRosterService(service.ledger, service.period)


def make_ctx(service: BookingService, roles: list[str], actor: str = "tester") -> VerbContext:
    return VerbContext(
        correlation_id="test-cid",
        actor_id=actor,
        actor_roles=roles,
        bookings=service,
        youth=make_youth(service),
        shard=None,
    )


def seed_bookings(service: BookingService, bookings: list[Booking]) -> str:
    """Write ``bookings`` straight to the ledger; returns the snapshot hash."""
    _, version = service.ledger.load()
    service.ledger.commit(bookings, version)
    return snapshot_hash(service.store)
