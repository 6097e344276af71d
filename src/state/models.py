from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Tuple
import uuid

# Contact methods. "phone"/"video" draw from the windowed roster, "chat" from the youth roster.
PHONE = "phone"
VIDEO = "video"
CHAT = "chat"
CONTACT_METHODS = (PHONE, VIDEO, CHAT)
ROSTER_METHODS = (PHONE, VIDEO)

# Older clients still send the platform names
METHOD_ALIASES = {"zoom": VIDEO, "discord": CHAT}


def normalize_method(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    method = value.strip().lower()
    method = METHOD_ALIASES.get(method, method)
    return method if method in CONTACT_METHODS else None


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # stored timestamps without an offset are UTC
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class AvailabilityWindow:
    # fractional hours, half-open [start, end)
    start: float
    end: float

    def covers(self, hour: float) -> bool:
        return self.start <= hour < self.end


@dataclass(frozen=True)
class Volunteer:
    id: str
    name: str
    methods: Tuple[str, ...]
    availability: Dict[str, AvailabilityWindow] = field(default_factory=dict)

    def supports(self, method: str) -> bool:
        return method in self.methods


@dataclass
class YouthVolunteer:
    id: str  # username
    name: str
    availability: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def to_record(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "availability": list(self.availability),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    @classmethod
    def from_record(cls, volunteer_id: str, data: Dict[str, Any]) -> "YouthVolunteer":
        return cls(
            id=volunteer_id,
            name=data.get("name") or volunteer_id,
            availability=list(dict.fromkeys(data.get("availability") or [])),
            created_at=_parse_dt(data.get("createdAt")) or _now(),
            updated_at=_parse_dt(data.get("updatedAt")) or _now(),
        )


@dataclass(frozen=True)
class Booking:
    id: str
    slot_key: str
    contact_method: str
    name: str
    contact_info: str
    reminder_email: Optional[str] = None
    assigned_volunteer: Optional[str] = None
    assigned_volunteer_name: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    completed: bool = False
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "slotKey": self.slot_key,
            "contactMethod": self.contact_method,
            "name": self.name,
            "contactInfo": self.contact_info,
            "reminderEmail": self.reminder_email,
            "assignedVolunteer": self.assigned_volunteer,
            "assignedVolunteerName": self.assigned_volunteer_name,
            "createdAt": _iso(self.created_at),
            "completed": self.completed,
            "completedAt": _iso(self.completed_at),
            "completedBy": self.completed_by,
        }

    @classmethod
    def from_record(cls, data: Dict[str, Any]) -> "Booking":
        raw_method = data.get("contactMethod")
        # records written before contact methods existed were all phone bookings
        method = normalize_method(raw_method) if raw_method else PHONE
        if not method:
            raise ValueError(f"unknown contact method: {raw_method!r}")
        return cls(
            id=data.get("id") or new_id(),
            slot_key=data["slotKey"],
            contact_method=method,
            name=data.get("name") or "",
            contact_info=data.get("contactInfo") or "",
            reminder_email=data.get("reminderEmail") or None,
            assigned_volunteer=data.get("assignedVolunteer") or None,
            assigned_volunteer_name=data.get("assignedVolunteerName") or None,
            created_at=_parse_dt(data.get("createdAt")) or _now(),
            completed=bool(data.get("completed", False)),
            completed_at=_parse_dt(data.get("completedAt")),
            completed_by=data.get("completedBy") or None,
        )

    @property
    def date_key(self) -> str:
        return self.slot_key[:10]

    def reminder_address(self) -> Optional[str]:
        if self.reminder_email:
            return self.reminder_email
        # video bookings are contacted by email already
        if self.contact_method == VIDEO and "@" in (self.contact_info or ""):
            return self.contact_info
        return None


@dataclass
class EventLogEntry:
    id: str
    timestamp: datetime
    correlation_id: str
    actor: str
    shard: Optional[str]
    kind: str  # booking_created, booking_rejected, verb_executed, authz_denied, shard_busy, etc.
    data: Dict[str, Any]


@dataclass
class ShardLock:
    shard: str
    owner: str
    acquired_at: datetime = field(default_factory=_now)
    expires_at: datetime = field(default_factory=lambda: _now() + timedelta(seconds=30))

    def is_expired(self) -> bool:
        return _now() > self.expires_at


# Utility factories

def new_id() -> str:
    return uuid.uuid4().hex
