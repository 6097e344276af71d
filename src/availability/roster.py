from __future__ import annotations
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
import json
import logging

from state.models import AvailabilityWindow, Volunteer, YouthVolunteer, ROSTER_METHODS, normalize_method
from .period import format_date_key

logger = logging.getLogger(__name__)


class VolunteerRoster:
    """Windowed phone/video roster. Iteration order is declaration order."""

    def __init__(self, volunteers: Iterable[Volunteer]):
        self._volunteers: List[Volunteer] = []
        self._by_id: Dict[str, Volunteer] = {}
        for vol in volunteers:
            if vol.id in self._by_id:
                raise ValueError(f"duplicate volunteer id: {vol.id}")
            self._volunteers.append(vol)
            self._by_id[vol.id] = vol

    def __iter__(self):
        return iter(self._volunteers)

    def __len__(self) -> int:
        return len(self._volunteers)

    def get(self, volunteer_id: str) -> Optional[Volunteer]:
        return self._by_id.get(volunteer_id)

    def is_available(self, volunteer_id: str, day: date, hour: float) -> bool:
        vol = self._by_id.get(volunteer_id)
        if not vol:
            return False
        window = vol.availability.get(format_date_key(day))
        if not window:
            return False
        return window.covers(hour)

    def eligible_volunteers(self, day: date, hour: float, method: str) -> List[Volunteer]:
        return [
            vol
            for vol in self._volunteers
            if vol.supports(method) and self.is_available(vol.id, day, hour)
        ]

    def has_coverage(self, day: date, hour: float) -> bool:
        # any roster method, booking state ignored
        return any(self.is_available(vol.id, day, hour) for vol in self._volunteers)

    def summary(self) -> List[Dict[str, Any]]:
        return [
            {
                "id": vol.id,
                "name": vol.name,
                "methods": list(vol.methods),
                "availability": [
                    {"date": day_key, "start": window.start, "end": window.end}
                    for day_key, window in sorted(vol.availability.items())
                ],
            }
            for vol in self._volunteers
        ]


class YouthRoster:
    """Explicit-set chat roster snapshot, ordered by registration time."""

    def __init__(self, volunteers: Iterable[YouthVolunteer]):
        self._volunteers = sorted(volunteers, key=lambda v: (v.created_at, v.id))
        self._by_id = {v.id: v for v in self._volunteers}
        self._slots = {v.id: frozenset(v.availability) for v in self._volunteers}

    @classmethod
    def from_records(cls, records: Dict[str, Any]) -> "YouthRoster":
        volunteers = []
        for volunteer_id, data in records.items():
            if isinstance(data, str):
                data = json.loads(data)
            volunteers.append(YouthVolunteer.from_record(volunteer_id, data))
        return cls(volunteers)

    def __iter__(self):
        return iter(self._volunteers)

    def __len__(self) -> int:
        return len(self._volunteers)

    def get(self, volunteer_id: str) -> Optional[YouthVolunteer]:
        return self._by_id.get(volunteer_id)

    def is_available(self, volunteer_id: str, slot_key: str) -> bool:
        return slot_key in self._slots.get(volunteer_id, frozenset())

    def eligible_volunteers(self, slot_key: str) -> List[YouthVolunteer]:
        return [v for v in self._volunteers if slot_key in self._slots[v.id]]


def roster_from_config(config: Dict[str, Any]) -> VolunteerRoster:
    """Build a roster from ``{id: {name, methods, availability: {date: {start, end}}}}``."""
    volunteers: List[Volunteer] = []
    for volunteer_id, entry in config.items():
        methods = []
        for raw in entry.get("methods", []):
            method = normalize_method(raw)
            if method not in ROSTER_METHODS:
                raise ValueError(f"volunteer {volunteer_id}: unsupported contact method {raw!r}")
            if method not in methods:
                methods.append(method)
        availability: Dict[str, AvailabilityWindow] = {}
        for day_key, window in (entry.get("availability") or {}).items():
            start, end = float(window["start"]), float(window["end"])
            if end <= start:
                raise ValueError(f"volunteer {volunteer_id}: empty window on {day_key}")
            availability[day_key] = AvailabilityWindow(start=start, end=end)
        volunteers.append(
            Volunteer(
                id=volunteer_id,
                name=entry.get("name") or volunteer_id,
                methods=tuple(methods),
                availability=availability,
            )
        )
    return VolunteerRoster(volunteers)


def load_roster_file(path: str) -> VolunteerRoster:
    with open(path, encoding="utf-8") as fh:
        config = json.load(fh)
    roster = roster_from_config(config)
    logger.info("Loaded %d volunteers from %s", len(roster), path)
    return roster
