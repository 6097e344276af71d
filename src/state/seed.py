from __future__ import annotations
from hashlib import sha256
from typing import Optional
import json

from settings import BOOKINGS_KEY, LEGACY_SLOTS_KEY, YOUTH_VOLUNTEERS_KEY
from availability.roster import VolunteerRoster, roster_from_config, load_roster_file
from .repository import InMemoryStore


def _weekday_windows(days: list[str], start: float, end: float) -> dict:
    return {day: {"start": start, "end": end} for day in days}


_FULL_PERIOD = [
    "2026-01-28", "2026-01-29", "2026-01-30", "2026-01-31",
    "2026-02-02", "2026-02-03", "2026-02-04", "2026-02-05", "2026-02-06",
    "2026-02-09", "2026-02-10", "2026-02-11", "2026-02-12", "2026-02-13",
]

# Phone/video roster for the 2026 count. Declaration order is the assignment tie-break.
DEFAULT_ROSTER = {
    "kelly": {
        "name": "Kelly",
        "methods": ["phone", "video"],
        "availability": {
            "2026-02-02": {"start": 9, "end": 11},
            "2026-02-04": {"start": 9, "end": 13},
            "2026-02-05": {"start": 14, "end": 14.5},
            "2026-02-06": {"start": 9, "end": 14},
            "2026-02-09": {"start": 6, "end": 18},
            "2026-02-10": {"start": 9, "end": 10},
            "2026-02-11": {"start": 9, "end": 11},
            "2026-02-12": {"start": 9, "end": 12},
            "2026-02-13": {"start": 9, "end": 11},
        },
    },
    "joyce": {
        "name": "Joyce",
        "methods": ["phone", "video"],
        "availability": {
            "2026-02-02": {"start": 8, "end": 10},
            "2026-02-04": {"start": 9, "end": 13},
            "2026-02-06": {"start": 9, "end": 13},
            "2026-02-09": {"start": 6, "end": 18},
            "2026-02-10": {"start": 6, "end": 18},
            "2026-02-11": {"start": 8, "end": 10},
            "2026-02-12": {"start": 6, "end": 18},
            "2026-02-13": {"start": 9, "end": 13},
        },
    },
    "stephen": {
        "name": "Stephen",
        "methods": ["phone", "video"],
        "availability": {
            "2026-02-02": {"start": 12, "end": 15},
            "2026-02-03": {"start": 10, "end": 12},
            "2026-02-04": {"start": 13, "end": 14},
            "2026-02-05": {"start": 10, "end": 12},
            "2026-02-09": {"start": 11, "end": 12},
            "2026-02-10": {"start": 10, "end": 12},
            "2026-02-12": {"start": 6, "end": 18},
        },
    },
    "kyle": {
        "name": "Kyle",
        "methods": ["phone", "video"],
        "availability": {
            "2026-01-29": {"start": 12, "end": 14},
            "2026-01-30": {"start": 15, "end": 16},
            "2026-02-02": {"start": 15, "end": 16},
            "2026-02-03": {"start": 13, "end": 14},
            "2026-02-04": {"start": 15, "end": 16},
            "2026-02-05": {"start": 11, "end": 12},
            "2026-02-09": {"start": 13, "end": 14},
            "2026-02-10": {"start": 11.5, "end": 12.5},
            "2026-02-11": {"start": 12, "end": 14},
            "2026-02-13": {"start": 13, "end": 14},
        },
    },
    "matt": {
        "name": "Matt",
        "methods": ["phone", "video"],
        "availability": _weekday_windows(_FULL_PERIOD, 6, 9),
    },
    "casey": {
        "name": "Casey",
        "methods": ["phone", "video"],
        "availability": _weekday_windows(_FULL_PERIOD, 9, 17),
    },
    "corinn": {
        "name": "Corinn",
        "methods": ["phone", "video"],
        "availability": _weekday_windows(_FULL_PERIOD, 9, 18),
    },
}


def load_volunteer_roster(path: Optional[str] = None) -> VolunteerRoster:
    if path:
        return load_roster_file(path)
    return roster_from_config(DEFAULT_ROSTER)


def reset_store_state(store: InMemoryStore):
    """Clear bookings, youth roster, locks and the audit trail (tests, admin resets)."""
    store.reset()


def snapshot_hash(store: InMemoryStore) -> str:
    """Stable hash of persisted booking state; used to prove rejected requests write nothing."""
    payload = {
        "bookings": store.get(BOOKINGS_KEY) or [],
        "legacy": store.get(LEGACY_SLOTS_KEY) or [],
        "youth": store.hgetall(YOUTH_VOLUNTEERS_KEY),
    }
    ser = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return sha256(ser.encode()).hexdigest()
