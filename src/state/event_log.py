from __future__ import annotations
from typing import Optional, Dict, Any
from .repository import InMemoryStore
from .models import EventLogEntry, new_id, _now


def log(store: InMemoryStore, kind: str, correlation_id: str, actor: str, shard: Optional[str], data: Dict[str, Any]):
    entry = EventLogEntry(
        id=new_id(),
        timestamp=_now(),
        correlation_id=correlation_id,
        actor=actor,
        shard=shard,
        kind=kind,
        data=data
    )
    store.append_event(entry)
    return entry


def events_of_kind(store: InMemoryStore, kind: str) -> list[EventLogEntry]:
    return [e for e in store.event_log if e.kind == kind]
