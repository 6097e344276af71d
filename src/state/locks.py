from __future__ import annotations
from contextlib import contextmanager
import time
from .repository import InMemoryStore


class ShardBusy(RuntimeError):
    def __init__(self, shard: str):
        super().__init__(f"shard_locked:{shard}")
        self.shard = shard


def slot_shard(slot_key: str) -> str:
    return f"Slot:{slot_key}"


def youth_shard(volunteer_id: str) -> str:
    return f"YouthVolunteer:{volunteer_id}"


def acquire(store: InMemoryStore, shard: str, owner: str, ttl_seconds: int = 30) -> bool:
    return store.acquire_shard(shard, owner, ttl_seconds)


def release(store: InMemoryStore, shard: str, owner: str):
    store.release_shard(shard, owner)


@contextmanager
def hold(store: InMemoryStore, shard: str, owner: str, ttl_seconds: int = 30, attempts: int = 20, wait_seconds: float = 0.05):
    """Hold ``shard`` for the duration of the block, retrying briefly while another owner has it."""
    for attempt in range(attempts):
        if acquire(store, shard, owner, ttl_seconds):
            break
        if attempt + 1 < attempts:
            time.sleep(wait_seconds)
    else:
        raise ShardBusy(shard)
    try:
        yield
    finally:
        release(store, shard, owner)
