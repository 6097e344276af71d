from __future__ import annotations
from typing import Dict, List, Optional, Any, Tuple
import json
import logging
import threading
from datetime import timedelta
from .models import EventLogEntry, ShardLock, _now
import psycopg
from psycopg_pool import ConnectionPool
from psycopg.types.json import Json
from psycopg.rows import dict_row

logger = logging.getLogger("state.repository")


class StoreUnavailable(RuntimeError):
    """The backing document store could not be read or written."""


def _copy(value: Any) -> Any:
    # stored values are JSON documents; round-trip so callers never alias stored state
    if value is None:
        return None
    return json.loads(json.dumps(value))


class InMemoryStore:
    """Document store with get/set semantics plus a few hash and lock helpers.

    Whole documents are replaced on write. ``get_versioned``/``set_if_version``
    give callers a compare-and-swap on top of that so a read-modify-write
    cycle can detect a concurrent writer.
    """

    def __init__(self):
        self.documents: Dict[str, Any] = {}
        self.versions: Dict[str, int] = {}
        self.hashes: Dict[str, Dict[str, Any]] = {}
        self.shard_locks: Dict[str, ShardLock] = {}
        self.event_log: List[EventLogEntry] = []
        self._lock = threading.RLock()

    # Documents
    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            return _copy(self.documents.get(key))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self.documents[key] = _copy(value)
            self.versions[key] = self.versions.get(key, 0) + 1

    def get_versioned(self, key: str) -> Tuple[Optional[Any], int]:
        with self._lock:
            return _copy(self.documents.get(key)), self.versions.get(key, 0)

    def set_if_version(self, key: str, value: Any, expected_version: int) -> bool:
        with self._lock:
            if self.versions.get(key, 0) != expected_version:
                return False
            self.documents[key] = _copy(value)
            self.versions[key] = expected_version + 1
            return True

    # Hashes (one field per record)
    def hget(self, key: str, field: str) -> Optional[Any]:
        with self._lock:
            return _copy(self.hashes.get(key, {}).get(field))

    def hset(self, key: str, field: str, value: Any) -> None:
        with self._lock:
            self.hashes.setdefault(key, {})[field] = _copy(value)

    def hdel(self, key: str, field: str) -> bool:
        with self._lock:
            return self.hashes.get(key, {}).pop(field, None) is not None

    def hgetall(self, key: str) -> Dict[str, Any]:
        with self._lock:
            return _copy(self.hashes.get(key, {}))

    # Shard lock (coarse) - non-blocking acquire
    def acquire_shard(self, shard: str, owner: str, ttl_seconds: int = 30) -> bool:
        with self._lock:
            existing = self.shard_locks.get(shard)
            if existing and not existing.is_expired() and existing.owner != owner:
                return False
            expires = _now() + timedelta(seconds=ttl_seconds)
            self.shard_locks[shard] = ShardLock(shard=shard, owner=owner, expires_at=expires)
            return True

    def release_shard(self, shard: str, owner: str):
        with self._lock:
            existing = self.shard_locks.get(shard)
            if existing and existing.owner == owner:
                del self.shard_locks[shard]

    # Event log
    def append_event(self, entry: EventLogEntry):
        with self._lock:
            self.event_log.append(entry)
            # keep the audit trail bounded in long-running processes
            if len(self.event_log) > 5000:
                del self.event_log[: len(self.event_log) - 5000]

    def reset(self):
        with self._lock:
            self.documents.clear()
            self.versions.clear()
            self.hashes.clear()
            self.shard_locks.clear()
            self.event_log.clear()

    def close(self):
        pass


SCHEMA_SQL = """
create table if not exists kv_document (
    key text primary key,
    value jsonb,
    version integer not null default 0,
    updated_at timestamptz not null default now()
);
create table if not exists kv_hash (
    key text not null,
    field text not null,
    value jsonb,
    updated_at timestamptz not null default now(),
    primary key (key, field)
);
create table if not exists shard_lock (
    shard text primary key,
    owner text not null,
    expires_at timestamptz not null
);
"""


class PostgresStore(InMemoryStore):
    """Document store persisted to Postgres.

    Documents, hashes and shard locks live in Postgres so several worker
    processes share them. The event log stays in-process. Backend errors are
    logged and re-raised as ``StoreUnavailable``; nothing falls back to memory,
    so a failed request leaves no partial state behind.
    """

    def __init__(self, conninfo: str, *, min_size: int = 1, max_size: int = 5):
        super().__init__()
        self._logger = logging.getLogger("state.postgres")
        self._pool = ConnectionPool(
            conninfo,
            min_size=min_size,
            max_size=max_size,
            kwargs={"autocommit": True},
        )

    def ensure_schema(self):
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
        except psycopg.Error as exc:
            self._logger.exception("Unable to create store schema")
            raise StoreUnavailable("schema_failed") from exc

    def close(self):
        self._pool.close()

    def reset(self):
        super().reset()
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute("truncate kv_document, kv_hash, shard_lock")
        except psycopg.Error as exc:
            self._logger.exception("Store reset failed")
            raise StoreUnavailable("reset_failed") from exc

    # Documents
    def get(self, key: str) -> Optional[Any]:
        value, _ = self.get_versioned(key)
        return value

    def get_versioned(self, key: str) -> Tuple[Optional[Any], int]:
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                cur.execute("select value, version from kv_document where key = %s", (key,))
                row = cur.fetchone()
        except psycopg.Error as exc:
            self._logger.exception("Document read failed for %s", key)
            raise StoreUnavailable(f"read_failed:{key}") from exc
        if not row:
            return None, 0
        return row["value"], row["version"]

    def set(self, key: str, value: Any) -> None:
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    insert into kv_document (key, value, version, updated_at)
                    values (%s, %s, 1, now())
                    on conflict (key) do update set
                        value = excluded.value,
                        version = kv_document.version + 1,
                        updated_at = excluded.updated_at
                    """,
                    (key, Json(value)),
                )
        except psycopg.Error as exc:
            self._logger.exception("Document write failed for %s", key)
            raise StoreUnavailable(f"write_failed:{key}") from exc

    def set_if_version(self, key: str, value: Any, expected_version: int) -> bool:
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                if expected_version == 0:
                    cur.execute(
                        """
                        insert into kv_document (key, value, version, updated_at)
                        values (%s, %s, 1, now())
                        on conflict (key) do nothing
                        """,
                        (key, Json(value)),
                    )
                else:
                    cur.execute(
                        """
                        update kv_document
                        set value = %s, version = version + 1, updated_at = now()
                        where key = %s and version = %s
                        """,
                        (Json(value), key, expected_version),
                    )
                return cur.rowcount == 1
        except psycopg.Error as exc:
            self._logger.exception("Conditional write failed for %s", key)
            raise StoreUnavailable(f"write_failed:{key}") from exc

    # Hashes
    def hget(self, key: str, field: str) -> Optional[Any]:
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                cur.execute("select value from kv_hash where key = %s and field = %s", (key, field))
                row = cur.fetchone()
        except psycopg.Error as exc:
            self._logger.exception("Hash read failed for %s/%s", key, field)
            raise StoreUnavailable(f"read_failed:{key}") from exc
        return row["value"] if row else None

    def hset(self, key: str, field: str, value: Any) -> None:
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    insert into kv_hash (key, field, value, updated_at)
                    values (%s, %s, %s, now())
                    on conflict (key, field) do update set
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    """,
                    (key, field, Json(value)),
                )
        except psycopg.Error as exc:
            self._logger.exception("Hash write failed for %s/%s", key, field)
            raise StoreUnavailable(f"write_failed:{key}") from exc

    def hdel(self, key: str, field: str) -> bool:
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute("delete from kv_hash where key = %s and field = %s", (key, field))
                return cur.rowcount == 1
        except psycopg.Error as exc:
            self._logger.exception("Hash delete failed for %s/%s", key, field)
            raise StoreUnavailable(f"write_failed:{key}") from exc

    def hgetall(self, key: str) -> Dict[str, Any]:
        try:
            with self._pool.connection() as conn, conn.cursor(row_factory=dict_row) as cur:
                cur.execute("select field, value from kv_hash where key = %s order by field", (key,))
                rows = cur.fetchall()
        except psycopg.Error as exc:
            self._logger.exception("Hash read failed for %s", key)
            raise StoreUnavailable(f"read_failed:{key}") from exc
        return {row["field"]: row["value"] for row in rows}

    # Shard locks shared across processes
    def acquire_shard(self, shard: str, owner: str, ttl_seconds: int = 30) -> bool:
        expires = _now() + timedelta(seconds=ttl_seconds)
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute(
                    """
                    insert into shard_lock (shard, owner, expires_at)
                    values (%s, %s, %s)
                    on conflict (shard) do update set
                        owner = excluded.owner,
                        expires_at = excluded.expires_at
                    where shard_lock.expires_at < now() or shard_lock.owner = excluded.owner
                    returning shard
                    """,
                    (shard, owner, expires),
                )
                return cur.fetchone() is not None
        except psycopg.Error as exc:
            self._logger.exception("Lock acquire failed for %s", shard)
            raise StoreUnavailable(f"lock_failed:{shard}") from exc

    def release_shard(self, shard: str, owner: str):
        try:
            with self._pool.connection() as conn, conn.cursor() as cur:
                cur.execute("delete from shard_lock where shard = %s and owner = %s", (shard, owner))
        except psycopg.Error:
            # the TTL frees the lock eventually
            self._logger.exception("Lock release failed for %s", shard)


def initialise_store(database_url: Optional[str] = None) -> InMemoryStore:
    if database_url:
        logger.info("Using PostgresStore via DATABASE_URL")
        store = PostgresStore(database_url)
        store.ensure_schema()
        return store
    logger.info("DATABASE_URL not set; using in-memory store")
    return InMemoryStore()
