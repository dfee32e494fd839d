"""
Cache Layer

TTL-aware key-value cache backing the aggregator. `get` is a pure lookup
that also returns expired entries; freshness is answered separately by
`is_stale`, so callers can fall back to stale data when every provider
fails. Entries are immutable and replaced whole, never patched.

Two backends are available:
- MemoryCacheBackend: process-local dict with optional LRU bound
- DatabaseCacheBackend: the `anime_cache` SQLite table (survives restarts)
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
import json
import logging
import threading
from typing import Any, Callable, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from app.database import session_scope
from app.models import AnimeCacheEntry
from app.utils.time_helpers import ensure_utc, utc_now


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True, slots=True)
class CacheEntry:
    """Immutable cached result"""
    key: str
    payload: Any
    fetched_at: datetime
    ttl_seconds: int

    @property
    def expires_at(self) -> datetime:
        return self.fetched_at + timedelta(seconds=self.ttl_seconds)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.fetched_at).total_seconds()

    def is_expired(self, now: datetime) -> bool:
        return self.age_seconds(now) > self.ttl_seconds


class CacheBackend(Protocol):
    """Storage contract behind CacheLayer"""

    name: str

    async def read(self, key: str) -> CacheEntry | None: ...

    async def write(self, entry: CacheEntry) -> None: ...

    async def delete(self, key: str) -> bool: ...

    async def delete_expired_before(self, cutoff: datetime) -> int: ...

    async def clear(self) -> int: ...

    async def count(self) -> int: ...


class MemoryCacheBackend:
    """
    In-process cache store.

    A single lock guards the dict; writes swap in a fully built entry, so a
    reader sees either the previous entry or the new one. With max_entries
    set, the least recently used key is evicted on overflow.
    """

    name = "memory"

    def __init__(self, max_entries: int = 0) -> None:
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.Lock()
        self.max_entries = max_entries

    async def read(self, key: str) -> CacheEntry | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
            return entry

    async def write(self, entry: CacheEntry) -> None:
        with self._lock:
            self._entries[entry.key] = entry
            self._entries.move_to_end(entry.key)
            while self.max_entries and len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("Evicted least recently used cache entry: %s", evicted)

    async def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    async def delete_expired_before(self, cutoff: datetime) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if entry.expires_at < cutoff]
            for key in expired:
                del self._entries[key]
            return len(expired)

    async def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    async def count(self) -> int:
        with self._lock:
            return len(self._entries)


def _naive_utc(dt: datetime) -> datetime:
    # SQLite DATETIME columns hold naive values; everything is stored as UTC
    return ensure_utc(dt).replace(tzinfo=None)


class DatabaseCacheBackend:
    """
    Cache store on the `anime_cache` table.

    Each write is a single UPSERT inside its own transaction, so concurrent
    writers to one key end with one complete row (last writer wins).
    Requires init_db() to have run.
    """

    name = "database"

    async def read(self, key: str) -> CacheEntry | None:
        async with session_scope() as session:
            row = await session.get(AnimeCacheEntry, key)
            if row is None:
                return None
            return CacheEntry(
                key=row.cache_key,
                payload=json.loads(row.payload),
                fetched_at=ensure_utc(row.fetched_at),
                ttl_seconds=row.ttl_seconds,
            )

    async def write(self, entry: CacheEntry) -> None:
        values = {
            "cache_key": entry.key,
            "payload": json.dumps(entry.payload, ensure_ascii=False, separators=(",", ":")),
            "fetched_at": _naive_utc(entry.fetched_at),
            "ttl_seconds": entry.ttl_seconds,
            "expires_at": _naive_utc(entry.expires_at),
            "updated_at": _naive_utc(utc_now()),
        }
        stmt = sqlite_insert(AnimeCacheEntry).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AnimeCacheEntry.cache_key],
            set_={column: stmt.excluded[column] for column in values if column != "cache_key"},
        )
        async with session_scope() as session:
            await session.execute(stmt)

    async def delete(self, key: str) -> bool:
        async with session_scope() as session:
            result = await session.execute(
                delete(AnimeCacheEntry).where(AnimeCacheEntry.cache_key == key)
            )
            return (result.rowcount or 0) > 0

    async def delete_expired_before(self, cutoff: datetime) -> int:
        async with session_scope() as session:
            result = await session.execute(
                delete(AnimeCacheEntry).where(AnimeCacheEntry.expires_at < _naive_utc(cutoff))
            )
            return result.rowcount or 0

    async def clear(self) -> int:
        async with session_scope() as session:
            result = await session.execute(delete(AnimeCacheEntry))
            return result.rowcount or 0

    async def count(self) -> int:
        async with session_scope() as session:
            result = await session.execute(select(func.count()).select_from(AnimeCacheEntry))
            return result.scalar_one()


class CacheLayer:
    """
    Process-wide cache with TTL staleness and explicit invalidation.

    Construct once at startup and share the instance; a per-request cache
    would never produce a hit.
    """

    def __init__(self, backend: CacheBackend | None = None, *, clock: Clock = utc_now) -> None:
        self.backend = backend or MemoryCacheBackend()
        self._clock = clock
        self._stats = {"hits": 0, "misses": 0, "writes": 0, "invalidations": 0}

    def now(self) -> datetime:
        return self._clock()

    async def get(self, key: str) -> CacheEntry | None:
        """Return the stored entry, expired or not; never triggers a fetch."""
        entry = await self.backend.read(key)
        if entry is None:
            self._stats["misses"] += 1
        else:
            self._stats["hits"] += 1
        return entry

    async def set(self, key: str, payload: Any, ttl: int) -> None:
        """Replace the entry for key with a complete new one."""
        entry = CacheEntry(key=key, payload=payload, fetched_at=self.now(), ttl_seconds=int(ttl))
        await self.backend.write(entry)
        self._stats["writes"] += 1
        logger.debug("Cached %s (ttl=%ss)", key, ttl)

    async def is_stale(self, key: str, max_age: float | timedelta) -> bool:
        """True when no entry exists or it is older than max_age."""
        entry = await self.backend.read(key)
        if entry is None:
            return True
        if isinstance(max_age, timedelta):
            max_age = max_age.total_seconds()
        return entry.age_seconds(self.now()) > max_age

    async def invalidate(self, key: str) -> bool:
        removed = await self.backend.delete(key)
        if removed:
            self._stats["invalidations"] += 1
            logger.info("Invalidated cache: %s", key)
        return removed

    async def get_ttl(self, key: str) -> int:
        """Remaining TTL in whole seconds, or -1 when missing or expired."""
        entry = await self.backend.read(key)
        if entry is None:
            return -1
        remaining = int((entry.expires_at - self.now()).total_seconds())
        return remaining if remaining > 0 else -1

    async def purge_expired(self, grace_seconds: int = 0) -> int:
        """
        Delete entries whose TTL ran out more than grace_seconds ago.

        The grace period keeps recently expired entries around as the stale
        fallback for provider outages.
        """
        cutoff = self.now() - timedelta(seconds=grace_seconds)
        count = await self.backend.delete_expired_before(cutoff)
        if count:
            logger.info("Purged %s expired cache entries (grace=%ss)", count, grace_seconds)
        return count

    async def clear(self) -> int:
        count = await self.backend.clear()
        logger.info("Cleared %s cache entries", count)
        return count

    async def stats(self) -> dict[str, Any]:
        lookups = self._stats["hits"] + self._stats["misses"]
        return {
            "backend": self.backend.name,
            "entries": await self.backend.count(),
            **self._stats,
            "hit_rate_percent": round(self._stats["hits"] / lookups * 100, 1) if lookups else 0.0,
        }
