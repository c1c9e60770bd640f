"""
Cache layer — in-process TTL cache with stale fallback + optional Redis mirror.

Provides:
    • TTLCache: keyed entries with freshness measured on the monotonic clock
    • Compare-and-set on fetched_at (an older write never clobbers a newer one)
    • Stale-but-usable reads for degraded-mode fallback
    • Redis mirror helpers so the last good payload survives a restart

Usage:
    from hazardwatch.core.cache import TTLCache

    cache = TTLCache()
    cache.set("hazards:earthquake", events, ttl=120)
    value, fresh = cache.get("hazards:earthquake")
    stale = cache.get_stale_if_present("hazards:earthquake")
"""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

import redis.asyncio as aioredis

from hazardwatch.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    data: T
    fetched_at: float  # monotonic seconds
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.fetched_at) <= self.ttl


class TTLCache:
    """
    Keyed TTL cache. Expired entries are kept until overwritten or evicted.

    Each key has its own lock, so readers and writers of different keys
    never contend; the registry lock is only held while a key's lock is
    created.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        lock = self._locks.get(key)
        if lock is None:
            with self._registry_lock:
                lock = self._locks.setdefault(key, threading.Lock())
        return lock

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> Tuple[Optional[Any], bool]:
        """(value, is_fresh); (None, False) on a miss."""
        with self._lock_for(key):
            entry = self._entries.get(key)
        if entry is None:
            return None, False
        return entry.data, entry.is_fresh(self._clock())

    def get_entry(self, key: str) -> Optional[CacheEntry[Any]]:
        with self._lock_for(key):
            return self._entries.get(key)

    def set(
        self,
        key: str,
        value: Any,
        ttl: float,
        fetched_at: Optional[float] = None,
    ) -> bool:
        """
        Store value under key.

        fetched_at defaults to now. Returns False (and leaves the cache
        untouched) when the current entry was fetched later than this write.
        """
        if fetched_at is None:
            fetched_at = self._clock()
        with self._lock_for(key):
            current = self._entries.get(key)
            if current is not None and current.fetched_at > fetched_at:
                logger.debug("Cache write for %s rejected: newer entry present", key)
                return False
            self._entries[key] = CacheEntry(value, fetched_at, ttl)
            return True

    def get_stale_if_present(self, key: str) -> Optional[Any]:
        """Value regardless of freshness, or None."""
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def seed_stale(self, key: str, value: Any, ttl: float) -> bool:
        """Insert an already-expired entry if the key is empty (restart hydration)."""
        with self._lock_for(key):
            if key in self._entries:
                return False
            self._entries[key] = CacheEntry(value, self._clock() - ttl - 1.0, ttl)
            return True

    def evict(self, key: str) -> None:
        with self._lock_for(key):
            self._entries.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._entries)


# ═══════════════════════════════════════════════════════════════════════════
# Redis mirror
# ═══════════════════════════════════════════════════════════════════════════

# Lazy Redis client, initialised on first use
_redis_client: Optional[aioredis.Redis] = None


async def _get_redis() -> Optional[aioredis.Redis]:
    """Get or create the async Redis client; None when mirroring is off."""
    global _redis_client
    if not settings.REDIS_ENABLED:
        return None
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
        )
        logger.info("Redis mirror connected: %s", settings.REDIS_URL)
    return _redis_client


async def mirror_get(key: str) -> Optional[Any]:
    """Mirrored payload for key. Returns None on miss or error."""
    client = await _get_redis()
    if not client:
        return None
    try:
        raw = await client.get(key)
        if raw is not None:
            return json.loads(raw)
    except (aioredis.RedisError, ValueError) as e:
        logger.warning("Mirror GET error for %s: %s", key, e)
    return None


async def mirror_set(key: str, value: Any, ttl: Optional[int] = None) -> bool:
    """Write a JSON payload to the mirror."""
    client = await _get_redis()
    if not client:
        return False
    try:
        serialised = json.dumps(value, default=str)
        await client.set(key, serialised, ex=ttl or settings.REDIS_MIRROR_TTL)
        return True
    except aioredis.RedisError as e:
        logger.warning("Mirror SET error for %s: %s", key, e)
        return False


async def mirror_delete(key: str) -> bool:
    client = await _get_redis()
    if not client:
        return False
    try:
        await client.delete(key)
        return True
    except aioredis.RedisError as e:
        logger.warning("Mirror DELETE error for %s: %s", key, e)
        return False


async def ping_redis() -> bool:
    client = await _get_redis()
    if not client:
        return False
    return bool(await client.ping())


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("Redis connection closed")
