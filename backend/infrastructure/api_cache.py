"""
API Cache Manager - Short-TTL read-through cache for resolved listings

WHY: One popular auction gets many viewers at once. Each listing resolution
costs a subgraph query plus several RPC / metadata round trips.
A 2 minute cache keyed by listing id absorbs those bursts.

DESIGN:
- In-memory, per process
- TTL-based expiration with stale-while-revalidate for browse pages
- Per-key asyncio locks (stampede protection: one fetch per key at a time)
- On fetch failure, stale data inside the stale window is served instead
"""

import asyncio
import time
import hashlib
import json
import logging
from typing import Any, Optional, Dict, Callable, Awaitable
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class CacheEndpointType(Enum):
    """
    Different read paths have different freshness needs.
    A single listing must reflect new bids quickly; a browse page can lag.
    """
    LISTING = "listing"                 # Single enriched listing
    ACTIVE_LISTINGS = "active_listings"  # Browse page


# TTL Configuration (seconds)
TTL_CONFIG = {
    CacheEndpointType.LISTING: {"ttl": 120, "stale_ttl": 120},
    CacheEndpointType.ACTIVE_LISTINGS: {"ttl": 30, "stale_ttl": 600},   # 30s fresh, 10min fallback
}


@dataclass
class CacheEntry:
    """Single cache entry with metadata for TTL management."""
    value: Any
    created_at: float
    ttl: float
    stale_ttl: float
    hit_count: int = 0

    def is_fresh(self, now: float) -> bool:
        """Data is within primary TTL - serve directly"""
        return now < (self.created_at + self.ttl)

    def is_stale_but_usable(self, now: float) -> bool:
        """Data is stale but within stale TTL - serve but trigger refresh"""
        return (self.created_at + self.ttl) <= now < (self.created_at + self.stale_ttl)

    def is_expired(self, now: float) -> bool:
        """Data is completely expired - must refetch"""
        return now >= (self.created_at + self.stale_ttl)


class ApiCache:
    """
    In-memory read-through cache with stale-while-revalidate support.

    STALE-WHILE-REVALIDATE:
    - If data is fresh: return immediately
    - If data is stale but usable: return immediately + trigger background refresh
    - If data is expired: wait for fresh fetch
    """

    def __init__(
        self,
        max_entries: int = 10000,
        ttl_config: Optional[Dict[CacheEndpointType, Dict[str, float]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._cache: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._max_entries = max_entries
        self._ttl_config = {**TTL_CONFIG, **(ttl_config or {})}
        self._clock = clock
        self._background: set = set()

        self._stats = {
            "hits": 0,
            "misses": 0,
            "stale_hits": 0,
            "evictions": 0,
            "fallbacks": 0,
        }

    def _make_key(self, endpoint: str, params: Optional[Dict] = None) -> str:
        key_data = {"endpoint": endpoint, "params": params or {}}
        key_str = json.dumps(key_data, sort_keys=True, default=str)
        return hashlib.md5(key_str.encode()).hexdigest()

    def _get_lock(self, key: str) -> asyncio.Lock:
        # Single event loop: no await between check and insert
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict] = None,
        endpoint_type: CacheEndpointType = CacheEndpointType.LISTING,
        fetcher: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> Optional[Any]:
        """
        Get value from cache, fetching through fetcher on a miss.

        Args:
            endpoint: logical endpoint identifier
            params: parameters that distinguish entries
            endpoint_type: selects the TTL config
            fetcher: async function producing fresh data. None results are not cached.
        """
        key = self._make_key(endpoint, params)
        entry = self._cache.get(key)
        now = self._clock()

        # CASE 1: Fresh data exists - return immediately
        if entry and entry.is_fresh(now):
            entry.hit_count += 1
            self._stats["hits"] += 1
            logger.debug(f"Cache HIT (fresh): {endpoint}")
            return entry.value

        # CASE 2: Stale but usable - return immediately + background refresh
        if entry and entry.is_stale_but_usable(now):
            entry.hit_count += 1
            self._stats["stale_hits"] += 1
            logger.debug(f"Cache HIT (stale, refreshing): {endpoint}")

            if fetcher:
                task = asyncio.create_task(self._background_refresh(key, endpoint_type, fetcher))
                self._background.add(task)
                task.add_done_callback(self._background.discard)

            return entry.value

        # CASE 3: No data or expired - must fetch
        self._stats["misses"] += 1
        logger.debug(f"Cache MISS: {endpoint}")

        if fetcher:
            return await self._fetch_and_cache(key, endpoint_type, fetcher)

        return None

    async def _fetch_and_cache(
        self,
        key: str,
        endpoint_type: CacheEndpointType,
        fetcher: Callable[[], Awaitable[Any]],
    ) -> Any:
        lock = self._get_lock(key)

        async with lock:
            # Double-check after acquiring lock (another request may have fetched)
            entry = self._cache.get(key)
            if entry and entry.is_fresh(self._clock()):
                return entry.value

            try:
                value = await fetcher()
            except Exception as e:
                if entry and not entry.is_expired(self._clock()):
                    self._stats["fallbacks"] += 1
                    logger.warning(f"Fetch failed, returning stale: {e}")
                    return entry.value
                raise

            if value is not None:
                self.set(key, value, endpoint_type)
            return value

    async def _background_refresh(
        self,
        key: str,
        endpoint_type: CacheEndpointType,
        fetcher: Callable[[], Awaitable[Any]],
    ):
        lock = self._get_lock(key)

        # Skip if another refresh is in progress
        if lock.locked():
            return

        try:
            async with lock:
                value = await fetcher()
                if value is not None:
                    self.set(key, value, endpoint_type)
                logger.debug(f"Background refresh complete: {key[:16]}")
        except Exception as e:
            logger.warning(f"Background refresh failed: {e}")

    def set(self, key: str, value: Any, endpoint_type: CacheEndpointType = CacheEndpointType.LISTING):
        """Store value in cache with the endpoint type's TTL."""
        config = self._ttl_config.get(endpoint_type, TTL_CONFIG[CacheEndpointType.LISTING])

        if key not in self._cache and len(self._cache) >= self._max_entries:
            self._evict_lru()

        self._cache[key] = CacheEntry(
            value=value,
            created_at=self._clock(),
            ttl=config["ttl"],
            stale_ttl=max(config["ttl"], config["stale_ttl"]),
        )

    def _evict_lru(self):
        """Evict the least used 10% (ties broken by age)."""
        if not self._cache:
            return

        sorted_keys = sorted(
            self._cache.keys(),
            key=lambda k: (self._cache[k].hit_count, self._cache[k].created_at)
        )

        to_remove = max(1, len(sorted_keys) // 10)
        for key in sorted_keys[:to_remove]:
            del self._cache[key]
            lock = self._locks.get(key)
            if lock is not None and not lock.locked():
                del self._locks[key]
            self._stats["evictions"] += 1

    def invalidate(self, endpoint: str, params: Optional[Dict] = None):
        """Manually invalidate a cache entry."""
        self._cache.pop(self._make_key(endpoint, params), None)

    def get_stats(self) -> Dict:
        """Get cache statistics for monitoring."""
        total = self._stats["hits"] + self._stats["misses"] + self._stats["stale_hits"]
        hit_rate = (self._stats["hits"] + self._stats["stale_hits"]) / max(1, total)

        return {
            **self._stats,
            "total_requests": total,
            "hit_rate": f"{hit_rate:.1%}",
            "entries": len(self._cache),
            "max_entries": self._max_entries
        }

    def clear(self):
        """Clear all cache entries."""
        self._cache.clear()
        self._locks.clear()
        logger.info("Cache cleared")
