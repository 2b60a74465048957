"""Two-tier adaptive cache for feed content.

This module provides the AdaptiveCache class: a memory tier with
priority-weighted eviction, a smaller sub-cache for media-bearing payloads,
and an optional durable tier that persists high-priority entries through a
``DurableStorage`` provider. A periodic background task re-runs registered
refresh callbacks while the host is in background execution mode.
"""

import json
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from feed_engine import metrics
from feed_engine.cache_layer.scheduler import PeriodicTaskHandle, Scheduler
from feed_engine.cache_layer.storage import DurableStorage
from feed_engine.exceptions import StorageError
from feed_engine.models import CacheEntry, CachePriority, payload_has_media


logger = structlog.get_logger(__name__)

RefreshCallback = Callable[[], Awaitable[None]]


@dataclass
class CacheSettings:
    """Capacity, expiry and background refresh parameters."""

    capacity: int = 1000
    eviction_fraction: float = 0.2
    media_capacity: int = 200
    media_eviction_fraction: float = 0.3
    ttl_seconds: float = 30 * 60
    refresh_interval: float = 5.0

    def __post_init__(self) -> None:
        """Validate cache settings."""
        if self.capacity < 1 or self.media_capacity < 1:
            raise ValueError("Cache capacities must be at least 1")
        if not 0.0 < self.eviction_fraction < 1.0:
            raise ValueError("Eviction fraction must be between 0.0 and 1.0")
        if not 0.0 < self.media_eviction_fraction < 1.0:
            raise ValueError("Media eviction fraction must be between 0.0 and 1.0")
        if self.ttl_seconds <= 0:
            raise ValueError("TTL must be positive")
        if self.refresh_interval <= 0:
            raise ValueError("Refresh interval must be positive")


class AdaptiveCache:
    """Memory-first cache with priority-weighted eviction and durable spill.

    Attributes:
        settings: Capacity and expiry configuration
        durable_storage: Provider for the durable tier, None for memory-only
        background_mode: Whether the host process is backgrounded
    """

    def __init__(
        self,
        durable_storage: Optional[DurableStorage] = None,
        settings: Optional[CacheSettings] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the cache.

        Args:
            durable_storage: Storage provider for high-priority entries
            settings: Cache settings (defaults when None)
            clock: Returns the current time in epoch seconds
        """
        self.settings = settings or CacheSettings()
        self.durable_storage = durable_storage
        self.background_mode = False

        self._clock = clock
        self._memory: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._media: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._durable_available = durable_storage is not None
        self._refresh_callbacks: Dict[str, RefreshCallback] = {}
        self._refresh_handle: Optional[PeriodicTaskHandle] = None

        self._hits = {"memory": 0, "media": 0, "durable": 0}
        self._misses = 0
        self._evictions = 0

    def __len__(self) -> int:
        return len(self._memory)

    def __contains__(self, key: str) -> bool:
        entry = self._memory.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    @property
    def durable_available(self) -> bool:
        return self._durable_available

    def _new_entry(self, value: Any, priority: CachePriority) -> CacheEntry:
        now = self._clock()
        return CacheEntry(
            data=value,
            timestamp=now,
            expiry=now + self.settings.ttl_seconds,
            priority=priority,
            access_count=0,
            last_access=now,
        )

    async def put(self, key: str, value: Any, priority: CachePriority = CachePriority.MEDIUM) -> None:
        """Store a value.

        The memory tier always receives the entry; high-priority entries are
        also persisted durably. Media-bearing payloads are mirrored into the
        media sub-cache.

        Args:
            key: Cache key
            value: Payload to cache
            priority: Eviction priority, also decides durable persistence
        """
        priority = CachePriority(priority)
        entry = self._new_entry(value, priority)

        self._memory[key] = entry
        self._memory.move_to_end(key)

        if payload_has_media(value):
            self._media[key] = self._new_entry(value, priority)
            self._media.move_to_end(key)
            if len(self._media) > self.settings.media_capacity:
                self._evict_media()
        else:
            # An overwrite must not leave an older media mirror behind.
            self._media.pop(key, None)

        victims = self._evict() if len(self._memory) > self.settings.capacity else []

        if priority is CachePriority.HIGH and key in self._memory:
            await self._persist(key, entry)

        await self._remove_evicted_durable(victims)

    async def get(self, key: str) -> Optional[Any]:
        """Retrieve a value, or None if absent or expired.

        Order of lookup: memory tier, media sub-cache, durable tier. A valid
        durable entry is promoted back into the memory tier.

        Args:
            key: Cache key

        Returns:
            The cached payload or None
        """
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                entry.touch(now)
                self._record_hit("memory")
                return entry.data
            del self._memory[key]

        media_entry = self._media.get(key)
        if media_entry is not None:
            if not media_entry.is_expired(now):
                media_entry.touch(now)
                self._record_hit("media")
                return media_entry.data
            del self._media[key]

        durable_entry = await self._load_durable(key)

        # A put that landed while the durable read was in flight wins.
        entry = self._memory.get(key)
        if entry is not None and not entry.is_expired(now):
            entry.touch(now)
            self._record_hit("memory")
            return entry.data

        if durable_entry is not None:
            if not durable_entry.is_expired(now):
                durable_entry.touch(now)
                self._memory[key] = durable_entry
                self._record_hit("durable")
                victims = self._evict() if len(self._memory) > self.settings.capacity else []
                await self._remove_evicted_durable(victims)
                return durable_entry.data
            await self._remove_durable(key)

        self._misses += 1
        metrics.CACHE_MISSES.inc()
        return None

    async def delete(self, key: str) -> bool:
        """Remove a key from every tier.

        Returns:
            True if the key was present in memory or the media sub-cache
        """
        removed = self._memory.pop(key, None) is not None
        removed = self._media.pop(key, None) is not None or removed
        await self._remove_durable(key)
        return removed

    async def clear(self) -> None:
        """Drop every in-memory entry. Durable records are left to expire."""
        self._memory.clear()
        self._media.clear()
        logger.info("Cache cleared")

    def purge_expired(self) -> int:
        """Proactively remove expired entries from the memory tiers.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        removed = 0
        for tier in (self._memory, self._media):
            expired = [k for k, e in tier.items() if e.is_expired(now)]
            for k in expired:
                del tier[k]
            removed += len(expired)

        if removed:
            logger.info("Purged expired cache entries", count=removed)
        return removed

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the memory-tier entry for ``key`` without touching it."""
        return self._memory.get(key)

    def entries(self) -> Dict[str, CacheEntry]:
        """Snapshot of the memory tier."""
        return dict(self._memory)

    def media_entries(self) -> Dict[str, CacheEntry]:
        """Snapshot of the media sub-cache."""
        return dict(self._media)

    def _record_hit(self, tier: str) -> None:
        self._hits[tier] += 1
        metrics.CACHE_HITS.labels(tier=tier).inc()

    @staticmethod
    def _eviction_order(tier: "OrderedDict[str, CacheEntry]") -> List[str]:
        # Ties on score fall back to least recently accessed first.
        return [
            key for key, _ in sorted(
                tier.items(),
                key=lambda kv: (kv[1].eviction_score, kv[1].last_access),
            )
        ]

    def _evict(self) -> List[str]:
        """Remove the lowest-scoring fraction of the memory tier.

        Runs without yielding to the event loop; durable records of the
        victims are removed afterwards by ``_remove_evicted_durable``.

        Returns:
            Evicted keys
        """
        to_remove = max(1, math.floor(len(self._memory) * self.settings.eviction_fraction))
        victims = self._eviction_order(self._memory)[:to_remove]

        for key in victims:
            del self._memory[key]

        self._evictions += len(victims)
        metrics.CACHE_EVICTIONS.labels(tier="memory").inc(len(victims))
        logger.info("Evicted cache entries", count=len(victims), remaining=len(self._memory))
        return victims

    async def _remove_evicted_durable(self, victims: List[str]) -> None:
        for key in victims:
            # Re-inserted since eviction; its durable record is current.
            if key in self._memory:
                continue
            await self._remove_durable(key)

    def _evict_media(self) -> None:
        """Remove the lowest-scoring fraction of the media sub-cache."""
        to_remove = max(1, math.floor(len(self._media) * self.settings.media_eviction_fraction))
        victims = self._eviction_order(self._media)[:to_remove]

        for key in victims:
            del self._media[key]

        metrics.CACHE_EVICTIONS.labels(tier="media").inc(len(victims))
        logger.debug("Evicted media cache entries", count=len(victims), remaining=len(self._media))

    def _disable_durable(self, operation: str, error: Exception) -> None:
        # Logged once; afterwards the session runs memory-only.
        self._durable_available = False
        metrics.DURABLE_FAILURES.inc()
        logger.warning(
            "Durable cache tier unavailable, continuing memory-only",
            operation=operation,
            error=str(error),
        )

    async def _persist(self, key: str, entry: CacheEntry) -> None:
        if not self._durable_available:
            return
        try:
            record = entry.to_json()
        except (TypeError, ValueError) as e:
            logger.warning("Payload not persistable, kept in memory only", key=key, error=str(e))
            return
        try:
            await self.durable_storage.set(key, record)
        except StorageError as e:
            self._disable_durable("set", e)

    async def _load_durable(self, key: str) -> Optional[CacheEntry]:
        if not self._durable_available:
            return None
        try:
            raw = await self.durable_storage.get(key)
        except StorageError as e:
            self._disable_durable("get", e)
            return None

        if raw is None:
            return None

        try:
            return CacheEntry.from_json(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning("Discarding corrupt durable cache record", key=key, error=str(e))
            await self._remove_durable(key)
            return None

    async def _remove_durable(self, key: str) -> None:
        if not self._durable_available:
            return
        try:
            await self.durable_storage.delete(key)
        except StorageError as e:
            self._disable_durable("delete", e)

    def set_background_mode(self, is_background: bool) -> None:
        """Lifecycle toggle: refresh callbacks only run while backgrounded."""
        self.background_mode = is_background
        logger.info("Background mode changed", background=is_background)

    def register_refresh(self, name: str, callback: RefreshCallback) -> None:
        """Register (or replace) a named background refresh callback."""
        self._refresh_callbacks[name] = callback

    def unregister_refresh(self, name: str) -> bool:
        return self._refresh_callbacks.pop(name, None) is not None

    @property
    def refresh_callbacks(self) -> List[str]:
        return list(self._refresh_callbacks)

    def start_background_refresh(self, scheduler: Scheduler) -> PeriodicTaskHandle:
        """Schedule the periodic refresh task.

        Args:
            scheduler: Scheduler used to run the task every ``refresh_interval`` seconds

        Returns:
            Handle that cancels the periodic task
        """
        if self._refresh_handle is not None and not self._refresh_handle.cancelled:
            return self._refresh_handle

        self._refresh_handle = scheduler.schedule_periodic(
            self.settings.refresh_interval, self.run_background_refresh
        )
        logger.info("Background refresh scheduled", interval=self.settings.refresh_interval)
        return self._refresh_handle

    async def run_background_refresh(self) -> int:
        """Run every registered refresh callback if in background mode.

        Returns:
            Number of callbacks that completed successfully
        """
        if not self.background_mode:
            return 0

        completed = 0
        for name, callback in list(self._refresh_callbacks.items()):
            try:
                await callback()
                completed += 1
            except Exception as e:
                logger.warning("Background refresh failed", task=name, error=str(e))

        self.purge_expired()
        return completed

    async def close(self) -> None:
        """Cancel background work and close the durable storage provider."""
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        if self.durable_storage is not None:
            await self.durable_storage.close()

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dictionary containing sizes, hit/miss counts and tier state
        """
        return {
            "memory_entries": len(self._memory),
            "media_entries": len(self._media),
            "capacity": self.settings.capacity,
            "media_capacity": self.settings.media_capacity,
            "hits": dict(self._hits),
            "misses": self._misses,
            "evictions": self._evictions,
            "durable_available": self._durable_available,
            "background_mode": self.background_mode,
            "refresh_callbacks": len(self._refresh_callbacks),
        }
