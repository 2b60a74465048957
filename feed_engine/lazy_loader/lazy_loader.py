"""Viewport-driven lazy loading of feed content.

The LazyLoader keeps one placeholder per content identifier of a ranked
feed and materializes only a bounded window of them: the first few items
when the feed is established, then the items around the viewport as the
viewer scrolls. Items that drift far from the viewport are released back to
placeholders. Payloads are resolved through the adaptive cache, falling
back to the injected fetch callback on a miss.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set

import structlog

from feed_engine import metrics
from feed_engine.cache_layer.adaptive_cache import AdaptiveCache
from feed_engine.exceptions import ContentFetchError
from feed_engine.models import CachePriority, ContentItem, ContentType, LazyLoadItem


logger = structlog.get_logger(__name__)

FetchCallback = Callable[[str], Awaitable[ContentItem]]


@dataclass
class LoaderConfig:
    """Window sizes for one content type."""

    initial_load_count: int
    preload_distance: int
    unload_distance: int
    max_cache_size: int

    def __post_init__(self) -> None:
        """Validate loader configuration."""
        if self.initial_load_count < 0 or self.preload_distance < 0:
            raise ValueError("Load counts must be non-negative")
        if self.unload_distance < self.preload_distance:
            raise ValueError("Unload distance must be at least the preload distance")
        if self.max_cache_size < self.initial_load_count:
            raise ValueError("Max cache size must cover the initial load")


LOADER_CONFIGS: Dict[ContentType, LoaderConfig] = {
    ContentType.POST: LoaderConfig(initial_load_count=3, preload_distance=2, unload_distance=10, max_cache_size=20),
    ContentType.REEL: LoaderConfig(initial_load_count=3, preload_distance=2, unload_distance=8, max_cache_size=15),
    ContentType.STORY: LoaderConfig(initial_load_count=5, preload_distance=3, unload_distance=15, max_cache_size=25),
}


class LazyLoader:
    """Registry of lazily materialized feed items for one content type.

    Attributes:
        cache: Adaptive cache used to resolve payloads
        content_type: Type of content in this feed
        config: Window sizes
    """

    def __init__(
        self,
        cache: AdaptiveCache,
        content_type: ContentType,
        config: Optional[LoaderConfig] = None,
    ) -> None:
        self.cache = cache
        self.content_type = ContentType(content_type)
        self.config = config or LOADER_CONFIGS[self.content_type]

        self._items: Dict[str, LazyLoadItem] = {}
        self._order: List[str] = []
        self._visible: Set[str] = set()
        self._batch_in_flight = False

        self.logger = logger.bind(content_type=self.content_type.value)

    def cache_key(self, content_id: str) -> str:
        return f"lazy:{self.content_type.value}:{content_id}"

    @property
    def items(self) -> List[LazyLoadItem]:
        """Registry items in feed order."""
        return [self._items[i] for i in self._order]

    def _priority(self, index: int) -> int:
        initial = self.config.initial_load_count
        if index < initial:
            return 10
        if index < initial * 2:
            return 5
        return 1

    def _new_item(self, content_id: str, index: int) -> LazyLoadItem:
        return LazyLoadItem(
            id=content_id,
            content_type=self.content_type,
            priority=self._priority(index),
        )

    async def initialize(self, ordered_ids: Iterable[str], fetch: FetchCallback) -> List[LazyLoadItem]:
        """Establish the registry and materialize only the first items.

        Args:
            ordered_ids: Ranked content identifiers
            fetch: Loads full content for an identifier

        Returns:
            Registry items in feed order
        """
        self._order = list(dict.fromkeys(ordered_ids))
        self._items = {cid: self._new_item(cid, index) for index, cid in enumerate(self._order)}
        self._visible.clear()

        initial = self._order[:self.config.initial_load_count]
        if self.cache.background_mode:
            self.logger.info("Backgrounded, deferring initial load", total=len(self._order))
        else:
            loaded = await self._load_batch(initial, fetch)
            self.logger.info("Initialized lazy load", total=len(self._order), loaded=loaded)

        return self.items

    async def on_viewport_change(
        self,
        visible_ids: Iterable[str],
        ordered_ids: Iterable[str],
        fetch: FetchCallback,
    ) -> None:
        """React to a scroll: preload ahead of the viewport and release distant items.

        Args:
            visible_ids: Identifiers currently on screen
            ordered_ids: Current feed ordering
            fetch: Loads full content for an identifier
        """
        self._reconcile(ordered_ids)

        for item in self._items.values():
            item.visible = False
        self._visible = {cid for cid in visible_ids if cid in self._items}
        for cid in self._visible:
            self._items[cid].visible = True

        index_of = {cid: index for index, cid in enumerate(self._order)}
        visible_indices = sorted(index_of[cid] for cid in self._visible)
        if not visible_indices:
            return

        max_index = visible_indices[-1]
        wanted = [self._order[i] for i in visible_indices]
        wanted.extend(
            self._order[i]
            for i in range(max_index + 1, min(max_index + 1 + self.config.preload_distance, len(self._order)))
        )
        to_load = [cid for cid in wanted if not self._items[cid].loaded and not self._items[cid].loading]

        if to_load:
            if self.cache.background_mode:
                self.logger.debug("Backgrounded, skipping preload", pending=len(to_load))
            else:
                self.logger.debug("Preloading items", count=len(to_load), max_visible_index=max_index)
                await self._load_batch(to_load, fetch)

        self._unload_distant(visible_indices)
        self._enforce_memory_bound(visible_indices)

    def _reconcile(self, ordered_ids: Iterable[str]) -> None:
        """Align the registry with the current ordering, keeping existing items."""
        order = list(dict.fromkeys(ordered_ids))
        if order == self._order:
            return

        items: Dict[str, LazyLoadItem] = {}
        for index, cid in enumerate(order):
            item = self._items.get(cid)
            if item is None:
                item = self._new_item(cid, index)
            items[cid] = item

        dropped = len(set(self._items) - set(items))
        self._items = items
        self._order = order
        self._visible &= set(items)
        if dropped:
            self.logger.debug("Dropped items no longer in feed", count=dropped)

    async def _load_batch(self, content_ids: List[str], fetch: FetchCallback) -> int:
        """Materialize a batch; dropped if another batch is in flight.

        Returns:
            Number of items materialized
        """
        if not content_ids:
            return 0
        if self._batch_in_flight:
            metrics.DROPPED_BATCHES.inc()
            self.logger.debug("Load batch dropped, another in flight", count=len(content_ids))
            return 0

        self._batch_in_flight = True
        try:
            results = await asyncio.gather(*(self._materialize(cid, fetch) for cid in content_ids))
        finally:
            self._batch_in_flight = False
        return sum(1 for r in results if r)

    async def _materialize(self, content_id: str, fetch: FetchCallback) -> bool:
        item = self._items.get(content_id)
        if item is None or item.loaded or item.loading:
            return False

        item.loading = True
        key = self.cache_key(content_id)
        try:
            data = await self.cache.get(key)
            if data is None:
                data = await fetch(content_id)
                if data is None:
                    raise ContentFetchError(f"Fetch returned no content for {content_id}")
                await self.cache.put(key, data, CachePriority.MEDIUM)
        except Exception as e:
            item.loading = False
            metrics.LAZY_LOAD_FAILURES.labels(content_type=self.content_type.value).inc()
            self.logger.error("Lazy load failed", content_id=content_id, error=str(e))
            return False

        item.data = data
        item.loaded = True
        item.loading = False
        metrics.LAZY_LOADS.labels(content_type=self.content_type.value).inc()
        return True

    def _distance_to_viewport(self, index: int, visible_indices: List[int]) -> int:
        return min(abs(index - v) for v in visible_indices)

    def _release(self, item: LazyLoadItem) -> None:
        item.release()
        metrics.LAZY_UNLOADS.labels(content_type=self.content_type.value).inc()

    def _unload_distant(self, visible_indices: List[int]) -> int:
        """Release loaded, non-visible items beyond the unload distance."""
        released = 0
        for index, cid in enumerate(self._order):
            item = self._items[cid]
            if not item.loaded or item.visible:
                continue
            if self._distance_to_viewport(index, visible_indices) > self.config.unload_distance:
                self._release(item)
                released += 1

        if released:
            self.logger.info("Unloaded distant items", count=released)
        return released

    def _enforce_memory_bound(self, visible_indices: List[int]) -> int:
        """Release the farthest non-visible items while over ``max_cache_size``."""
        loaded = [
            (self._distance_to_viewport(index, visible_indices), index, self._items[cid])
            for index, cid in enumerate(self._order)
            if self._items[cid].loaded
        ]
        excess = len(loaded) - self.config.max_cache_size
        if excess <= 0:
            return 0

        candidates = sorted(
            (entry for entry in loaded if not entry[2].visible),
            key=lambda entry: entry[0],
            reverse=True,
        )
        released = 0
        for _, _, item in candidates[:excess]:
            self._release(item)
            released += 1
        return released

    def get_item_data(self, content_id: str) -> Optional[Any]:
        item = self._items.get(content_id)
        return item.data if item else None

    def is_item_loaded(self, content_id: str) -> bool:
        item = self._items.get(content_id)
        return bool(item and item.loaded)

    def is_item_loading(self, content_id: str) -> bool:
        item = self._items.get(content_id)
        return bool(item and item.loading)

    async def force_load_item(self, content_id: str, fetch: FetchCallback) -> bool:
        """Materialize one item now, subject to the batch guard."""
        return await self._load_batch([content_id], fetch) == 1

    def get_memory_stats(self) -> Dict[str, Any]:
        """Get registry occupancy statistics."""
        total = len(self._items)
        loaded = sum(1 for item in self._items.values() if item.loaded)
        percent = round(loaded / total * 100) if total else 0
        return {
            "total_items": total,
            "loaded_items": loaded,
            "visible_items": len(self._visible),
            "memory_usage": f"{loaded}/{total} items loaded ({percent}%)",
        }

    def clear(self) -> None:
        """Forget the registry entirely."""
        self._items.clear()
        self._order.clear()
        self._visible.clear()
        self.logger.info("Cleared lazy loader")
