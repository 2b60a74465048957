"""Personalized feed composition.

FeedService serves ranked feeds cache-first. A cache hit is returned
immediately and the feed is registered for regeneration by the cache's
background refresh task; a miss is ranked from fresh candidates. When
candidates cannot be fetched, the most recently served feed is returned
instead of nothing.
"""

from collections import OrderedDict
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Set

import structlog

from feed_engine import metrics
from feed_engine.cache_layer.adaptive_cache import AdaptiveCache
from feed_engine.exceptions import ContentFetchError, FeedUnavailableError
from feed_engine.feed_ranker.content_scorer import ContentScorer
from feed_engine.feed_ranker.interaction_tracker import InteractionTracker
from feed_engine.models import CachePriority, ContentItem, UserInteraction


logger = structlog.get_logger(__name__)


class FeedKind(str, Enum):
    """Which content a feed is built from."""

    POSTS = "posts"
    REELS = "reels"
    STORIES = "stories"
    MIXED = "mixed"


class SocialGraphProvider(Protocol):
    """Source of the viewer's following list; may be stale."""

    async def get_following(self, viewer_id: str) -> List[str]:
        ...


CandidateSource = Callable[[str, FeedKind, int], Awaitable[List[ContentItem]]]


class FeedService:
    """Cache-first personalized feed generation.

    Attributes:
        cache: Adaptive cache used for ranked feeds
        scorer: Ranking engine
        tracker: Interaction and preference tracker
        social_graph: Following-list provider
        candidate_source: Async callable returning the candidate pool
        candidate_pool_size: How many candidates to request per feed
        max_served_feeds: How many last-served feeds are kept for fallback
    """

    def __init__(
        self,
        cache: AdaptiveCache,
        scorer: ContentScorer,
        tracker: InteractionTracker,
        social_graph: SocialGraphProvider,
        candidate_source: CandidateSource,
        candidate_pool_size: int = 50,
        max_served_feeds: int = 100,
    ) -> None:
        self.cache = cache
        self.scorer = scorer
        self.tracker = tracker
        self.social_graph = social_graph
        self.candidate_source = candidate_source
        self.candidate_pool_size = candidate_pool_size
        self.max_served_feeds = max_served_feeds

        self._last_served: "OrderedDict[str, List[ContentItem]]" = OrderedDict()
        self._viewer_keys: Dict[str, Set[str]] = {}

    @staticmethod
    def feed_key(viewer_id: str, feed_kind: FeedKind, limit: int) -> str:
        return f"feed:{FeedKind(feed_kind).value}:{viewer_id}:{limit}"

    async def get_personalized_feed(
        self, viewer_id: str, feed_kind: FeedKind = FeedKind.MIXED, limit: int = 20
    ) -> List[ContentItem]:
        """Return the viewer's ranked feed.

        Args:
            viewer_id: Viewer the feed is for
            feed_kind: Content the feed is built from
            limit: Page size

        Returns:
            Ranked content items

        Raises:
            FeedUnavailableError: If candidates cannot be fetched and no feed
                was served before for this request
        """
        feed_kind = FeedKind(feed_kind)
        key = self.feed_key(viewer_id, feed_kind, limit)
        log = logger.bind(viewer_id=viewer_id, feed_kind=feed_kind.value)

        cached = await self.cache.get(key)
        if cached:
            metrics.FEED_REQUESTS.labels(source="cache").inc()
            self._register_refresh(key, viewer_id, feed_kind, limit)
            log.info("Serving cached feed", items=len(cached))
            return cached

        try:
            feed = await self._generate(viewer_id, feed_kind, limit, key)
        except ContentFetchError as e:
            stale = self._last_served.get(key)
            if stale is None:
                log.error("Feed unavailable", error=str(e))
                raise FeedUnavailableError(f"No feed available for {viewer_id}") from e
            metrics.FEED_REQUESTS.labels(source="stale").inc()
            log.warning("Candidate fetch failed, serving last feed", error=str(e), items=len(stale))
            return stale

        metrics.FEED_REQUESTS.labels(source="fresh").inc()
        return feed

    async def refresh_feed(
        self, viewer_id: str, feed_kind: FeedKind = FeedKind.MIXED, limit: int = 20
    ) -> List[ContentItem]:
        """Regenerate a feed and replace the cached copy.

        Raises:
            ContentFetchError: If candidates cannot be fetched
        """
        feed_kind = FeedKind(feed_kind)
        key = self.feed_key(viewer_id, feed_kind, limit)
        return await self._generate(viewer_id, feed_kind, limit, key)

    async def _generate(
        self, viewer_id: str, feed_kind: FeedKind, limit: int, key: str
    ) -> List[ContentItem]:
        following_ids = await self._get_following(viewer_id)

        try:
            candidates = await self.candidate_source(viewer_id, feed_kind, self.candidate_pool_size)
        except Exception as e:
            raise ContentFetchError(f"Candidate fetch failed: {e}") from e

        feed = await self.scorer.rank_for_viewer(candidates, viewer_id, following_ids, limit=limit)

        await self.cache.put(key, feed, CachePriority.HIGH)
        self._remember_served(key, feed)
        self._viewer_keys.setdefault(viewer_id, set()).add(key)
        return feed

    def _remember_served(self, key: str, feed: List[ContentItem]) -> None:
        self._last_served[key] = feed
        self._last_served.move_to_end(key)
        while len(self._last_served) > self.max_served_feeds:
            self._last_served.popitem(last=False)

    async def _get_following(self, viewer_id: str) -> List[str]:
        try:
            return list(await self.social_graph.get_following(viewer_id))
        except Exception as e:
            logger.warning("Following list unavailable, ranking as discovery",
                           viewer_id=viewer_id, error=str(e))
            return []

    def _register_refresh(self, key: str, viewer_id: str, feed_kind: FeedKind, limit: int) -> None:
        async def refresh() -> None:
            await self._generate(viewer_id, feed_kind, limit, key)

        self.cache.register_refresh(key, refresh)
        self._viewer_keys.setdefault(viewer_id, set()).add(key)

    async def record_interaction(self, interaction: UserInteraction) -> bool:
        """Record a viewer action for future rankings."""
        return await self.tracker.track_interaction(interaction)

    async def clear_viewer_data(self, viewer_id: str) -> None:
        """Remove interactions, preferences and cached feeds for a viewer."""
        for key in self._viewer_keys.pop(viewer_id, set()):
            self.cache.unregister_refresh(key)
            self._last_served.pop(key, None)
            await self.cache.delete(key)

        await self.tracker.clear_user_data(viewer_id)
        logger.info("Cleared viewer data", viewer_id=viewer_id)

    def last_served(self, viewer_id: str, feed_kind: FeedKind, limit: int) -> Optional[List[ContentItem]]:
        return self._last_served.get(self.feed_key(viewer_id, feed_kind, limit))
