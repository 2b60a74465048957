"""
Composition root for the feed engine.

Builds the cache, tracker, scorer, feed service and lazy loaders from
settings and wires them together. Nothing here is a module-level singleton:
each FeedEngine owns its own instances.
"""

from typing import Dict, Optional

import structlog

from feed_engine.cache_layer.adaptive_cache import AdaptiveCache
from feed_engine.cache_layer.scheduler import AsyncioScheduler, Scheduler
from feed_engine.cache_layer.storage import DurableStorage, InMemoryDurableStorage, RedisDurableStorage
from feed_engine.feed_ranker.content_scorer import ContentScorer
from feed_engine.feed_ranker.feed_service import CandidateSource, FeedService, SocialGraphProvider
from feed_engine.feed_ranker.interaction_tracker import InteractionTracker
from feed_engine.lazy_loader.lazy_loader import LazyLoader
from feed_engine.logging_setup import configure_logging
from feed_engine.models import ContentType
from feed_engine.settings import FeedEngineSettings, load_settings


logger = structlog.get_logger(__name__)


def build_storage(settings: FeedEngineSettings) -> DurableStorage:
    """Pick the durable storage provider described by the settings."""
    redis_settings = settings.redis
    if redis_settings.enabled:
        logger.info("Using Redis durable tier",
                    redis_host=redis_settings.host,
                    redis_port=redis_settings.port)
        return RedisDurableStorage(
            redis_host=redis_settings.host,
            redis_port=redis_settings.port,
            redis_db=redis_settings.db,
            redis_password=redis_settings.password,
            namespace=redis_settings.namespace,
        )
    logger.info("Using in-process durable tier")
    return InMemoryDurableStorage(namespace=redis_settings.namespace)


class FeedEngine:
    """Owns every feed engine component for one viewer session.

    Attributes:
        cache: Shared adaptive cache
        tracker: Interaction and preference tracker
        scorer: Ranking engine
        feed_service: Cache-first personalized feed service
    """

    def __init__(
        self,
        social_graph: SocialGraphProvider,
        candidate_source: CandidateSource,
        settings: Optional[FeedEngineSettings] = None,
        storage: Optional[DurableStorage] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self.settings = settings or load_settings()
        self.scheduler = scheduler or AsyncioScheduler()

        storage = storage or build_storage(self.settings)
        self.cache = AdaptiveCache(durable_storage=storage, settings=self.settings.cache)
        self.tracker = InteractionTracker(
            storage,
            max_interactions=self.settings.max_interactions,
            promotion_threshold=self.settings.promotion_threshold,
        )
        self.scorer = ContentScorer(weights=self.settings.scoring, tracker=self.tracker)
        self.feed_service = FeedService(
            cache=self.cache,
            scorer=self.scorer,
            tracker=self.tracker,
            social_graph=social_graph,
            candidate_source=candidate_source,
            candidate_pool_size=self.settings.candidate_pool_size,
            max_served_feeds=self.settings.max_served_feeds,
        )
        self._loaders: Dict[ContentType, LazyLoader] = {}

    @classmethod
    def from_env(
        cls,
        social_graph: SocialGraphProvider,
        candidate_source: CandidateSource,
        scheduler: Optional[Scheduler] = None,
    ) -> "FeedEngine":
        """Load settings from the environment, configure logging and build an engine."""
        settings = load_settings()
        configure_logging(settings.log_level, json_output=settings.log_json)
        logger.info("Configuration loaded",
                    redis_enabled=settings.redis.enabled,
                    cache_capacity=settings.cache.capacity,
                    log_level=settings.log_level)
        return cls(social_graph, candidate_source, settings=settings, scheduler=scheduler)

    def loader_for(self, content_type: ContentType) -> LazyLoader:
        """Return the lazy loader for a content type, creating it on first use."""
        content_type = ContentType(content_type)
        if content_type not in self._loaders:
            self._loaders[content_type] = LazyLoader(self.cache, content_type)
        return self._loaders[content_type]

    def start(self) -> None:
        """Start the cache's background refresh task."""
        self.cache.start_background_refresh(self.scheduler)
        logger.info("Feed engine started")

    async def health_check(self) -> bool:
        """Ping the durable tier.

        Returns:
            True if storage answers and the cache still persists to it
        """
        healthy = await self.cache.durable_storage.health_check()
        if not healthy:
            logger.warning("Durable storage health check failed")
        return healthy and self.cache.durable_available

    def set_background_mode(self, is_background: bool) -> None:
        """Forward the host lifecycle signal."""
        self.cache.set_background_mode(is_background)

    async def close(self) -> None:
        """Stop background work and release storage connections."""
        for loader in self._loaders.values():
            loader.clear()
        await self.cache.close()
        logger.info("Feed engine closed")
