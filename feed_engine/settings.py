"""
Configuration settings for the feed engine.

Settings come from environment variables; every value has a default so the
engine runs memory-only with no configuration at all.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from feed_engine.cache_layer.adaptive_cache import CacheSettings
from feed_engine.exceptions import ConfigurationError
from feed_engine.feed_ranker.content_scorer import ScoringWeights


@dataclass
class RedisSettings:
    """Connection parameters for the Redis durable tier."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    namespace: str = "feed"
    enabled: bool = False


@dataclass
class FeedEngineSettings:
    """All settings needed by the composition root."""

    redis: RedisSettings = field(default_factory=RedisSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    max_interactions: int = 1000
    promotion_threshold: int = 3
    candidate_pool_size: int = 50
    max_served_feeds: int = 100
    log_level: str = "INFO"
    log_json: bool = True


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _get_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(env: Optional[Mapping[str, str]] = None) -> FeedEngineSettings:
    """Build settings from environment variables.

    Args:
        env: Mapping to read from (``os.environ`` when None)

    Returns:
        Validated settings

    Raises:
        ConfigurationError: If a value is malformed or out of range
    """
    env = os.environ if env is None else env

    redis_settings = RedisSettings(
        host=env.get("REDIS_HOST", "localhost"),
        port=_get_int(env, "REDIS_PORT", 6379),
        db=_get_int(env, "REDIS_DB", 0),
        password=env.get("REDIS_PASSWORD") or None,
        namespace=env.get("FEED_CACHE_NAMESPACE", "feed"),
        enabled=_get_bool(env, "FEED_DURABLE_REDIS", "REDIS_HOST" in env),
    )

    try:
        cache_settings = CacheSettings(
            capacity=_get_int(env, "FEED_CACHE_CAPACITY", 1000),
            media_capacity=_get_int(env, "FEED_MEDIA_CACHE_CAPACITY", 200),
            ttl_seconds=_get_int(env, "FEED_CACHE_TTL_SECONDS", 30 * 60),
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid cache settings: {e}") from e

    settings = FeedEngineSettings(
        redis=redis_settings,
        cache=cache_settings,
        max_interactions=_get_int(env, "FEED_MAX_INTERACTIONS", 1000),
        promotion_threshold=_get_int(env, "FEED_PROMOTION_THRESHOLD", 3),
        candidate_pool_size=_get_int(env, "FEED_CANDIDATE_POOL_SIZE", 50),
        max_served_feeds=_get_int(env, "FEED_MAX_SERVED_FEEDS", 100),
        log_level=env.get("LOG_LEVEL", "INFO"),
        log_json=_get_bool(env, "LOG_JSON", True),
    )

    if settings.max_interactions < 1:
        raise ConfigurationError("FEED_MAX_INTERACTIONS must be at least 1")
    if settings.promotion_threshold < 1:
        raise ConfigurationError("FEED_PROMOTION_THRESHOLD must be at least 1")
    if settings.candidate_pool_size < 1:
        raise ConfigurationError("FEED_CANDIDATE_POOL_SIZE must be at least 1")
    if settings.max_served_feeds < 1:
        raise ConfigurationError("FEED_MAX_SERVED_FEEDS must be at least 1")

    return settings
