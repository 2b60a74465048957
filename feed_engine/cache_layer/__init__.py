"""Adaptive two-tier cache with durable storage providers and scheduling."""

from .adaptive_cache import AdaptiveCache, CacheSettings
from .scheduler import AsyncioScheduler, ManualScheduler, PeriodicTaskHandle
from .storage import DurableStorage, InMemoryDurableStorage, RedisDurableStorage

__all__ = [
    "AdaptiveCache",
    "AsyncioScheduler",
    "CacheSettings",
    "DurableStorage",
    "InMemoryDurableStorage",
    "ManualScheduler",
    "PeriodicTaskHandle",
    "RedisDurableStorage",
]
