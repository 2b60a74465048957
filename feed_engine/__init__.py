"""Personalized feed ranking and adaptive content-delivery engine."""

from .models import (
    CacheEntry,
    CachePriority,
    ContentItem,
    ContentType,
    EngagementCounts,
    InteractionAction,
    LazyLoadItem,
    Post,
    Reel,
    Story,
    StoryMediaKind,
    UserInteraction,
    UserPreferences,
    content_item_from_dict,
)

__all__ = [
    "CacheEntry",
    "CachePriority",
    "ContentItem",
    "ContentType",
    "EngagementCounts",
    "InteractionAction",
    "LazyLoadItem",
    "Post",
    "Reel",
    "Story",
    "StoryMediaKind",
    "UserInteraction",
    "UserPreferences",
    "content_item_from_dict",
]
