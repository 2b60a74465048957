"""Shared data models for the feed ranking and content-delivery engine.

This module contains the core data structures used by the cache, the
ranking engine and the lazy loader: the content item union, viewer
interactions and preferences, cache entries and lazy-load placeholders.
"""

import json
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple
from dataclasses import dataclass, field


class ContentType(str, Enum):
    """Discriminant for the content item union."""

    POST = "post"
    REEL = "reel"
    STORY = "story"


class StoryMediaKind(str, Enum):
    """Kind of media carried by a story."""

    IMAGE = "image"
    VIDEO = "video"


class InteractionAction(str, Enum):
    """Actions a viewer can take on a piece of content."""

    LIKE = "like"
    UNLIKE = "unlike"
    COMMENT = "comment"
    SHARE = "share"
    VIEW = "view"
    SKIP = "skip"
    SAVE = "save"
    FOLLOW = "follow"
    UNFOLLOW = "unfollow"


POSITIVE_ACTIONS = frozenset(
    {InteractionAction.LIKE, InteractionAction.COMMENT, InteractionAction.SHARE}
)


class CachePriority(str, Enum):
    """Coarse importance tag for cache entries."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        """Eviction weight (high=3, medium=2, low=1)."""
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    CachePriority.HIGH: 3,
    CachePriority.MEDIUM: 2,
    CachePriority.LOW: 1,
}


def _ensure_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class EngagementCounts:
    """Engagement counters for a content item.

    These are the only part of a content item that may change after it has
    been fetched.

    Attributes:
        likes: Number of likes
        comments: Number of comments
        shares: Number of shares
        views: Number of views
    """

    likes: int = 0
    comments: int = 0
    shares: int = 0
    views: int = 0

    def __post_init__(self) -> None:
        """Validate counters."""
        for name in ("likes", "comments", "shares", "views"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name.capitalize()} count must be non-negative")

    def refresh(
        self,
        likes: Optional[int] = None,
        comments: Optional[int] = None,
        shares: Optional[int] = None,
        views: Optional[int] = None,
    ) -> None:
        """Replace counters with fresher values, leaving omitted ones untouched."""
        updated = EngagementCounts(
            likes=self.likes if likes is None else likes,
            comments=self.comments if comments is None else comments,
            shares=self.shares if shares is None else shares,
            views=self.views if views is None else views,
        )
        self.likes = updated.likes
        self.comments = updated.comments
        self.shares = updated.shares
        self.views = updated.views


@dataclass(frozen=True)
class ContentItem:
    """Common attributes of every feed content item.

    Concrete items are one of ``Post``, ``Reel`` or ``Story``; the
    ``content_type`` class attribute is the explicit discriminant.

    Attributes:
        id: Unique content identifier
        author_id: Identifier of the creator
        created_at: Creation timestamp (timezone-aware, UTC if naive)
        engagement: Refreshable engagement counters
        hashtags: Hashtags attached to the content
    """

    content_type: ClassVar[ContentType]

    id: str
    author_id: str
    created_at: datetime
    engagement: EngagementCounts = field(default_factory=EngagementCounts)
    hashtags: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate common attributes."""
        if not self.id:
            raise ValueError("Content id cannot be empty")
        if not self.author_id:
            raise ValueError("Author id cannot be empty")
        object.__setattr__(self, "created_at", _ensure_aware(self.created_at))
        object.__setattr__(self, "hashtags", tuple(self.hashtags))

    @property
    def is_video(self) -> bool:
        """Whether the item is video content."""
        if self.content_type is ContentType.POST:
            return False
        if self.content_type is ContentType.REEL:
            return True
        if self.content_type is ContentType.STORY:
            return self.media_kind is StoryMediaKind.VIDEO  # type: ignore[attr-defined]
        raise ValueError(f"Unknown content type: {self.content_type}")

    @property
    def video_duration(self) -> Optional[float]:
        """Duration in seconds for video content, None otherwise."""
        if not self.is_video:
            return None
        return self.duration  # type: ignore[attr-defined]

    def has_media(self) -> bool:
        """Whether the item carries image or video references."""
        if self.content_type is ContentType.POST:
            return bool(self.image_urls)  # type: ignore[attr-defined]
        if self.content_type is ContentType.REEL:
            return True
        if self.content_type is ContentType.STORY:
            return bool(self.media_url)  # type: ignore[attr-defined]
        raise ValueError(f"Unknown content type: {self.content_type}")

    def age(self, now: datetime) -> timedelta:
        """Age of the item relative to ``now``; never negative."""
        delta = _ensure_aware(now) - self.created_at
        return max(delta, timedelta(0))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-compatible dictionary tagged with ``content_type``."""
        data: Dict[str, Any] = {
            "content_type": self.content_type.value,
            "id": self.id,
            "author_id": self.author_id,
            "created_at": self.created_at.isoformat(),
            "engagement": {
                "likes": self.engagement.likes,
                "comments": self.engagement.comments,
                "shares": self.engagement.shares,
                "views": self.engagement.views,
            },
            "hashtags": list(self.hashtags),
        }
        data.update(self._payload_dict())
        return data

    def _payload_dict(self) -> Dict[str, Any]:
        raise NotImplementedError


@dataclass(frozen=True)
class Post(ContentItem):
    """A photo or text post.

    Attributes:
        caption: Post caption
        image_urls: Image references attached to the post
    """

    content_type: ClassVar[ContentType] = ContentType.POST

    caption: str = ""
    image_urls: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "image_urls", tuple(self.image_urls))

    def _payload_dict(self) -> Dict[str, Any]:
        return {"caption": self.caption, "image_urls": list(self.image_urls)}


@dataclass(frozen=True)
class Reel(ContentItem):
    """A short video.

    Attributes:
        video_url: Video reference
        duration: Video length in seconds
        thumbnail_url: Optional poster image
        caption: Reel caption
    """

    content_type: ClassVar[ContentType] = ContentType.REEL

    video_url: str = ""
    duration: float = 0.0
    thumbnail_url: Optional[str] = None
    caption: str = ""

    def __post_init__(self) -> None:
        super().__post_init__()
        if not self.video_url:
            raise ValueError("Reel must have a video url")
        if self.duration < 0:
            raise ValueError("Duration must be non-negative")

    def _payload_dict(self) -> Dict[str, Any]:
        return {
            "video_url": self.video_url,
            "duration": self.duration,
            "thumbnail_url": self.thumbnail_url,
            "caption": self.caption,
        }


@dataclass(frozen=True)
class Story(ContentItem):
    """An ephemeral story.

    Attributes:
        media_url: Image or video reference
        media_kind: Whether the story is an image or a video
        duration: Video length in seconds, if known
        expires_at: When the story disappears (24 hours after creation by default)
    """

    content_type: ClassVar[ContentType] = ContentType.STORY

    media_url: str = ""
    media_kind: StoryMediaKind = StoryMediaKind.IMAGE
    duration: Optional[float] = None
    expires_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "media_kind", StoryMediaKind(self.media_kind))
        if self.duration is not None and self.duration < 0:
            raise ValueError("Duration must be non-negative")
        if self.expires_at is None:
            object.__setattr__(self, "expires_at", self.created_at + timedelta(hours=24))
        else:
            object.__setattr__(self, "expires_at", _ensure_aware(self.expires_at))

    def is_expired(self, now: datetime) -> bool:
        """Whether the story is past its expiry time."""
        return _ensure_aware(now) > self.expires_at

    def _payload_dict(self) -> Dict[str, Any]:
        return {
            "media_url": self.media_url,
            "media_kind": self.media_kind.value,
            "duration": self.duration,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }


_CONTENT_CLASSES = {
    ContentType.POST: Post,
    ContentType.REEL: Reel,
    ContentType.STORY: Story,
}


def content_item_from_dict(data: Dict[str, Any]) -> ContentItem:
    """Rebuild a content item from its ``to_dict`` representation.

    Raises:
        ValueError: If the ``content_type`` tag is missing or unknown
    """
    try:
        content_type = ContentType(data["content_type"])
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown content type tag: {data.get('content_type')!r}") from e

    common = {
        "id": data["id"],
        "author_id": data["author_id"],
        "created_at": datetime.fromisoformat(data["created_at"]),
        "engagement": EngagementCounts(**data.get("engagement", {})),
        "hashtags": tuple(data.get("hashtags", ())),
    }

    if content_type is ContentType.POST:
        return Post(
            caption=data.get("caption", ""),
            image_urls=tuple(data.get("image_urls", ())),
            **common,
        )
    if content_type is ContentType.REEL:
        return Reel(
            video_url=data["video_url"],
            duration=data.get("duration", 0.0),
            thumbnail_url=data.get("thumbnail_url"),
            caption=data.get("caption", ""),
            **common,
        )
    if content_type is ContentType.STORY:
        expires_at = data.get("expires_at")
        return Story(
            media_url=data.get("media_url", ""),
            media_kind=StoryMediaKind(data.get("media_kind", StoryMediaKind.IMAGE.value)),
            duration=data.get("duration"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            **common,
        )
    raise ValueError(f"Unhandled content type: {content_type}")


def encode_payload(value: Any) -> Any:
    """Convert a cache payload into JSON-compatible data.

    Content items (alone, or inside lists) are tagged so that
    ``decode_payload`` can rebuild them.
    """
    if isinstance(value, ContentItem):
        return {"__content__": value.to_dict()}
    if isinstance(value, (list, tuple)):
        return [encode_payload(v) for v in value]
    return value


def decode_payload(value: Any) -> Any:
    """Inverse of ``encode_payload``."""
    if isinstance(value, dict) and set(value) == {"__content__"}:
        return content_item_from_dict(value["__content__"])
    if isinstance(value, list):
        return [decode_payload(v) for v in value]
    return value


def payload_has_media(value: Any) -> bool:
    """Whether a cache payload carries image or video references."""
    if isinstance(value, ContentItem):
        return value.has_media()
    if isinstance(value, dict):
        return any(value.get(k) for k in ("image_url", "video_url", "media_url", "image_urls"))
    return False


@dataclass
class UserInteraction:
    """One viewer action on a piece of content.

    Attributes:
        viewer_id: Viewer who acted
        content_id: Content acted upon
        content_type: Type of that content
        action: The action taken
        timestamp: Epoch seconds when the action happened
        watch_duration: Seconds watched, only meaningful for video views
        author_id: Creator of the content, when known
        hashtags: Hashtags of the content, used for interest derivation
    """

    viewer_id: str
    content_id: str
    content_type: ContentType
    action: InteractionAction
    timestamp: float
    watch_duration: Optional[float] = None
    author_id: Optional[str] = None
    hashtags: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Normalize enums and validate data."""
        self.content_type = ContentType(self.content_type)
        self.action = InteractionAction(self.action)
        if self.hashtags is None:
            self.hashtags = []
        if not self.viewer_id:
            raise ValueError("Viewer id cannot be empty")
        if not self.content_id:
            raise ValueError("Content id cannot be empty")
        if self.watch_duration is not None and self.watch_duration < 0:
            raise ValueError("Watch duration must be non-negative")

    @property
    def is_positive(self) -> bool:
        """Whether the action counts as a positive signal."""
        return self.action in POSITIVE_ACTIONS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "viewer_id": self.viewer_id,
            "content_id": self.content_id,
            "content_type": self.content_type.value,
            "action": self.action.value,
            "timestamp": self.timestamp,
            "watch_duration": self.watch_duration,
            "author_id": self.author_id,
            "hashtags": list(self.hashtags),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserInteraction":
        if not isinstance(data, dict):
            raise ValueError(f"Interaction record must be an object, got {type(data).__name__}")
        return cls(**data)


@dataclass
class UserPreferences:
    """Preference profile derived from a viewer's interaction history.

    Attributes:
        interests: Interest tags
        favorite_creators: Creators promoted after repeated positive interactions
        preferred_content_types: Content types the viewer engages with
        last_updated: Epoch seconds of the last derivation step
    """

    interests: List[str] = field(default_factory=list)
    favorite_creators: List[str] = field(default_factory=list)
    preferred_content_types: List[ContentType] = field(default_factory=list)
    last_updated: float = 0.0

    def __post_init__(self) -> None:
        self.preferred_content_types = [ContentType(t) for t in self.preferred_content_types]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "interests": list(self.interests),
            "favorite_creators": list(self.favorite_creators),
            "preferred_content_types": [t.value for t in self.preferred_content_types],
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserPreferences":
        if not isinstance(data, dict):
            raise ValueError(f"Preferences record must be an object, got {type(data).__name__}")
        return cls(
            interests=list(data.get("interests", [])),
            favorite_creators=list(data.get("favorite_creators", [])),
            preferred_content_types=list(data.get("preferred_content_types", [])),
            last_updated=data.get("last_updated", 0.0),
        )


@dataclass
class CacheEntry:
    """A cached payload with its bookkeeping.

    Attributes:
        data: The cached payload
        timestamp: Insertion time (epoch seconds)
        expiry: Absolute expiry time; always insertion time plus the fixed TTL
        priority: Eviction priority and durability tag
        access_count: Number of reads served from this entry
        last_access: Time of the most recent read or insertion
    """

    data: Any
    timestamp: float
    expiry: float
    priority: CachePriority = CachePriority.MEDIUM
    access_count: int = 0
    last_access: float = 0.0

    def __post_init__(self) -> None:
        """Validate cache entry data."""
        self.priority = CachePriority(self.priority)
        if self.expiry < self.timestamp:
            raise ValueError("Expiry must not precede insertion time")
        if self.access_count < 0:
            raise ValueError("Access count must be non-negative")

    def is_expired(self, now: float) -> bool:
        """An entry is invalid once ``now`` is past its expiry."""
        return now > self.expiry

    @property
    def eviction_score(self) -> int:
        """Priority weight times access count; lowest is evicted first."""
        return self.priority.weight * self.access_count

    def touch(self, now: float) -> None:
        self.access_count += 1
        self.last_access = now

    def to_json(self) -> str:
        return json.dumps({
            "data": encode_payload(self.data),
            "timestamp": self.timestamp,
            "expiry": self.expiry,
            "priority": self.priority.value,
            "access_count": self.access_count,
            "last_access": self.last_access,
        })

    @classmethod
    def from_json(cls, raw: str) -> "CacheEntry":
        """Parse a persisted entry.

        Raises:
            ValueError: If the record is malformed (``json.JSONDecodeError`` included)
        """
        record = json.loads(raw)
        try:
            return cls(
                data=decode_payload(record["data"]),
                timestamp=record["timestamp"],
                expiry=record["expiry"],
                priority=record["priority"],
                access_count=record.get("access_count", 0),
                last_access=record.get("last_access", record["timestamp"]),
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"Malformed cache entry: {e}") from e


@dataclass
class LazyLoadItem:
    """Placeholder for one content identifier in a lazily loaded feed.

    Attributes:
        id: Content identifier
        content_type: Type of the content
        data: Materialized payload, None while unloaded
        loaded: Whether ``data`` holds the full payload
        loading: Whether a fetch is in flight
        visible: Whether the item is currently on screen
        priority: Loading priority derived from feed position
    """

    id: str
    content_type: ContentType
    data: Any = None
    loaded: bool = False
    loading: bool = False
    visible: bool = False
    priority: int = 1

    def release(self) -> None:
        """Drop the payload and return to the unloaded state."""
        self.data = None
        self.loaded = False
        self.loading = False
