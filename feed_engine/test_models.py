"""Unit tests for the shared data models."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from feed_engine.models import (
    CacheEntry,
    CachePriority,
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
    decode_payload,
    encode_payload,
    payload_has_media,
)


CREATED = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestEngagementCounts:
    """Test EngagementCounts validation and refresh."""

    def test_negative_count_rejected(self):
        with pytest.raises(ValueError, match="Likes count must be non-negative"):
            EngagementCounts(likes=-1)

    def test_refresh_updates_given_counters(self):
        counts = EngagementCounts(likes=1, comments=2, shares=3, views=4)

        counts.refresh(likes=10, views=40)

        assert counts == EngagementCounts(likes=10, comments=2, shares=3, views=40)

    def test_refresh_rejects_negative_values(self):
        counts = EngagementCounts(likes=1)

        with pytest.raises(ValueError):
            counts.refresh(shares=-5)
        assert counts.shares == 0


class TestContentItems:
    """Test the content item union."""

    def test_post_is_not_video(self):
        post = Post(id="p1", author_id="alice", created_at=CREATED, image_urls=["a.jpg"])

        assert post.content_type is ContentType.POST
        assert post.is_video is False
        assert post.video_duration is None
        assert post.has_media() is True
        assert post.image_urls == ("a.jpg",)

    def test_reel_requires_video_url(self):
        with pytest.raises(ValueError, match="video url"):
            Reel(id="r1", author_id="alice", created_at=CREATED)

    def test_reel_is_video(self):
        reel = Reel(id="r1", author_id="alice", created_at=CREATED, video_url="r.mp4", duration=30.0)

        assert reel.is_video is True
        assert reel.video_duration == 30.0

    def test_story_expiry_defaults_to_a_day(self):
        story = Story(id="s1", author_id="alice", created_at=CREATED, media_url="s.jpg")

        assert story.expires_at == CREATED + timedelta(hours=24)
        assert not story.is_expired(CREATED + timedelta(hours=23))
        assert story.is_expired(CREATED + timedelta(hours=25))

    def test_video_story(self):
        story = Story(
            id="s1",
            author_id="alice",
            created_at=CREATED,
            media_url="s.mp4",
            media_kind="video",
            duration=12.0,
        )

        assert story.media_kind is StoryMediaKind.VIDEO
        assert story.is_video is True
        assert story.video_duration == 12.0

    def test_naive_datetimes_become_utc(self):
        post = Post(id="p1", author_id="alice", created_at=datetime(2024, 5, 1, 12, 0))

        assert post.created_at.tzinfo is timezone.utc

    def test_age_is_never_negative(self):
        post = Post(id="p1", author_id="alice", created_at=CREATED)

        assert post.age(CREATED - timedelta(hours=1)) == timedelta(0)
        assert post.age(CREATED + timedelta(hours=2)) == timedelta(hours=2)

    def test_empty_ids_rejected(self):
        with pytest.raises(ValueError, match="Content id"):
            Post(id="", author_id="alice", created_at=CREATED)
        with pytest.raises(ValueError, match="Author id"):
            Post(id="p1", author_id="", created_at=CREATED)

    def test_dict_round_trip_keeps_type(self):
        reel = Reel(
            id="r1",
            author_id="alice",
            created_at=CREATED,
            engagement=EngagementCounts(likes=3),
            hashtags=("#dance",),
            video_url="r.mp4",
            duration=20.0,
        )

        rebuilt = content_item_from_dict(reel.to_dict())

        assert isinstance(rebuilt, Reel)
        assert rebuilt == reel

    def test_unknown_type_tag_rejected(self):
        with pytest.raises(ValueError, match="Unknown content type"):
            content_item_from_dict({"content_type": "podcast", "id": "x"})


class TestPayloadHelpers:
    """Test payload encoding for the durable tier."""

    def test_encodes_lists_of_content(self):
        post = Post(id="p1", author_id="alice", created_at=CREATED)

        encoded = encode_payload([post, "plain"])

        assert encoded[0]["__content__"]["content_type"] == "post"
        assert decode_payload(json.loads(json.dumps(encoded))) == [post, "plain"]

    def test_payload_has_media(self):
        assert payload_has_media({"video_url": "v.mp4"})
        assert not payload_has_media({"caption": "hi"})
        assert not payload_has_media("text")
        assert payload_has_media(Story(id="s", author_id="a", created_at=CREATED, media_url="s.jpg"))


class TestUserInteraction:
    """Test UserInteraction validation."""

    def test_enums_normalized(self):
        interaction = UserInteraction("viewer", "c1", "reel", "share", 1.0)

        assert interaction.content_type is ContentType.REEL
        assert interaction.action is InteractionAction.SHARE
        assert interaction.is_positive

    def test_negative_actions(self):
        for action in ("view", "skip", "unlike", "save"):
            assert not UserInteraction("viewer", "c1", "post", action, 1.0).is_positive

    def test_negative_watch_duration_rejected(self):
        with pytest.raises(ValueError, match="Watch duration"):
            UserInteraction("viewer", "c1", "reel", "view", 1.0, watch_duration=-1.0)

    def test_dict_round_trip(self):
        interaction = UserInteraction(
            "viewer", "c1", ContentType.POST, InteractionAction.LIKE, 1.0,
            author_id="alice", hashtags=["travel"],
        )

        assert UserInteraction.from_dict(interaction.to_dict()) == interaction


class TestUserPreferences:
    def test_from_dict_defaults(self):
        preferences = UserPreferences.from_dict({"preferred_content_types": ["reel"]})

        assert preferences.preferred_content_types == [ContentType.REEL]
        assert preferences.interests == []
        assert preferences.last_updated == 0.0


class TestCacheEntry:
    """Test CacheEntry bookkeeping."""

    def test_expired_only_after_expiry(self):
        entry = CacheEntry(data="x", timestamp=100.0, expiry=200.0)

        assert not entry.is_expired(200.0)
        assert entry.is_expired(200.1)

    def test_eviction_score(self):
        entry = CacheEntry(data="x", timestamp=0.0, expiry=10.0, priority=CachePriority.HIGH)
        entry.touch(1.0)
        entry.touch(2.0)

        assert entry.eviction_score == 6
        assert entry.last_access == 2.0

    def test_expiry_before_timestamp_rejected(self):
        with pytest.raises(ValueError, match="Expiry"):
            CacheEntry(data="x", timestamp=100.0, expiry=50.0)

    def test_malformed_json_rejected(self):
        with pytest.raises(ValueError):
            CacheEntry.from_json('{"data": 1}')
        with pytest.raises(ValueError):
            CacheEntry.from_json("not json")


class TestLazyLoadItem:
    def test_release(self):
        item = LazyLoadItem(id="p1", content_type=ContentType.POST, data="payload", loaded=True)

        item.release()

        assert item.data is None
        assert not item.loaded
        assert not item.loading
