"""Unit tests for the InteractionTracker."""

import json

import pytest

from feed_engine.cache_layer.storage import InMemoryDurableStorage
from feed_engine.exceptions import SignalUnavailableError, StorageError
from feed_engine.feed_ranker.interaction_tracker import (
    InteractionTracker,
    average_watch_fraction,
    normalize_tag,
    positive_ratio_with_author,
)
from feed_engine.models import ContentType, InteractionAction, UserInteraction


class UnavailableStorage(InMemoryDurableStorage):
    """Storage provider whose every operation fails."""

    async def get(self, key):
        raise StorageError("storage offline")

    async def set(self, key, value):
        raise StorageError("storage offline")

    async def delete(self, key):
        raise StorageError("storage offline")


class WriteFailingStorage(InMemoryDurableStorage):
    """Storage provider that reads fine but rejects every write."""

    def __init__(self):
        super().__init__(namespace="test")
        self.set_calls = 0

    async def set(self, key, value):
        self.set_calls += 1
        raise StorageError("disk full")


def interaction(
    action=InteractionAction.LIKE,
    viewer_id="viewer",
    content_id="c1",
    author_id="alice",
    content_type=ContentType.POST,
    hashtags=None,
    watch_duration=None,
    timestamp=1000.0,
):
    return UserInteraction(
        viewer_id=viewer_id,
        content_id=content_id,
        content_type=content_type,
        action=action,
        timestamp=timestamp,
        watch_duration=watch_duration,
        author_id=author_id,
        hashtags=hashtags or [],
    )


@pytest.fixture
def storage():
    return InMemoryDurableStorage(namespace="test")


@pytest.fixture
def tracker(storage):
    return InteractionTracker(storage, clock=lambda: 5000.0)


class TestSignalHelpers:
    """Test the pure signal helpers."""

    def test_normalize_tag(self):
        assert normalize_tag("#Travel ") == "travel"
        assert normalize_tag("food") == "food"

    def test_positive_ratio_with_author(self):
        history = [
            interaction(InteractionAction.LIKE),
            interaction(InteractionAction.SKIP),
            interaction(InteractionAction.SHARE),
            interaction(InteractionAction.LIKE, author_id="bob"),
        ]

        assert positive_ratio_with_author(history, "viewer", "alice") == pytest.approx(2 / 3)
        assert positive_ratio_with_author(history, "viewer", "carol") is None
        assert positive_ratio_with_author(history, "someone-else", "alice") is None

    def test_average_watch_fraction(self):
        history = [
            interaction(InteractionAction.VIEW, content_id="r1", watch_duration=15.0),
            interaction(InteractionAction.VIEW, content_id="r1", watch_duration=60.0),
            interaction(InteractionAction.LIKE, content_id="r1"),
        ]

        # second view is capped at the full duration
        assert average_watch_fraction(history, "viewer", "r1", 30.0) == pytest.approx(0.75)
        assert average_watch_fraction(history, "viewer", "r2", 30.0) is None
        assert average_watch_fraction(history, "viewer", "r1", None) is None


class TestTracking:
    """Test recording interactions."""

    @pytest.mark.asyncio
    async def test_new_viewer_has_empty_state(self, tracker):
        assert await tracker.get_interactions("viewer") == []
        preferences = await tracker.get_preferences("viewer")
        assert preferences.favorite_creators == []
        assert preferences.interests == []
        assert preferences.preferred_content_types == []

    @pytest.mark.asyncio
    async def test_track_appends_and_persists(self, tracker, storage):
        assert await tracker.track_interaction(interaction()) is True

        interactions = await tracker.get_interactions("viewer")
        assert len(interactions) == 1
        assert interactions[0].content_id == "c1"

        persisted = json.loads(await storage.get("interactions:viewer"))
        assert persisted[0]["action"] == "like"
        assert json.loads(await storage.get("preferences:viewer"))["last_updated"] == 5000.0

    @pytest.mark.asyncio
    async def test_log_is_capped_keeping_most_recent(self, storage):
        tracker = InteractionTracker(storage, max_interactions=1000)

        for n in range(1001):
            await tracker.track_interaction(
                interaction(InteractionAction.VIEW, content_id=f"c{n}", timestamp=float(n))
            )

        interactions = await tracker.get_interactions("viewer")
        assert len(interactions) == 1000
        assert interactions[0].content_id == "c1"
        assert interactions[-1].content_id == "c1000"

    @pytest.mark.asyncio
    async def test_state_survives_a_new_tracker(self, tracker, storage):
        await tracker.track_interaction(interaction())

        reloaded = InteractionTracker(storage)

        assert len(await reloaded.get_interactions("viewer")) == 1
        assert (await reloaded.get_preferences("viewer")).preferred_content_types == [ContentType.POST]

    @pytest.mark.asyncio
    async def test_storage_failure_keeps_interaction_in_memory(self):
        tracker = InteractionTracker(UnavailableStorage())

        assert await tracker.track_interaction(interaction()) is False

        assert tracker.durable_available is False
        assert len(await tracker.get_interactions("viewer")) == 1

    @pytest.mark.asyncio
    async def test_write_failure_is_not_retried(self):
        storage = WriteFailingStorage()
        tracker = InteractionTracker(storage)

        results = [
            await tracker.track_interaction(interaction(content_id=f"c{n}"))
            for n in range(5)
        ]

        assert results == [False] * 5
        assert storage.set_calls == 1
        assert tracker.durable_available is False
        assert len(await tracker.get_interactions("viewer")) == 5
        assert (await tracker.get_preferences("viewer")).favorite_creators == ["alice"]

    @pytest.mark.asyncio
    async def test_unreadable_storage_raises_once_then_runs_memory_only(self):
        storage = UnavailableStorage()
        tracker = InteractionTracker(storage)

        with pytest.raises(SignalUnavailableError):
            await tracker.get_interactions("viewer")

        assert await tracker.get_interactions("viewer") == []
        assert (await tracker.get_preferences("viewer")).favorite_creators == []

    @pytest.mark.asyncio
    async def test_corrupt_record_raises_signal_unavailable(self, storage):
        await storage.set("interactions:viewer", "not json")
        await storage.set("preferences:viewer", "[1, 2]")
        tracker = InteractionTracker(storage)

        with pytest.raises(SignalUnavailableError, match="Corrupt interaction log"):
            await tracker.get_interactions("viewer")
        with pytest.raises(SignalUnavailableError, match="Corrupt preferences"):
            await tracker.get_preferences("viewer")

    @pytest.mark.asyncio
    async def test_record_of_wrong_shape_raises_signal_unavailable(self, storage):
        await storage.set("interactions:viewer", '{"viewer_id": "viewer"}')
        await storage.set("preferences:viewer", '"favorite"')
        tracker = InteractionTracker(storage)

        with pytest.raises(SignalUnavailableError, match="Corrupt interaction log"):
            await tracker.get_interactions("viewer")
        with pytest.raises(SignalUnavailableError, match="Corrupt preferences"):
            await tracker.get_preferences("viewer")
        assert tracker.durable_available is True

    def test_rejects_invalid_limits(self, storage):
        with pytest.raises(ValueError):
            InteractionTracker(storage, max_interactions=0)
        with pytest.raises(ValueError):
            InteractionTracker(storage, promotion_threshold=0)


class TestPreferenceDerivation:
    """Test promotion of creators, content types and tags."""

    @pytest.mark.asyncio
    async def test_creator_promoted_after_three_positive_interactions(self, tracker):
        for n in range(2):
            await tracker.track_interaction(interaction(content_id=f"c{n}"))
        assert "alice" not in (await tracker.get_preferences("viewer")).favorite_creators

        await tracker.track_interaction(interaction(InteractionAction.COMMENT, content_id="c2"))

        assert (await tracker.get_preferences("viewer")).favorite_creators == ["alice"]

    @pytest.mark.asyncio
    async def test_negative_actions_do_not_promote(self, tracker):
        for n in range(5):
            await tracker.track_interaction(interaction(InteractionAction.SKIP, content_id=f"c{n}"))

        preferences = await tracker.get_preferences("viewer")
        assert preferences.favorite_creators == []
        assert preferences.preferred_content_types == []

    @pytest.mark.asyncio
    async def test_content_type_preferred_after_positive_interaction(self, tracker):
        await tracker.track_interaction(interaction(content_type=ContentType.REEL))
        await tracker.track_interaction(interaction(content_type=ContentType.REEL))

        preferences = await tracker.get_preferences("viewer")
        assert preferences.preferred_content_types == [ContentType.REEL]

    @pytest.mark.asyncio
    async def test_tags_promoted_case_insensitively(self, tracker):
        await tracker.track_interaction(interaction(content_id="a", hashtags=["#Travel"]))
        await tracker.track_interaction(interaction(content_id="b", hashtags=["travel", "food"]))
        await tracker.track_interaction(interaction(content_id="c", hashtags=["TRAVEL"]))

        preferences = await tracker.get_preferences("viewer")
        assert preferences.interests == ["travel"]

    @pytest.mark.asyncio
    async def test_promotion_threshold_is_configurable(self, storage):
        tracker = InteractionTracker(storage, promotion_threshold=1)

        await tracker.track_interaction(interaction(author_id="bob"))

        assert (await tracker.get_preferences("viewer")).favorite_creators == ["bob"]


class TestClearUserData:
    """Test forgetting a viewer."""

    @pytest.mark.asyncio
    async def test_clear_removes_memory_and_storage(self, tracker, storage):
        await tracker.track_interaction(interaction())

        await tracker.clear_user_data("viewer")

        assert await tracker.get_interactions("viewer") == []
        assert await storage.get("interactions:viewer") is None
        assert await storage.get("preferences:viewer") is None

    @pytest.mark.asyncio
    async def test_clear_propagates_storage_errors(self):
        tracker = InteractionTracker(UnavailableStorage())

        with pytest.raises(StorageError):
            await tracker.clear_user_data("viewer")
