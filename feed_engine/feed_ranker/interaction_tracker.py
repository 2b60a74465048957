"""Viewer interaction log and preference derivation.

The tracker keeps a capped, append-only log of interactions per viewer and
derives that viewer's preference profile from it. Both are persisted as JSON
records through the cache's durable storage provider.
"""

import json
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional

import structlog

from feed_engine import metrics
from feed_engine.cache_layer.storage import DurableStorage
from feed_engine.exceptions import SignalUnavailableError, StorageError
from feed_engine.models import InteractionAction, UserInteraction, UserPreferences


logger = structlog.get_logger(__name__)


def normalize_tag(tag: str) -> str:
    """Lowercase a hashtag and strip the leading '#'."""
    return tag.strip().lstrip("#").lower()


def positive_ratio_with_author(
    interactions: List[UserInteraction], viewer_id: str, author_id: str
) -> Optional[float]:
    """Share of the viewer's interactions with ``author_id`` that were positive.

    Returns:
        Ratio in [0, 1], or None when there is no history with the author
    """
    with_author = [
        i for i in interactions
        if i.viewer_id == viewer_id and i.author_id == author_id
    ]
    if not with_author:
        return None
    positive = sum(1 for i in with_author if i.is_positive)
    return positive / len(with_author)


def average_watch_fraction(
    interactions: List[UserInteraction], viewer_id: str, content_id: str, duration: Optional[float]
) -> Optional[float]:
    """Average fraction of a video the viewer watched across recorded views.

    Returns:
        Fraction in [0, 1], or None without usable views or duration
    """
    if not duration:
        return None

    fractions = [
        min(1.0, i.watch_duration / duration)
        for i in interactions
        if i.viewer_id == viewer_id
        and i.content_id == content_id
        and i.action is InteractionAction.VIEW
        and i.watch_duration
    ]
    if not fractions:
        return None
    return sum(fractions) / len(fractions)


class InteractionTracker:
    """Records viewer actions and maintains derived preferences.

    The in-memory state is authoritative. The first storage failure is logged
    and disables persistence for the tracker's lifetime; recording then
    continues memory-only.

    Attributes:
        storage: Durable storage provider used for persistence
        max_interactions: Ring-buffer size of the per-viewer log
        promotion_threshold: Positive interactions needed to promote a creator or tag
    """

    INTERACTIONS_KEY = "interactions"
    PREFERENCES_KEY = "preferences"

    def __init__(
        self,
        storage: DurableStorage,
        max_interactions: int = 1000,
        promotion_threshold: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_interactions < 1:
            raise ValueError("max_interactions must be at least 1")
        if promotion_threshold < 1:
            raise ValueError("promotion_threshold must be at least 1")

        self.storage = storage
        self.max_interactions = max_interactions
        self.promotion_threshold = promotion_threshold
        self._clock = clock

        self._logs: Dict[str, Deque[UserInteraction]] = {}
        self._preferences: Dict[str, UserPreferences] = {}
        self._durable_available = True

    def _interactions_key(self, viewer_id: str) -> str:
        return f"{self.INTERACTIONS_KEY}:{viewer_id}"

    def _preferences_key(self, viewer_id: str) -> str:
        return f"{self.PREFERENCES_KEY}:{viewer_id}"

    @property
    def durable_available(self) -> bool:
        return self._durable_available

    def _disable_durable(self, operation: str, error: Exception) -> None:
        self._durable_available = False
        metrics.DURABLE_FAILURES.inc()
        logger.warning(
            "Interaction storage unavailable, continuing memory-only",
            operation=operation,
            error=str(error),
        )

    async def _read(self, key: str) -> Optional[str]:
        if not self._durable_available:
            return None
        try:
            return await self.storage.get(key)
        except StorageError as e:
            self._disable_durable("get", e)
            raise SignalUnavailableError(f"Cannot read {key}: {e}") from e

    async def _write(self, key: str, value: str) -> bool:
        if not self._durable_available:
            return False
        try:
            await self.storage.set(key, value)
        except StorageError as e:
            self._disable_durable("set", e)
            return False
        return True

    async def _load_log(self, viewer_id: str) -> Deque[UserInteraction]:
        if viewer_id in self._logs:
            return self._logs[viewer_id]

        raw = await self._read(self._interactions_key(viewer_id))
        entries: List[UserInteraction] = []
        if raw:
            try:
                records = json.loads(raw)
                if not isinstance(records, list):
                    raise ValueError(f"expected a list, got {type(records).__name__}")
                entries = [UserInteraction.from_dict(d) for d in records]
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                raise SignalUnavailableError(f"Corrupt interaction log for {viewer_id}: {e}") from e

        log = deque(entries, maxlen=self.max_interactions)
        self._logs[viewer_id] = log
        return log

    async def get_interactions(self, viewer_id: str) -> List[UserInteraction]:
        """Return the viewer's interaction log, oldest first.

        Raises:
            SignalUnavailableError: If the log cannot be read
        """
        return list(await self._load_log(viewer_id))

    async def get_preferences(self, viewer_id: str) -> UserPreferences:
        """Return the viewer's derived preferences (empty for a new viewer).

        Raises:
            SignalUnavailableError: If the record cannot be read
        """
        if viewer_id in self._preferences:
            return self._preferences[viewer_id]

        raw = await self._read(self._preferences_key(viewer_id))
        preferences = UserPreferences()
        if raw:
            try:
                preferences = UserPreferences.from_dict(json.loads(raw))
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                raise SignalUnavailableError(f"Corrupt preferences for {viewer_id}: {e}") from e

        self._preferences[viewer_id] = preferences
        return preferences

    async def track_interaction(self, interaction: UserInteraction) -> bool:
        """Append an interaction and update the viewer's preferences.

        Args:
            interaction: The action to record

        Returns:
            True if the interaction was recorded and persisted, False if it
            was kept in memory only or could not be recorded
        """
        viewer_id = interaction.viewer_id
        log = logger.bind(viewer_id=viewer_id, action=interaction.action.value)

        try:
            interactions, preferences = await self._load_state(viewer_id)
        except SignalUnavailableError as e:
            log.error("Error tracking user interaction", error=str(e))
            return False

        interactions.append(interaction)
        self._update_preferences(preferences, interaction, interactions)

        persisted = (
            await self._write(
                self._interactions_key(viewer_id),
                json.dumps([i.to_dict() for i in interactions]),
            )
            and await self._write(
                self._preferences_key(viewer_id),
                json.dumps(preferences.to_dict()),
            )
        )

        log.debug("Tracked interaction", content_id=interaction.content_id, persisted=persisted)
        return persisted

    async def _load_state(self, viewer_id: str):
        try:
            return await self._load_log(viewer_id), await self.get_preferences(viewer_id)
        except SignalUnavailableError:
            if self._durable_available:
                raise
            # Storage just failed; start this viewer from memory-only state.
            return await self._load_log(viewer_id), await self.get_preferences(viewer_id)

    def _update_preferences(
        self,
        preferences: UserPreferences,
        interaction: UserInteraction,
        interactions: Deque[UserInteraction],
    ) -> None:
        """Promote creators, content types and tags after a positive interaction."""
        if interaction.is_positive:
            positives = [i for i in interactions if i.is_positive]

            author_id = interaction.author_id
            if author_id and author_id not in preferences.favorite_creators:
                count = sum(1 for i in positives if i.author_id == author_id)
                if count >= self.promotion_threshold:
                    preferences.favorite_creators.append(author_id)
                    logger.info("Promoted favorite creator",
                                viewer_id=interaction.viewer_id, author_id=author_id)

            if interaction.content_type not in preferences.preferred_content_types:
                preferences.preferred_content_types.append(interaction.content_type)

            for tag in {normalize_tag(t) for t in interaction.hashtags}:
                if not tag or tag in preferences.interests:
                    continue
                count = sum(
                    1 for i in positives
                    if tag in {normalize_tag(t) for t in i.hashtags}
                )
                if count >= self.promotion_threshold:
                    preferences.interests.append(tag)

        preferences.last_updated = self._clock()

    async def clear_user_data(self, viewer_id: str) -> None:
        """Forget a viewer's interactions and preferences.

        Raises:
            StorageError: If the stored records could not be deleted
        """
        self._logs.pop(viewer_id, None)
        self._preferences.pop(viewer_id, None)
        if not self._durable_available:
            return
        try:
            await self.storage.delete(self._interactions_key(viewer_id))
            await self.storage.delete(self._preferences_key(viewer_id))
        except StorageError as e:
            self._disable_durable("delete", e)
            raise
