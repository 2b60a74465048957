"""
Content Scoring Engine

This module scores heterogeneous content items for a viewer and produces the
final feed ordering: an additive score over social, freshness, engagement
and personal-affinity terms, followed by a distribution pass that
interleaves content from followed authors with discovery content.
"""

import math
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set

import structlog

from feed_engine import metrics
from feed_engine.exceptions import SignalUnavailableError
from feed_engine.feed_ranker.interaction_tracker import (
    InteractionTracker,
    average_watch_fraction,
    normalize_tag,
    positive_ratio_with_author,
)
from feed_engine.models import ContentItem, UserInteraction, UserPreferences


logger = structlog.get_logger(__name__)


@dataclass
class ScoringWeights:
    """Weights and thresholds for content scoring."""

    following: float = 100.0

    # Recency bands: under 1 hour, under 24 hours, under 1 week
    recent_hour: float = 75.0
    recent_day: float = 50.0
    recent_week: float = 25.0

    engagement: float = 30.0
    interaction_history: float = 40.0
    favorite_creator: float = 35.0
    content_type_match: float = 25.0
    fresh_following: float = 45.0
    discovery_jitter: float = 15.0

    watch_completion: float = 60.0
    watch_completion_threshold: float = 0.7
    duration_sweet_spot: float = 10.0
    sweet_spot_min_seconds: float = 15.0
    sweet_spot_max_seconds: float = 60.0

    interest_match: float = 8.0

    # Distribution pass
    following_share: float = 0.7

    def __post_init__(self) -> None:
        """Validate scoring weights."""
        for name, value in vars(self).items():
            if value < 0:
                raise ValueError(f"Weight {name} must be non-negative")
        if not 0.0 <= self.following_share <= 1.0:
            raise ValueError("Following share must be between 0.0 and 1.0")
        if self.sweet_spot_min_seconds > self.sweet_spot_max_seconds:
            raise ValueError("Sweet spot minimum must not exceed maximum")


@dataclass
class ContentScore:
    """Score of one content item with the terms that produced it.

    Attributes:
        content_id: Scored item
        base_score: Sum of all deterministic terms
        jitter: Random discovery term, 0 for followed authors
        reasons: Names of the terms that contributed
    """

    content_id: str
    base_score: float = 0.0
    jitter: float = 0.0
    reasons: List[str] = field(default_factory=list)

    @property
    def total(self) -> float:
        return self.base_score + self.jitter

    def add(self, amount: float, reason: str) -> None:
        self.base_score += amount
        self.reasons.append(reason)


class ContentScorer:
    """
    Personalized ranking engine.

    Signals that are missing (None) are skipped, so ranking degrades to
    following, recency and engagement terms instead of failing.
    """

    def __init__(
        self,
        weights: Optional[ScoringWeights] = None,
        tracker: Optional[InteractionTracker] = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the scorer.

        Args:
            weights: Scoring weights (defaults when None)
            tracker: Source of interaction and preference signals for ``rank_for_viewer``
            rng: Random source for the discovery jitter
        """
        self.weights = weights or ScoringWeights()
        self.tracker = tracker
        self.rng = rng or random.Random()

    def score_item(
        self,
        item: ContentItem,
        viewer_id: str,
        following_ids: Set[str],
        interactions: Optional[List[UserInteraction]],
        preferences: Optional[UserPreferences],
        now: datetime,
    ) -> ContentScore:
        """
        Score a single content item.

        Args:
            item: Content to score
            viewer_id: Viewer the feed is for
            following_ids: Authors the viewer follows
            interactions: Viewer interaction log, or None if unavailable
            preferences: Viewer preferences, or None if unavailable
            now: Reference time for recency

        Returns:
            ContentScore with the per-term breakdown
        """
        w = self.weights
        score = ContentScore(content_id=item.id)
        followed = item.author_id in following_ids
        age = item.age(now)

        if followed:
            score.add(w.following, "following")

        if age < timedelta(hours=1):
            score.add(w.recent_hour, "very_recent")
        elif age < timedelta(hours=24):
            score.add(w.recent_day, "recent")
        elif age < timedelta(weeks=1):
            score.add(w.recent_week, "this_week")

        e = item.engagement
        engagement = math.log(e.likes + 3 * e.comments + 5 * e.shares + 0.1 * e.views + 1)
        score.add(engagement * w.engagement, "engagement")

        if interactions is not None:
            ratio = positive_ratio_with_author(interactions, viewer_id, item.author_id)
            if ratio is not None:
                score.add(ratio * w.interaction_history, "positive_history")

        if preferences is not None:
            if item.author_id in preferences.favorite_creators:
                score.add(w.favorite_creator, "favorite_creator")
            if item.content_type in preferences.preferred_content_types:
                score.add(w.content_type_match, "preferred_type")

        if followed and age < timedelta(hours=24):
            score.add(w.fresh_following, "fresh_following")

        if item.is_video:
            duration = item.video_duration
            if interactions is not None:
                fraction = average_watch_fraction(interactions, viewer_id, item.id, duration)
                if fraction is not None and fraction > w.watch_completion_threshold:
                    score.add(w.watch_completion, "high_completion")
            if duration is not None and w.sweet_spot_min_seconds <= duration <= w.sweet_spot_max_seconds:
                score.add(w.duration_sweet_spot, "optimal_duration")

        if preferences is not None and preferences.interests:
            tags = {normalize_tag(t) for t in item.hashtags}
            matches = [i for i in preferences.interests if normalize_tag(i) in tags]
            if matches:
                score.add(len(matches) * w.interest_match, "interest_match")

        if not followed:
            score.jitter = self.rng.uniform(0.0, w.discovery_jitter)
            score.reasons.append("discovery")

        return score

    def rank(
        self,
        candidates: Iterable[ContentItem],
        viewer_id: str,
        following_ids: Iterable[str],
        interactions: Optional[List[UserInteraction]] = None,
        preferences: Optional[UserPreferences] = None,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> List[ContentItem]:
        """
        Score candidates and produce the final feed ordering.

        Args:
            candidates: Unranked content pool
            viewer_id: Viewer the feed is for
            following_ids: Authors the viewer follows
            interactions: Viewer interaction log, or None if unavailable
            preferences: Viewer preferences, or None if unavailable
            limit: Requested page size
            now: Reference time (current UTC time when None)

        Returns:
            Ordered feed of at most ``limit`` items
        """
        if limit < 0:
            raise ValueError("Limit must be non-negative")

        candidates = list(candidates)
        if not candidates or limit == 0:
            return []

        now = now or datetime.now(timezone.utc)
        following = set(following_ids)
        started = time.perf_counter()

        scored = [
            (self.score_item(item, viewer_id, following, interactions, preferences, now), item)
            for item in candidates
        ]
        # Stable sort: equal totals keep candidate order.
        scored.sort(key=lambda pair: pair[0].total, reverse=True)

        for score, item in scored[:limit]:
            logger.debug("Scored content",
                         content_id=item.id,
                         score=round(score.total, 2),
                         reasons=score.reasons)

        ordered = [item for _, item in scored]
        result = self.apply_distribution(ordered, following, limit)

        metrics.RANKING_TIME.observe(time.perf_counter() - started)
        logger.info("Ranked feed",
                    viewer_id=viewer_id,
                    candidates=len(candidates),
                    returned=len(result),
                    personalized=interactions is not None and preferences is not None)
        return result

    def apply_distribution(
        self, ordered: List[ContentItem], following_ids: Set[str], limit: int
    ) -> List[ContentItem]:
        """
        Take a following/discovery split of the page and interleave it.

        Followed-author content gets ``ceil(following_share * limit)`` slots and
        discovery content the rest; a side without enough items leaves its
        slots to the other. The merge repeats two followed items then one
        discovery item.

        Args:
            ordered: Items sorted by descending score
            following_ids: Authors the viewer follows
            limit: Requested page size

        Returns:
            Interleaved page of at most ``limit`` items
        """
        following_content = [i for i in ordered if i.author_id in following_ids]
        discovery_content = [i for i in ordered if i.author_id not in following_ids]

        following_quota = min(math.ceil(limit * self.weights.following_share), len(following_content))
        discovery_quota = min(limit - following_quota, len(discovery_content))

        # Backfill the remaining slots from whichever side still has items
        spare = limit - following_quota - discovery_quota
        if spare > 0:
            extra = min(spare, len(following_content) - following_quota)
            following_quota += extra
            spare -= extra
            discovery_quota += min(spare, len(discovery_content) - discovery_quota)

        selected_following = following_content[:following_quota]
        selected_discovery = discovery_content[:discovery_quota]

        result: List[ContentItem] = []
        f = d = 0
        while f < len(selected_following) or d < len(selected_discovery):
            for _ in range(2):
                if f < len(selected_following):
                    result.append(selected_following[f])
                    f += 1
            if d < len(selected_discovery):
                result.append(selected_discovery[d])
                d += 1

        return result[:limit]

    async def rank_for_viewer(
        self,
        candidates: Iterable[ContentItem],
        viewer_id: str,
        following_ids: Iterable[str],
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> List[ContentItem]:
        """
        Rank candidates using signals retrieved from the tracker.

        Unavailable signals are logged and left out of the score.
        """
        log = logger.bind(viewer_id=viewer_id)
        interactions: Optional[List[UserInteraction]] = None
        preferences: Optional[UserPreferences] = None

        if self.tracker is not None:
            try:
                interactions = await self.tracker.get_interactions(viewer_id)
            except SignalUnavailableError as e:
                log.warning("Interaction history unavailable, ranking without it", error=str(e))
            try:
                preferences = await self.tracker.get_preferences(viewer_id)
            except SignalUnavailableError as e:
                log.warning("Preferences unavailable, ranking without them", error=str(e))

        return self.rank(
            candidates,
            viewer_id,
            following_ids,
            interactions=interactions,
            preferences=preferences,
            limit=limit,
            now=now,
        )
