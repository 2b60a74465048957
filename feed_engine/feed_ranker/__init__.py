"""Feed ranking: interaction tracking, content scoring and feed composition."""

from .content_scorer import ContentScore, ContentScorer, ScoringWeights
from .feed_service import FeedKind, FeedService, SocialGraphProvider
from .interaction_tracker import InteractionTracker

__all__ = [
    "ContentScore",
    "ContentScorer",
    "FeedKind",
    "FeedService",
    "InteractionTracker",
    "ScoringWeights",
    "SocialGraphProvider",
]
