"""Exception hierarchy for the feed engine.

Only failures that cross a component boundary get their own type; capacity
overflow in the cache is handled by eviction and is never raised.
"""


class FeedEngineError(Exception):
    """Base exception for all feed engine errors."""
    pass


class ConfigurationError(FeedEngineError):
    """Raised when settings are missing or invalid."""
    pass


class StorageError(FeedEngineError):
    """Raised by a durable storage provider when it cannot read or write."""
    pass


class SignalUnavailableError(FeedEngineError):
    """Raised when interaction or preference data cannot be read."""
    pass


class ContentFetchError(FeedEngineError):
    """Raised when the content source cannot deliver an item."""
    pass


class FeedUnavailableError(FeedEngineError):
    """Raised when no feed can be produced and nothing was served before."""
    pass
