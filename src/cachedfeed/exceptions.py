class FeedError(Exception):
    """Base class for every error raised by cachedfeed."""


class FetchError(FeedError):
    """No payload could be obtained, neither live nor from the cache."""


class TransportError(FeedError):
    """A transport could not complete the request (DNS, TLS, timeout, ...)."""


class ShapeError(FeedError, ValueError):
    """Parsed content lacks the structural marker of the requested dialect."""


class UsageError(FeedError, AttributeError):
    """Raised on attempts to mutate a read-only feed."""
