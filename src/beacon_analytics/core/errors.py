"""Exception types raised by the core analytics components."""


class AnalyticsError(Exception):
    """Base class for analytics failures."""
    pass


class StorageError(AnalyticsError):
    """Raised when the storage backend fails to execute a statement."""
    pass


class QueryTimeoutError(AnalyticsError):
    """Raised when a read query exceeds its time budget."""
    pass


class InvalidRangeError(ValueError):
    """Raised when a period selector or custom bounds cannot be resolved."""
    pass
