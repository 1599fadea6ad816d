from __future__ import annotations


class RowQueueError(Exception):
    """Base exception for rowqueue library."""

    pass


class InvalidArgument(RowQueueError, ValueError):
    """Raised when a caller passes a value the queue cannot accept."""

    pass


class StoreUnavailable(RowQueueError):
    """Raised when the backing database fails; the driver error is chained as __cause__."""

    pass
