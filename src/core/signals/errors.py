"""Exceptions raised inside signal collection."""


class OperationCancelled(Exception):
    """Raised when a cancellation token fires during a wait or a command."""

    def __init__(self, message: str = "cancelled"):
        super().__init__(message)


class SignalCollectionError(Exception):
    """
    A collector-local failure with a specific reason code.

    Collectors raise this from their body; SignalCollector.collect
    turns it into an unavailable SignalResult carrying ``reason``.
    """

    def __init__(self, reason: str, notes: str = None):
        super().__init__(reason)
        self.reason = reason
        self.notes = notes
