"""Exception types raised by chatsync."""


class ChatSyncError(Exception):
    """Base class for all chatsync errors."""


class HydrationError(ChatSyncError):
    """The initial room list could not be loaded.

    The session stays in the LOAD_FAILED state and the registry is left
    untouched, so callers never observe a partially loaded room list.
    """

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(f"Failed to load chat rooms: {cause}")


class InvalidEventError(ChatSyncError):
    """A push frame could not be parsed into a known event."""

    def __init__(self, topic: str, reason: str) -> None:
        self.topic = topic
        self.reason = reason
        super().__init__(f"Invalid event on {topic}: {reason}")


class TransportError(ChatSyncError):
    """The push transport was used while not connected."""
