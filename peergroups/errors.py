"""Exception types reported through the ``error`` event."""

from __future__ import annotations


class PeerGroupsError(Exception):
    """Base class for all Peer Groups errors."""

    pass


class ProtocolError(PeerGroupsError, ValueError):
    """Raised when an inbound envelope is malformed, unknown or unexpected."""

    pass


class AuthError(PeerGroupsError):
    """Raised when admin authentication fails or is missing."""

    pass


class TransmissionError(PeerGroupsError):
    """Raised when the underlying transport fails to send an envelope."""

    pass


class MessageTooLargeError(TransmissionError):
    """Raised when message exceeds link MDU."""

    pass


class ListenerError(PeerGroupsError):
    """Wraps an exception raised by an event subscriber."""

    def __init__(self, event_type: str, original: BaseException):
        super().__init__(f"Error in listener for {event_type}: {original}")
        self.event_type = event_type
        self.original = original
