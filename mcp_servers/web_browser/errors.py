from __future__ import annotations


class TransportError(Exception):
    """Base class for transport-layer failures between extension, bridge and daemon."""


class FramingError(TransportError):
    """Malformed, truncated or oversized native-messaging frame."""


class EndOfStreamError(FramingError):
    """The stream closed before any byte of a new frame was read.

    This is an orderly shutdown signal, not a protocol violation.
    """

    def __init__(self, message: str = "End of stream") -> None:
        super().__init__(message)


class MessageTooLargeError(FramingError):
    pass


class BridgeConnectionError(TransportError):
    """Connecting to the daemon socket failed."""


class InvalidTransitionError(TransportError):
    pass


class RequestTimeoutError(TransportError):
    def __init__(self, message: str = "Request timeout") -> None:
        super().__init__(message)


class ConnectionClosedError(TransportError):
    def __init__(self, message: str = "Connection closed") -> None:
        super().__init__(message)


class BridgeDisconnectedError(ConnectionClosedError):
    def __init__(self, message: str = "Disconnected") -> None:
        super().__init__(message)


class ProtocolParseError(TransportError):
    """A newline-delimited JSON line could not be decoded."""


__all__ = [
    "BridgeConnectionError",
    "BridgeDisconnectedError",
    "ConnectionClosedError",
    "EndOfStreamError",
    "FramingError",
    "InvalidTransitionError",
    "MessageTooLargeError",
    "ProtocolParseError",
    "RequestTimeoutError",
    "TransportError",
]
