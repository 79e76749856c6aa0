"""Error taxonomy for the supervised stream."""

from __future__ import annotations

from typing import Optional


class StreamError(RuntimeError):
    """Base class for all stream client errors."""


class InvalidEndpoint(StreamError, ValueError):
    """Raised by start() when the endpoint cannot be used at all. Never retried."""


class NotConnected(StreamError):
    """Raised by send() when no connection is active."""


class ConnectFailure(StreamError):
    """The transport refused or timed out during the handshake."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationRejected(ConnectFailure):
    """The peer rejected the presented credential."""


class LivenessTimeout(StreamError):
    """The liveness monitor declared the connection dead."""


class TransportError(StreamError):
    """A read or write failed on an established connection."""


class ConnectionClosed(TransportError):
    """The peer closed the connection."""

    def __init__(self, message: str = "connection closed by peer", *, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


def classify_error(exc: BaseException) -> str:
    """Bucket an error for status reporting. Never influences retry behaviour."""

    if isinstance(exc, LivenessTimeout):
        return "liveness"
    if isinstance(exc, AuthenticationRejected):
        return "auth"
    status_code = getattr(exc, "status_code", None)
    if status_code is None:
        status_code = getattr(exc, "code", None)
    if status_code in {401, 403}:
        return "auth"
    if status_code in {400, 404, 426}:
        return "protocol"
    message = str(exc).lower()
    if any(token in message for token in ("unauthorized", "forbidden", "invalid token")):
        return "auth"
    if any(token in message for token in ("protocol", "invalid status", "unsupported")):
        return "protocol"
    if isinstance(exc, (TransportError, ConnectFailure, OSError, TimeoutError)):
        return "network"
    if any(token in message for token in ("timeout", "timed out", "refused", "unreachable", "reset", "closed")):
        return "network"
    return "unknown"
