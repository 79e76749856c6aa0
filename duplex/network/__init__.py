"""Network stack (transport/liveness/backoff/supervisor) for the duplex stream."""

from duplex.network.backoff import BackoffPolicy, RetryState
from duplex.network.connection import Connection
from duplex.network.errors import (
    AuthenticationRejected,
    ConnectFailure,
    ConnectionClosed,
    InvalidEndpoint,
    LivenessTimeout,
    NotConnected,
    StreamError,
    TransportError,
)
from duplex.network.liveness import LivenessMonitor, LivenessRecord
from duplex.network.state import ConnectionState, StateTracker
from duplex.network.supervisor import ConnectionSupervisor, StatusEvent, validate_endpoint
from duplex.network.transport import BaseTransport, DummyTransport, Frame, FrameKind, WebSocketTransport

__all__ = [
    "ConnectionSupervisor",
    "StatusEvent",
    "validate_endpoint",
    "Connection",
    "ConnectionState",
    "StateTracker",
    "BackoffPolicy",
    "RetryState",
    "LivenessMonitor",
    "LivenessRecord",
    "BaseTransport",
    "DummyTransport",
    "WebSocketTransport",
    "Frame",
    "FrameKind",
    "StreamError",
    "InvalidEndpoint",
    "NotConnected",
    "ConnectFailure",
    "AuthenticationRejected",
    "LivenessTimeout",
    "TransportError",
    "ConnectionClosed",
]
