"""Transport implementations for the supervised stream."""

from .base import BaseTransport, Credential, Frame, FrameKind
from .dummy import DummyTransport
from .websocket import WebSocketTransport

__all__ = ["BaseTransport", "Credential", "Frame", "FrameKind", "DummyTransport", "WebSocketTransport"]
