"""Resilient duplex stream client."""

from duplex.config import StreamSettings, get_settings
from duplex.network import ConnectionState, ConnectionSupervisor, NotConnected, StatusEvent

__all__ = ["ConnectionSupervisor", "ConnectionState", "NotConnected", "StatusEvent", "StreamSettings", "get_settings"]
