"""A single attempt at establishing the duplex stream."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from duplex.network.state import ConnectionState
from duplex.network.transport.base import BaseTransport, Credential


@dataclass
class Connection:
    """Owned exclusively by the supervisor; discarded when the attempt ends."""

    endpoint: str
    credential: Credential = field(repr=False)
    transport: BaseTransport = field(repr=False)
    attempt: int = 0
    state: ConnectionState = ConnectionState.CONNECTING
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))
