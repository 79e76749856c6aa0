"""Connection state tracking for the supervised stream."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone


class ConnectionState(enum.Enum):
    """Supervisor-side state machine."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"


@dataclass
class StateTracker:
    """Current state plus the terminal flag set by stop()."""

    state: ConnectionState = ConnectionState.DISCONNECTED
    terminal: bool = False
    last_transition_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def transition(self, next_state: ConnectionState) -> None:
        """Move into a new state, validating allowed transitions."""

        if self.terminal:
            raise ValueError(f"Stream is stopped; cannot enter {next_state.value}")
        if not self._is_valid_transition(self.state, next_state):
            raise ValueError(f"Invalid transition {self.state.value} → {next_state.value}")
        self.state = next_state
        self.last_transition_at = datetime.now(tz=timezone.utc)

    def terminate(self) -> None:
        """Enter the terminal DISCONNECTED state from anywhere."""

        self.state = ConnectionState.DISCONNECTED
        self.terminal = True
        self.last_transition_at = datetime.now(tz=timezone.utc)

    @staticmethod
    def _is_valid_transition(current: ConnectionState, nxt: ConnectionState) -> bool:
        allowed = {
            ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
            ConnectionState.CONNECTING: {ConnectionState.ACTIVE, ConnectionState.DISCONNECTED},
            ConnectionState.ACTIVE: {ConnectionState.DISCONNECTED},
        }
        return nxt in allowed.get(current, set())
