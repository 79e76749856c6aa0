"""Transport abstractions for the supervised stream."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Mapping, Union

Credential = Union[str, Mapping[str, str], None]


class FrameKind(enum.Enum):
    DATA = "data"
    PING = "ping"
    PONG = "pong"
    CLOSE = "close"


CONTROL_KINDS = frozenset({FrameKind.PING, FrameKind.PONG})


@dataclass(frozen=True)
class Frame:
    """A single inbound unit: application data or a control frame."""

    kind: FrameKind
    payload: Any = None

    @classmethod
    def data(cls, payload: Any) -> "Frame":
        return cls(FrameKind.DATA, payload)

    @classmethod
    def control(cls, kind: FrameKind) -> "Frame":
        if kind not in CONTROL_KINDS:
            raise ValueError(f"{kind.value} is not a control frame kind")
        return cls(kind)


class BaseTransport(ABC):
    """Abstract duplex message transport; one instance per connection attempt."""

    @abstractmethod
    async def connect(self, endpoint: str, credential: Credential) -> None:
        """Open and authenticate. Raises ConnectFailure / AuthenticationRejected."""

    @abstractmethod
    async def send(self, payload: Any) -> None:
        ...

    @abstractmethod
    async def receive(self) -> Frame:
        """Return the next inbound frame. Raises TransportError on failure or close."""

    @abstractmethod
    async def send_control(self, kind: FrameKind) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def recv_queue_size(self) -> int:
        """Inbound frames buffered but not yet returned by receive()."""

        return 0
