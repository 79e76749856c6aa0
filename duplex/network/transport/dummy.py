"""Loopback transport for offline testing."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from duplex.config import StreamSettings
from duplex.network.errors import ConnectionClosed, TransportError
from duplex.network.transport.base import BaseTransport, Credential, Frame, FrameKind

LOGGER = logging.getLogger(__name__)


class DummyTransport(BaseTransport):
    """Echoes data frames back and answers probes without touching the network."""

    def __init__(self, settings: StreamSettings | None = None) -> None:
        self._settings = settings
        self._inbox: asyncio.Queue[Frame] = asyncio.Queue()
        self._connected = False
        self.endpoint: str | None = None
        self.credential: Credential = None

    async def connect(self, endpoint: str, credential: Credential) -> None:
        LOGGER.debug("Dummy transport connect(%s)", endpoint)
        self.endpoint = endpoint
        self.credential = credential
        self._connected = True

    async def send(self, payload: Any) -> None:
        if not self._connected:
            raise TransportError("Dummy transport not connected")
        LOGGER.debug("Dummy transport send(): %s", payload)
        self._inbox.put_nowait(Frame.data(payload))

    async def send_control(self, kind: FrameKind) -> None:
        if not self._connected:
            raise TransportError("Dummy transport not connected")
        if kind is FrameKind.PING:
            self._inbox.put_nowait(Frame.control(FrameKind.PONG))

    async def receive(self) -> Frame:
        if not self._connected:
            raise TransportError("Dummy transport not connected")
        frame = await self._inbox.get()
        if frame.kind is FrameKind.CLOSE:
            self._connected = False
            raise ConnectionClosed()
        return frame

    def feed(self, frame: Frame) -> None:
        """Inject an inbound frame as if the peer had sent it."""

        self._inbox.put_nowait(frame)

    async def close(self) -> None:
        LOGGER.debug("Dummy transport close()")
        self._connected = False

    def recv_queue_size(self) -> int:
        return self._inbox.qsize()
