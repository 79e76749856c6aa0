"""WebSocket transport implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed as WsConnectionClosed
from websockets.exceptions import InvalidStatus, WebSocketException

from duplex.config import StreamSettings
from duplex.network.errors import (
    AuthenticationRejected,
    ConnectFailure,
    ConnectionClosed,
    TransportError,
)
from duplex.network.transport.base import BaseTransport, Credential, Frame, FrameKind

LOGGER = logging.getLogger(__name__)

AUTH_REJECTED_STATUSES = frozenset({401, 403})


class WebSocketTransport(BaseTransport):
    """WebSocket-based stream transport.

    The library's own keepalive is disabled; liveness is owned by the
    supervisor's monitor, which drives protocol pings through send_control().
    Inbound messages and pong acknowledgments share one bounded inbox so
    receive() returns them in arrival order. A full inbox stops the pump from
    reading, which leaves the library's own read buffer to push back on the peer.
    """

    def __init__(self, settings: StreamSettings) -> None:
        self._settings = settings
        self._ws: Optional[ClientConnection] = None
        self._inbox: asyncio.Queue[Frame] = asyncio.Queue(maxsize=int(settings.recv_queue_max))
        self._pump_task: Optional[asyncio.Task[None]] = None

    def _headers_for(self, credential: Credential) -> dict[str, str]:
        if credential is None:
            return {}
        if isinstance(credential, str):
            scheme = self._settings.auth_scheme
            value = f"{scheme} {credential}" if scheme else credential
            return {self._settings.auth_header: value}
        return dict(credential)

    async def connect(self, endpoint: str, credential: Credential) -> None:
        LOGGER.info("Connecting to stream WebSocket at %s", endpoint)
        try:
            self._ws = await connect(
                endpoint,
                additional_headers=self._headers_for(credential),
                open_timeout=float(self._settings.connect_timeout_seconds),
                ping_interval=None,
                ping_timeout=None,
            )
        except InvalidStatus as exc:
            status_code = exc.response.status_code
            if status_code in AUTH_REJECTED_STATUSES:
                raise AuthenticationRejected(
                    f"Handshake rejected with HTTP {status_code}", status_code=status_code
                ) from exc
            raise ConnectFailure(f"Handshake failed with HTTP {status_code}", status_code=status_code) from exc
        except (OSError, asyncio.TimeoutError, WebSocketException) as exc:
            raise ConnectFailure(f"Connect to {endpoint} failed: {exc}") from exc
        self._pump_task = asyncio.create_task(self._pump(), name="websocket-pump")

    def _decode(self, raw: str | bytes) -> Any:
        if isinstance(raw, bytes) or not self._settings.json_messages:
            return raw
        if not raw.lstrip().startswith(("{", "[")):
            return raw
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    def _encode(self, payload: Any) -> str | bytes:
        if isinstance(payload, (str, bytes)):
            return payload
        return json.dumps(jsonable_encoder(payload))

    async def _pump(self) -> None:
        assert self._ws is not None
        try:
            while True:
                raw = await self._ws.recv()
                LOGGER.debug("WebSocket receive: %s", raw)
                await self._inbox.put(Frame.data(self._decode(raw)))
        except asyncio.CancelledError:
            raise
        except WsConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd is not None else None
            await self._inbox.put(Frame(FrameKind.CLOSE, ConnectionClosed(str(exc), code=code)))
        except Exception as exc:  # noqa: BLE001
            await self._inbox.put(Frame(FrameKind.CLOSE, TransportError(f"WebSocket receive failed: {exc}")))

    async def send(self, payload: Any) -> None:
        if not self._ws:
            raise TransportError("WebSocket transport not connected")
        message = self._encode(payload)
        LOGGER.debug("WebSocket send: %s", message)
        try:
            await self._ws.send(message)
        except WsConnectionClosed as exc:
            raise ConnectionClosed(str(exc)) from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"WebSocket send failed: {exc}") from exc

    async def send_control(self, kind: FrameKind) -> None:
        if not self._ws:
            raise TransportError("WebSocket transport not connected")
        try:
            if kind is FrameKind.PING:
                waiter = await self._ws.ping()
                waiter.add_done_callback(self._on_pong)
            elif kind is FrameKind.PONG:
                await self._ws.pong()
            else:
                raise ValueError(f"{kind.value} is not a control frame kind")
        except WsConnectionClosed as exc:
            raise ConnectionClosed(str(exc)) from exc
        except (OSError, WebSocketException) as exc:
            raise TransportError(f"WebSocket control send failed: {exc}") from exc

    def _on_pong(self, waiter: asyncio.Future[Any]) -> None:
        if waiter.cancelled() or waiter.exception() is not None:
            return
        try:
            self._inbox.put_nowait(Frame.control(FrameKind.PONG))
        except asyncio.QueueFull:
            LOGGER.debug("Inbox full; dropping pong acknowledgment")

    async def receive(self) -> Frame:
        if not self._ws:
            raise TransportError("WebSocket transport not connected")
        frame = await self._inbox.get()
        if frame.kind is FrameKind.CLOSE:
            error = frame.payload if isinstance(frame.payload, TransportError) else ConnectionClosed()
            raise error
        return frame

    async def close(self) -> None:
        pump = self._pump_task
        self._pump_task = None
        ws = self._ws
        try:
            if pump:
                pump.cancel()
                await asyncio.wait({pump})
            if ws is not None:
                LOGGER.info("Closing WebSocket transport")
                await ws.close()
        except asyncio.CancelledError:
            # Interrupted close handshake: drop the socket instead of leaving it open.
            if ws is not None:
                ws.transport.abort()
            raise
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress WebSocket close error", exc_info=True)
            if ws is not None:
                ws.transport.abort()
        finally:
            self._ws = None

    def recv_queue_size(self) -> int:
        return self._inbox.qsize()
