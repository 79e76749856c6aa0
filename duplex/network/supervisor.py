"""Supervisor that keeps one logical duplex stream alive.

This layer is responsible for:
- Connect/authenticate attempts (credential re-queried on every attempt)
- Running the liveness monitor while a connection is active
- Tearing the connection down on any loss and reconnecting with backoff
- Delivering inbound payloads to registered handlers in arrival order

It never gives up on its own; only stop() ends the lifecycle.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import AnyUrl, TypeAdapter, ValidationError

from duplex.config import StreamSettings
from duplex.network.backoff import BackoffPolicy
from duplex.network.connection import Connection
from duplex.network.errors import (
    ConnectFailure,
    InvalidEndpoint,
    NotConnected,
    StreamError,
    TransportError,
    classify_error,
)
from duplex.network.liveness import Clock, LivenessMonitor
from duplex.network.state import ConnectionState, StateTracker
from duplex.network.transport.base import BaseTransport, Credential, FrameKind

LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Union[Awaitable[None], None]]
CredentialSupplier = Callable[[], Union[Credential, Awaitable[Credential]]]
CredentialSource = Union[Credential, CredentialSupplier]
TransportFactory = Callable[[StreamSettings], BaseTransport]
Sleep = Callable[[float], Awaitable[None]]

_URL_ADAPTER: TypeAdapter[AnyUrl] = TypeAdapter(AnyUrl)


@dataclass(frozen=True)
class StatusEvent:
    """Lifecycle change reported to status listeners."""

    state: ConnectionState
    attempt: int
    error: Optional[BaseException] = None
    error_type: Optional[str] = None
    retry_in: Optional[float] = None
    terminal: bool = False


StatusListener = Callable[[StatusEvent], Union[Awaitable[None], None]]


def validate_endpoint(endpoint: Any, allowed_schemes: list[str]) -> str:
    """Return the endpoint as a string or raise InvalidEndpoint."""

    raw = str(endpoint).strip() if endpoint is not None else ""
    if not raw:
        raise InvalidEndpoint("Endpoint is empty")
    try:
        url = _URL_ADAPTER.validate_python(raw)
    except ValidationError as exc:
        raise InvalidEndpoint(f"Malformed endpoint {raw!r}") from exc
    if url.scheme.lower() not in allowed_schemes:
        raise InvalidEndpoint(f"Unsupported endpoint scheme {url.scheme!r} (allowed: {', '.join(allowed_schemes)})")
    if not url.host:
        raise InvalidEndpoint(f"Endpoint {raw!r} has no host")
    return raw


class ConnectionSupervisor:
    """Owns the lifecycle of one logical stream: at most one active connection at a time."""

    def __init__(
        self,
        settings: StreamSettings,
        transport_factory: TransportFactory,
        *,
        backoff: BackoffPolicy | None = None,
        clock: Clock | None = None,
        sleep: Sleep | None = None,
    ) -> None:
        self._settings = settings
        self._transport_factory = transport_factory
        self._backoff = backoff or BackoffPolicy.from_settings(settings)
        self._clock = clock
        self._sleep: Sleep = sleep or asyncio.sleep
        self._tracker = StateTracker()
        self._state_event = asyncio.Event()
        self._message_handlers: list[MessageHandler] = []
        self._status_listeners: list[StatusListener] = []
        self._endpoint: Optional[str] = None
        self._credential_source: CredentialSource = None
        self._run_task: Optional[asyncio.Task[None]] = None
        self._connection: Optional[Connection] = None
        self._monitor: Optional[LivenessMonitor] = None
        self._loss: Optional[asyncio.Future[BaseException]] = None
        self._open_transport: Optional[BaseTransport] = None
        self._io_tasks: set[asyncio.Task[Any]] = set()
        self._attempt = 0
        self._last_error_type: Optional[str] = None
        self._counters = {
            "connects": 0,
            "disconnects": 0,
            "frames_sent": 0,
            "frames_received": 0,
        }

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._tracker.state

    @property
    def stopped(self) -> bool:
        return self._tracker.terminal

    @property
    def attempt(self) -> int:
        return self._attempt

    async def start(self, endpoint: Any = None, credential: CredentialSource = None) -> None:
        """Begin the supervised lifecycle and return without waiting for a connection."""

        if self._tracker.terminal:
            raise RuntimeError("Stream supervisor has been stopped")
        if self._run_task is not None:
            raise RuntimeError("Stream supervisor already started")
        target = endpoint if endpoint is not None else self._settings.endpoint
        self._endpoint = validate_endpoint(target, self._settings.allowed_schemes)
        self._credential_source = credential if credential is not None else self._settings.auth_token
        LOGGER.info("Starting stream supervisor for %s", self._endpoint)
        self._run_task = asyncio.create_task(self._run(), name="stream-supervisor")

    async def stop(self) -> None:
        """Enter the terminal state, cancel pending waits and release the transport."""

        task = self._run_task
        self._run_task = None
        was_terminal = self._tracker.terminal
        self._tracker.terminate()
        self._notify_state()
        current = asyncio.current_task()
        # Called from a handler or listener: the run task tears itself down.
        internal = task is not None and (current is task or current in self._io_tasks)
        if task and not task.done():
            task.cancel()
            if not internal:
                await asyncio.wait({task})
        if task and task.done() and not task.cancelled() and task.exception() is not None:
            LOGGER.debug("Stream supervisor task ended with error", exc_info=task.exception())
        self._connection = None
        self._monitor = None
        transport = self._open_transport
        if transport is not None and not internal:
            await self._discard(transport)
        if not was_terminal:
            LOGGER.info("Stream supervisor stopped")
            await self._emit_status(StatusEvent(ConnectionState.DISCONNECTED, self._attempt, terminal=True))

    async def send(self, payload: Any) -> None:
        """Transmit on the active connection; raise NotConnected when there is none."""

        connection = self._connection
        if connection is None or self._tracker.state is not ConnectionState.ACTIVE:
            raise NotConnected("No active stream connection")
        try:
            await connection.transport.send(payload)
        except asyncio.CancelledError:
            raise
        except TransportError as exc:
            self._signal_loss(connection, exc)
            raise
        except Exception as exc:  # noqa: BLE001
            error = TransportError(f"Send failed: {exc}")
            self._signal_loss(connection, error)
            raise error from exc
        self._counters["frames_sent"] += 1

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler invoked for every inbound payload while active."""

        LOGGER.debug("Registering message handler %s", handler)
        self._message_handlers.append(handler)

    def remove_message_handler(self, handler: MessageHandler) -> None:
        if handler in self._message_handlers:
            self._message_handlers.remove(handler)

    def on_status(self, listener: StatusListener) -> None:
        """Register a listener for lifecycle changes."""

        self._status_listeners.append(listener)

    async def wait_for_state(self, state: ConnectionState, timeout: float | None = None) -> None:
        async def _wait() -> None:
            while self._tracker.state is not state:
                await self._state_event.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)

    def stats(self) -> dict[str, Any]:
        snapshot: dict[str, Any] = dict(self._counters)
        snapshot["state"] = self._tracker.state.value
        snapshot["stopped"] = self._tracker.terminal
        snapshot["attempt"] = self._attempt
        snapshot["backoff_attempt"] = self._backoff.attempt
        snapshot["last_error_type"] = self._last_error_type
        monitor = self._monitor
        if monitor is not None:
            snapshot["probes_sent"] = monitor.record.probes_sent
        connection = self._connection
        if connection is not None:
            snapshot["recv_queue"] = connection.transport.recv_queue_size()
        return snapshot

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        try:
            while not self._tracker.terminal:
                await self._run_once()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.exception("Stream supervisor loop crashed")
            raise

    async def _run_once(self) -> None:
        self._attempt += 1
        attempt = self._attempt
        self._set_state(ConnectionState.CONNECTING)
        await self._emit_status(StatusEvent(ConnectionState.CONNECTING, attempt))
        try:
            connection = await self._open(attempt)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            await self._lost(attempt, exc)
            return
        reason = await self._serve(connection)
        await self._lost(attempt, reason)

    async def _open(self, attempt: int) -> Connection:
        assert self._endpoint is not None
        try:
            credential = await self._resolve_credential()
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise ConnectFailure(f"Credential supplier failed: {exc}") from exc
        transport = self._transport_factory(self._settings)
        self._open_transport = transport
        connection = Connection(
            endpoint=self._endpoint,
            credential=credential,
            transport=transport,
            attempt=attempt,
        )
        try:
            await asyncio.wait_for(
                transport.connect(self._endpoint, credential),
                timeout=float(self._settings.connect_timeout_seconds),
            )
        except asyncio.TimeoutError as exc:
            await self._discard(transport)
            raise ConnectFailure(f"Handshake with {self._endpoint} timed out") from exc
        except BaseException:
            await self._discard(transport)
            raise
        return connection

    async def _resolve_credential(self) -> Credential:
        source = self._credential_source
        if callable(source):
            value = source()
            if inspect.isawaitable(value):
                value = await value
            return value
        return source

    async def _serve(self, connection: Connection) -> BaseException:
        """Run read + probe loops until the connection is lost; return the cause."""

        monitor = LivenessMonitor.from_settings(connection.transport, self._settings, clock=self._clock)
        loss: asyncio.Future[BaseException] = asyncio.get_running_loop().create_future()
        self._monitor = monitor
        self._loss = loss
        self._connection = connection
        connection.state = ConnectionState.ACTIVE
        self._backoff.reset()
        self._counters["connects"] += 1
        self._last_error_type = None
        self._set_state(ConnectionState.ACTIVE)
        LOGGER.info("Stream connected to %s (attempt %s)", connection.endpoint, connection.attempt)

        read_task = asyncio.create_task(self._read_loop(connection, monitor), name="stream-read")
        probe_task = asyncio.create_task(monitor.run(), name="stream-probe")
        self._io_tasks = {read_task, probe_task}
        try:
            await self._emit_status(StatusEvent(ConnectionState.ACTIVE, connection.attempt))
            done, _ = await asyncio.wait({read_task, probe_task, loss}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            self._connection = None
            self._loss = None
            self._io_tasks = set()
            read_task.cancel()
            probe_task.cancel()
            await asyncio.gather(read_task, probe_task, return_exceptions=True)
            if not loss.done():
                loss.cancel()
            connection.state = ConnectionState.DISCONNECTED
            await self._discard(connection.transport)
            self._monitor = None

        if loss in done:
            return loss.result()
        for task in (read_task, probe_task):
            if task in done and not task.cancelled() and task.exception() is not None:
                return task.exception()  # type: ignore[return-value]
        return TransportError("Stream loop ended unexpectedly")

    async def _read_loop(self, connection: Connection, monitor: LivenessMonitor) -> None:
        transport = connection.transport
        while True:
            try:
                frame = await monitor.receive()
                if frame.kind is FrameKind.PING:
                    await transport.send_control(FrameKind.PONG)
            except (asyncio.CancelledError, StreamError):
                raise
            except Exception as exc:  # noqa: BLE001
                raise TransportError(f"Receive failed: {exc}") from exc
            self._counters["frames_received"] += 1
            if frame.kind is FrameKind.DATA:
                await self._dispatch(frame.payload)

    async def _dispatch(self, payload: Any) -> None:
        for handler in list(self._message_handlers):
            try:
                result = handler(payload)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.exception("Message handler failed: %s", handler)

    async def _lost(self, attempt: int, error: BaseException) -> None:
        if self._tracker.terminal:
            return
        error_type = classify_error(error)
        self._last_error_type = error_type
        self._counters["disconnects"] += 1
        self._set_state(ConnectionState.DISCONNECTED)
        delay = self._backoff.next_delay()
        sleep_for = self._backoff.jittered(delay)
        LOGGER.warning(
            "Stream connection lost (attempt %s, %s): %s; reconnecting in %.2fs",
            attempt,
            error_type,
            error,
            sleep_for,
        )
        await self._emit_status(
            StatusEvent(
                ConnectionState.DISCONNECTED,
                attempt,
                error=error,
                error_type=error_type,
                retry_in=sleep_for,
            )
        )
        await self._sleep(sleep_for)

    def _signal_loss(self, connection: Connection, error: BaseException) -> None:
        loss = self._loss
        if self._connection is connection and loss is not None and not loss.done():
            loss.set_result(error)

    async def _discard(self, transport: BaseTransport) -> None:
        try:
            await transport.close()
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            LOGGER.debug("Suppress transport close error", exc_info=True)
        # Stays tracked until close() has completed.
        if self._open_transport is transport:
            self._open_transport = None

    def _set_state(self, state: ConnectionState) -> None:
        self._tracker.transition(state)
        self._notify_state()

    def _notify_state(self) -> None:
        event = self._state_event
        self._state_event = asyncio.Event()
        event.set()

    async def _emit_status(self, event: StatusEvent) -> None:
        for listener in list(self._status_listeners):
            try:
                result = listener(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                LOGGER.debug("Suppress status listener error", exc_info=True)
