"""Client bootstrap entrypoint for stream wiring."""

from __future__ import annotations

import asyncio
import logging
from typing import Type

from duplex.config import StreamSettings, get_settings
from duplex.network.supervisor import ConnectionSupervisor, StatusEvent
from duplex.network.transport.base import BaseTransport
from duplex.network.transport.dummy import DummyTransport
from duplex.network.transport.websocket import WebSocketTransport

LOGGER = logging.getLogger(__name__)
_supervisor: ConnectionSupervisor | None = None


def resolve_transport(settings: StreamSettings) -> Type[BaseTransport]:
    return WebSocketTransport if settings.transport == "websocket" else DummyTransport


def build_supervisor(settings: StreamSettings | None = None) -> ConnectionSupervisor:
    """Construct a supervisor for the configured transport (not started)."""

    settings = settings or get_settings()
    resolved_cls = resolve_transport(settings)
    LOGGER.debug("Initialising stream supervisor via %s", resolved_cls.__name__)
    supervisor = ConnectionSupervisor(settings=settings, transport_factory=lambda s: resolved_cls(s))

    def _log_status(event: StatusEvent) -> None:
        if event.error is not None:
            LOGGER.info(
                "Stream %s after attempt %s (%s); retry in %.2fs",
                event.state.value,
                event.attempt,
                event.error_type,
                event.retry_in or 0.0,
            )
        else:
            LOGGER.info("Stream %s (attempt %s)", event.state.value, event.attempt)

    def _log_message(payload: object) -> None:
        LOGGER.info("Stream message: %s", payload)

    supervisor.on_status(_log_status)
    supervisor.on_message(_log_message)
    return supervisor


async def setup() -> ConnectionSupervisor:
    """Construct and start the stream supervisor."""

    global _supervisor
    supervisor = build_supervisor()
    await supervisor.start()
    _supervisor = supervisor
    return supervisor


async def serve_forever() -> None:
    """Start the stream supervisor and keep the process alive."""

    await setup()
    try:
        await asyncio.Future()  # block until cancelled
    except asyncio.CancelledError:
        LOGGER.info("Stream client shutdown requested")
        raise
    finally:
        if _supervisor:
            await _supervisor.stop()
