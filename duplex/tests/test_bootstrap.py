import asyncio

import pytest

from duplex import bootstrap
from duplex.config import StreamSettings
from duplex.network.errors import (
    AuthenticationRejected,
    ConnectFailure,
    ConnectionClosed,
    LivenessTimeout,
    classify_error,
)
from duplex.network.state import ConnectionState
from duplex.network.transport.dummy import DummyTransport
from duplex.network.transport.websocket import WebSocketTransport


def test_resolve_transport_follows_settings():
    assert bootstrap.resolve_transport(StreamSettings(transport="websocket")) is WebSocketTransport
    assert bootstrap.resolve_transport(StreamSettings(transport="dummy")) is DummyTransport


@pytest.mark.asyncio
async def test_dummy_stream_echoes_sent_payloads():
    supervisor = bootstrap.build_supervisor(StreamSettings(transport="dummy"))
    received = []
    supervisor.on_message(received.append)

    await supervisor.start()
    try:
        await supervisor.wait_for_state(ConnectionState.ACTIVE, timeout=1)
        await supervisor.send({"ping": "loopback"})
        for _ in range(100):
            if received:
                break
            await asyncio.sleep(0.01)
        assert received == [{"ping": "loopback"}]
    finally:
        await supervisor.stop()


@pytest.mark.parametrize(
    "error,expected",
    [
        (LivenessTimeout("silent"), "liveness"),
        (AuthenticationRejected("no", status_code=401), "auth"),
        (ConnectFailure("Handshake failed with HTTP 404", status_code=404), "protocol"),
        (ConnectFailure("connection refused"), "network"),
        (ConnectionClosed(code=1006), "network"),
        (ConnectFailure("Handshake with ws://x timed out"), "network"),
        (OSError("broken pipe"), "network"),
        (RuntimeError("???"), "unknown"),
    ],
)
def test_classify_error(error, expected):
    assert classify_error(error) == expected
