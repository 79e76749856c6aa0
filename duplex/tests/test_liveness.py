import asyncio

import pytest

from duplex.config import StreamSettings
from duplex.network.errors import LivenessTimeout, TransportError
from duplex.network.liveness import LivenessMonitor, LivenessRecord
from duplex.network.transport.base import Frame, FrameKind
from duplex.network.transport.dummy import DummyTransport


class _Clock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _SilentTransport(DummyTransport):
    """Accepts probes but never answers them."""

    def __init__(self) -> None:
        super().__init__(None)
        self.controls = []

    async def send_control(self, kind: FrameKind) -> None:
        self.controls.append(kind)


class _BrokenProbeTransport(DummyTransport):
    async def send_control(self, kind: FrameKind) -> None:
        raise TransportError("socket gone")


def test_record_expires_only_after_ack_timeout():
    record = LivenessRecord(probe_interval=10, ack_timeout=20, last_ack_at=0.0)

    assert not record.is_expired(20.0)
    assert record.is_expired(20.5)

    record.mark_ack(15.0)
    assert not record.is_expired(30.0)
    assert record.silence(30.0) == 15.0


def test_record_ack_time_never_moves_backwards():
    record = LivenessRecord(probe_interval=10, ack_timeout=20, last_ack_at=5.0)

    record.mark_ack(3.0)

    assert record.last_ack_at == 5.0


def test_defaults_derive_from_probe_interval():
    monitor = LivenessMonitor(DummyTransport(), probe_interval=10, clock=_Clock())

    assert monitor.ack_timeout == 20.0
    assert monitor.read_timeout == 15.0


def test_from_settings_uses_effective_timeouts():
    settings = StreamSettings(probe_interval_seconds=4, read_timeout_seconds=1)

    monitor = LivenessMonitor.from_settings(DummyTransport(), settings, clock=_Clock())

    assert monitor.probe_interval == 4.0
    assert monitor.ack_timeout == 8.0
    assert monitor.read_timeout == 1.0


def test_check_declares_death_after_silence():
    clock = _Clock(100.0)
    monitor = LivenessMonitor(DummyTransport(), probe_interval=10, clock=clock)

    clock.now = 120.0
    monitor.check()

    clock.now = 121.0
    with pytest.raises(LivenessTimeout):
        monitor.check()


def test_any_inbound_frame_counts_as_acknowledgment():
    clock = _Clock(0.0)
    monitor = LivenessMonitor(DummyTransport(), probe_interval=10, clock=clock)

    clock.now = 18.0
    monitor.observe(Frame.data({"n": 1}))
    clock.now = 36.0
    monitor.check()

    monitor.observe(Frame.control(FrameKind.PONG))
    clock.now = 50.0
    monitor.check()
    assert monitor.record.last_ack_at == 36.0


@pytest.mark.asyncio
async def test_probe_records_send():
    clock = _Clock(5.0)
    transport = _SilentTransport()
    monitor = LivenessMonitor(transport, probe_interval=10, clock=clock)

    await monitor.probe()

    assert transport.controls == [FrameKind.PING]
    assert monitor.record.probes_sent == 1
    assert monitor.record.last_probe_at == 5.0


@pytest.mark.asyncio
async def test_probe_send_failure_is_liveness_death():
    monitor = LivenessMonitor(_BrokenProbeTransport(), probe_interval=10, clock=_Clock())

    with pytest.raises(LivenessTimeout):
        await monitor.probe()


@pytest.mark.asyncio
async def test_frozen_read_hits_hard_timeout():
    transport = DummyTransport()
    await transport.connect("ws://peer", None)
    monitor = LivenessMonitor(transport, probe_interval=10, read_timeout=0.05)

    with pytest.raises(LivenessTimeout):
        await monitor.receive()


@pytest.mark.asyncio
async def test_receive_updates_acknowledgment():
    clock = _Clock(0.0)
    transport = DummyTransport()
    await transport.connect("ws://peer", None)
    monitor = LivenessMonitor(transport, probe_interval=10, clock=clock)
    transport.feed(Frame.data("hello"))

    clock.now = 7.0
    frame = await monitor.receive()

    assert frame.payload == "hello"
    assert monitor.record.last_ack_at == 7.0


@pytest.mark.asyncio
async def test_run_declares_unanswered_probes_dead_within_a_tick():
    transport = _SilentTransport()
    await transport.connect("ws://peer", None)
    monitor = LivenessMonitor(transport, probe_interval=0.02, ack_timeout=0.05)

    loop = asyncio.get_running_loop()
    started = loop.time()
    with pytest.raises(LivenessTimeout):
        await asyncio.wait_for(monitor.run(), timeout=2.0)

    elapsed = loop.time() - started
    assert elapsed < 0.05 + 0.02 + 0.5
    assert transport.controls and all(kind is FrameKind.PING for kind in transport.controls)


@pytest.mark.asyncio
async def test_run_keeps_probing_while_acknowledged():
    transport = DummyTransport()
    await transport.connect("ws://peer", None)
    monitor = LivenessMonitor(transport, probe_interval=0.02, ack_timeout=0.5, read_timeout=1.0)

    async def _drain() -> None:
        while True:
            await monitor.receive()

    initial_ack = monitor.record.last_ack_at
    drain = asyncio.create_task(_drain())
    run = asyncio.create_task(monitor.run())
    try:
        await asyncio.sleep(0.15)
        assert not run.done()
        assert monitor.record.probes_sent >= 3
        assert monitor.record.last_ack_at > initial_ack
    finally:
        for task in (run, drain):
            task.cancel()
        await asyncio.gather(run, drain, return_exceptions=True)
