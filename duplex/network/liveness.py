"""Liveness monitoring for an active connection.

Detects connections that are open but silently frozen. Two independent
checks run while a connection is active:

- a probe loop sends a ping every ``probe_interval`` and, on each tick,
  declares the connection dead if nothing was heard for longer than
  ``ack_timeout``;
- every inbound read is bounded by ``read_timeout`` so a socket that neither
  errors nor delivers bytes is caught without waiting for the full
  acknowledgment window.

Any inbound frame (data, ping or pong) counts as an acknowledgment.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from duplex.config import StreamSettings
from duplex.network.errors import LivenessTimeout
from duplex.network.transport.base import BaseTransport, Frame, FrameKind

LOGGER = logging.getLogger(__name__)

Clock = Callable[[], float]


@dataclass
class LivenessRecord:
    """Probe/acknowledgment timing for the current connection."""

    probe_interval: float
    ack_timeout: float
    last_ack_at: float
    last_probe_at: Optional[float] = None
    probes_sent: int = 0

    def mark_ack(self, now: float) -> None:
        # Keep last_ack_at monotonic even if the clock is sampled out of order.
        if now > self.last_ack_at:
            self.last_ack_at = now

    def mark_probe(self, now: float) -> None:
        self.last_probe_at = now
        self.probes_sent += 1

    def silence(self, now: float) -> float:
        return max(0.0, now - self.last_ack_at)

    def is_expired(self, now: float) -> bool:
        return self.silence(now) > self.ack_timeout


class LivenessMonitor:
    """Owns the LivenessRecord of one connection; the only writer to it."""

    def __init__(
        self,
        transport: BaseTransport,
        *,
        probe_interval: float,
        ack_timeout: float | None = None,
        read_timeout: float | None = None,
        clock: Clock | None = None,
    ) -> None:
        if probe_interval <= 0:
            raise ValueError("probe_interval must be positive")
        self._transport = transport
        self._clock = clock or asyncio.get_running_loop().time
        self.probe_interval = float(probe_interval)
        self.ack_timeout = float(ack_timeout if ack_timeout is not None else probe_interval * 2)
        self.read_timeout = float(read_timeout if read_timeout is not None else probe_interval * 1.5)
        self.record = LivenessRecord(
            probe_interval=self.probe_interval,
            ack_timeout=self.ack_timeout,
            last_ack_at=self._clock(),
        )

    @classmethod
    def from_settings(
        cls,
        transport: BaseTransport,
        settings: StreamSettings,
        *,
        clock: Clock | None = None,
    ) -> "LivenessMonitor":
        return cls(
            transport,
            probe_interval=float(settings.probe_interval_seconds),
            ack_timeout=settings.effective_ack_timeout,
            read_timeout=settings.effective_read_timeout,
            clock=clock,
        )

    def observe(self, frame: Frame) -> None:
        self.record.mark_ack(self._clock())
        if frame.kind is FrameKind.PONG:
            LOGGER.debug("Probe acknowledged")

    async def receive(self) -> Frame:
        """Read the next frame, bounded by the hard read timeout."""

        try:
            frame = await asyncio.wait_for(self._transport.receive(), timeout=self.read_timeout)
        except asyncio.TimeoutError as exc:
            raise LivenessTimeout(f"No inbound data for {self.read_timeout:.2f}s") from exc
        self.observe(frame)
        return frame

    def check(self) -> None:
        now = self._clock()
        if self.record.is_expired(now):
            raise LivenessTimeout(
                f"No acknowledgment for {self.record.silence(now):.2f}s (timeout {self.ack_timeout:.2f}s)"
            )

    async def probe(self) -> None:
        try:
            await self._transport.send_control(FrameKind.PING)
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise LivenessTimeout(f"Probe send failed: {exc}") from exc
        self.record.mark_probe(self._clock())

    async def run(self) -> None:
        """Probe forever; returns only by raising LivenessTimeout."""

        while True:
            await asyncio.sleep(self.probe_interval)
            self.check()
            await self.probe()
