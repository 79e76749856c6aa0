"""Reconnect backoff policy.

Exponential growth with a ceiling:

    delay(attempt) = min(initial_delay * multiplier ** attempt, max_delay)

``attempt`` counts consecutive failures since the last successful connection
and is reset to zero by ``reset()``. The computed delay is therefore
non-decreasing across consecutive failures and never exceeds ``max_delay``.
An optional jitter factor spreads the delay that is actually slept.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from duplex.config import StreamSettings


@dataclass
class RetryState:
    """Backoff progression across reconnect attempts."""

    initial_delay: float
    max_delay: float
    multiplier: float
    attempt: int = 0
    current_delay: float = field(init=False)

    def __post_init__(self) -> None:
        self.current_delay = self.initial_delay


@dataclass
class BackoffPolicy:
    """Computes the delay before the next connect attempt."""

    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.0
    rng: Callable[[float, float], float] = field(default=random.uniform, repr=False)
    state: RetryState = field(init=False)

    def __post_init__(self) -> None:
        if self.initial_delay <= 0:
            raise ValueError("initial_delay must be positive")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must be >= initial_delay")
        if not 0 <= self.jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self.state = RetryState(
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
        )

    @classmethod
    def from_settings(cls, settings: StreamSettings) -> "BackoffPolicy":
        return cls(
            initial_delay=float(settings.reconnect_initial_delay_seconds),
            multiplier=float(settings.reconnect_multiplier),
            max_delay=float(settings.reconnect_max_delay_seconds),
            jitter=float(settings.reconnect_jitter),
        )

    @property
    def attempt(self) -> int:
        return self.state.attempt

    def delay_for(self, attempt: int) -> float:
        # Stop multiplying once the ceiling is reached to avoid float overflow.
        delay = self.initial_delay
        for _ in range(attempt):
            delay *= self.multiplier
            if delay >= self.max_delay:
                return self.max_delay
        return min(delay, self.max_delay)

    def next_delay(self) -> float:
        """Record a failure and return the un-jittered delay before the next attempt."""

        delay = self.delay_for(self.state.attempt)
        self.state.current_delay = delay
        self.state.attempt += 1
        return delay

    def jittered(self, delay: float) -> float:
        if not self.jitter:
            return delay
        factor = self.rng(1 - self.jitter, 1 + self.jitter)
        return min(self.max_delay, max(0.0, delay * factor))

    def reset(self) -> None:
        """Called on every successful connection."""

        self.state.attempt = 0
        self.state.current_delay = self.initial_delay
