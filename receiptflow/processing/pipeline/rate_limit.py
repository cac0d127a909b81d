"""
Token bucket guarding calls to the rate-limited extractor.

Clock and sleep are injected so tests can drive time without waiting.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class TokenBucket:
    """Allow ``capacity`` calls in a burst, then one every ``interval`` seconds."""

    def __init__(
        self,
        interval: float,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.interval = interval
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        if self.interval == 0:
            self._tokens = float(self.capacity)
        else:
            elapsed = max(0.0, now - self._updated)
            self._tokens = min(float(self.capacity), self._tokens + elapsed / self.interval)
        self._updated = now

    def try_acquire(self) -> bool:
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def acquire(self) -> float:
        """Block until a token is available; returns the seconds spent waiting."""
        waited = 0.0
        while not self.try_acquire():
            delay = (1 - self._tokens) * self.interval
            logger.debug("Rate limited, waiting %.3fs", delay)
            self._sleep(delay)
            waited += delay
        return waited
