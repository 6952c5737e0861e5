"""Sliding-window admission control shared by every remote call."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable

from mailtidy.config import RateLimitConfig
from mailtidy.log import get_logger

logger = get_logger(__name__)

# Added to window-overflow waits so the oldest call has surely aged out.
WINDOW_BUFFER_SECONDS = 0.1

# Remainders below this are float noise from clock arithmetic.
_EPSILON = 1e-9


class RateLimiter:
    """Admit at most ``max_requests`` calls per trailing window, spaced at least
    ``min_delay_ms`` apart.

    One instance is built at startup and handed to every Gmail caller, so the
    quota is enforced process-wide. The check and the record happen with no
    await in between, which keeps admission exact under asyncio interleaving.
    Callers re-check after every sleep.
    """

    def __init__(
        self,
        max_requests: int = 7500,
        window_seconds: float = 60.0,
        min_delay_ms: float = 8.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window = window_seconds
        self.min_delay = min_delay_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()

    @classmethod
    def from_config(cls, config: RateLimitConfig) -> RateLimiter:
        return cls(
            max_requests=config.max_requests,
            window_seconds=config.window_seconds,
            min_delay_ms=config.min_delay_ms,
        )

    def _prune(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window:
            self._timestamps.popleft()

    def _required_wait(self, now: float) -> float:
        """Seconds to wait before a call at ``now`` is admissible, 0 if it is."""
        self._prune(now)
        if len(self._timestamps) >= self.max_requests:
            return self.window - (now - self._timestamps[0]) + WINDOW_BUFFER_SECONDS
        if self._timestamps:
            since_last = now - self._timestamps[-1]
            if since_last < self.min_delay:
                return self.min_delay - since_last
        return 0.0

    async def wait_if_needed(self) -> None:
        """Suspend until a call is admissible, then record it."""
        while True:
            now = self._clock()
            wait = self._required_wait(now)
            if wait <= _EPSILON:
                self._timestamps.append(now)
                return
            if wait > 1:
                logger.info("Rate limit reached, waiting %.1fs", wait)
            await self._sleep(wait)

    def get_status(self) -> dict:
        self._prune(self._clock())
        return {
            "requests_in_window": len(self._timestamps),
            "max_requests": self.max_requests,
        }
