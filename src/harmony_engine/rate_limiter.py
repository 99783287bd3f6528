"""Per-provider request throttling.

Each provider owns one ``RateLimiter`` allowing ``max_requests`` per
``window_ms``. Callers suspend until a token is available; requests are
never dropped. A configured ``max_wait_ms`` turns an over-long wait into
``RateLimitExceeded``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

from harmony_engine.errors import RateLimitExceeded

log = logging.getLogger(__name__)


class RateLimitStrategy(StrEnum):
    """Window accounting strategy."""

    FIXED = "fixed"  # full refill once a whole window has elapsed
    SLIDING = "sliding"  # at most N grants within any trailing window


class RateLimiter:
    """
    Async token budget of ``max_requests`` per ``window_ms``.

    Token state is guarded by an ``asyncio.Lock`` that stays held while
    waiting for a token, so concurrent lookups against the same provider are
    granted in arrival order.
    """

    def __init__(
        self,
        name: str,
        max_requests: int,
        window_ms: int,
        strategy: RateLimitStrategy | str = RateLimitStrategy.FIXED,
        max_wait_ms: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")

        self.name = name
        self.max_requests = max_requests
        self.window = window_ms / 1000.0
        self.strategy = RateLimitStrategy(strategy)
        self.max_wait = max_wait_ms / 1000.0 if max_wait_ms is not None else None
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        # Fixed window state
        self._tokens = max_requests
        self._window_start = clock()
        # Sliding window state: grant timestamps, oldest first
        self._grants: deque[float] = deque()

    async def acquire(self) -> None:
        """
        Wait for and consume one token.

        Raises:
            RateLimitExceeded: If the total wait would exceed ``max_wait_ms``
        """
        started = self._clock()
        async with self._lock:
            while True:
                wait = self._try_consume()
                if wait <= 0:
                    return

                waited = self._clock() - started
                if self.max_wait is not None and waited + wait > self.max_wait:
                    log.warning(
                        f"[{self.name}] rate limit wait of {wait:.3f}s exceeds "
                        f"max wait of {self.max_wait:.3f}s"
                    )
                    raise RateLimitExceeded(self.name, retry_after=wait)

                log.debug(f"[{self.name}] rate limited, waiting {wait:.3f}s")
                await self._sleep(wait)

    def _try_consume(self) -> float:
        """Consume a token if one is available, else return the seconds to wait."""
        now = self._clock()

        if self.strategy is RateLimitStrategy.SLIDING:
            while self._grants and now - self._grants[0] >= self.window:
                self._grants.popleft()
            if len(self._grants) < self.max_requests:
                self._grants.append(now)
                return 0.0
            return self._grants[0] + self.window - now

        self._refill(now)
        if self._tokens > 0:
            self._tokens -= 1
            return 0.0
        return self._window_start + self.window - now

    def _refill(self, now: float) -> None:
        elapsed = now - self._window_start
        if elapsed >= self.window:
            self._tokens = self.max_requests
            # Align to window boundaries so a late caller does not shift the window
            self._window_start += (elapsed // self.window) * self.window

    @property
    def available_tokens(self) -> int:
        """Tokens that could be granted right now without waiting."""
        now = self._clock()
        if self.strategy is RateLimitStrategy.SLIDING:
            active = sum(1 for t in self._grants if now - t < self.window)
            return self.max_requests - active
        if now - self._window_start >= self.window:
            return self.max_requests
        return self._tokens

    def status(self) -> dict[str, Any]:
        """Monitoring snapshot."""
        return {
            "name": self.name,
            "strategy": str(self.strategy),
            "available_tokens": self.available_tokens,
            "max_requests": self.max_requests,
            "window_ms": int(self.window * 1000),
        }
