"""Retry executor with exponential backoff.

Wraps one provider call. Errors carrying an HTTP status outside the
policy's allow-list abort at once; everything else is retried until the
budget is spent.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from harmony_engine.errors import (
    ConfigError,
    HttpError,
    RateLimitExceeded,
    UserAuthNotSupportedError,
    ValidationError,
)

T = TypeVar("T")

log = logging.getLogger(__name__)

DEFAULT_RETRY_STATUSES = (408, 429, 500, 502, 503, 504)

# Errors that no amount of waiting will fix
PERMANENT_ERRORS: tuple[type[BaseException], ...] = (
    ConfigError,
    RateLimitExceeded,
    ValidationError,
    UserAuthNotSupportedError,
)


class RetryPolicy(BaseModel):
    """Backoff parameters for one provider."""

    retries: int = Field(default=3, ge=0)
    min_timeout_ms: int = Field(default=1000, ge=0)
    max_timeout_ms: int = Field(default=10000, ge=0)
    factor: float = Field(default=2.0, ge=1.0)
    jitter: bool = Field(default=False)
    retry_statuses: tuple[int, ...] = Field(default=DEFAULT_RETRY_STATUSES)

    def delay_for(self, attempt: int, retry_after: float | None = None) -> float:
        """
        Backoff delay in seconds before retry number ``attempt`` (0-based).

        ``min(min_timeout * factor**attempt, max_timeout)``, optionally
        jittered, never shorter than a server-provided ``Retry-After``
        (itself capped at ``max_timeout``).
        """
        cap = self.max_timeout_ms / 1000.0
        delay = min(self.min_timeout_ms / 1000.0 * self.factor**attempt, cap)
        if self.jitter:
            delay *= random.uniform(0.5, 1.0)
        if retry_after is not None:
            delay = max(delay, min(retry_after, cap))
        return delay

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, PERMANENT_ERRORS):
            return False
        if isinstance(error, HttpError):
            return error.status in self.retry_statuses
        return True


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str = "call",
    logger: logging.Logger | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``fn`` with retries according to ``policy``.

    Args:
        fn: Zero-argument coroutine factory, invoked once per attempt
        policy: Retry budget and backoff parameters
        label: Name used in log lines (usually ``provider.operation``)
        logger: Logger for attempts/aborts (defaults to this module's)
        sleep: Awaitable sleep, injectable for tests

    Returns:
        Result of the first successful attempt

    Raises:
        The permanent error immediately, or the last error once retries are exhausted
    """
    logger = logger or log
    attempts = policy.retries + 1

    for attempt in range(attempts):
        logger.debug(f"[{label}] attempt {attempt + 1}/{attempts}")
        try:
            return await fn()
        except Exception as e:
            if not policy.is_retryable(e):
                logger.warning(f"[{label}] aborting on non-retryable error: {e}")
                raise
            if attempt + 1 >= attempts:
                logger.warning(f"[{label}] giving up after {attempts} attempts: {e}")
                raise

            retry_after = e.retry_after if isinstance(e, HttpError) else None
            delay = policy.delay_for(attempt, retry_after)
            logger.warning(
                f"[{label}] {type(e).__name__}: {e}, retrying {attempt + 1}/{policy.retries} "
                f"in {delay:.2f}s"
            )
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
