"""Tests for the retry executor."""

from __future__ import annotations

import asyncio

import pytest

from harmony_engine.errors import (
    ConfigError,
    HttpError,
    ProviderError,
    RateLimitExceeded,
    UserAuthNotSupportedError,
    ValidationError,
)
from harmony_engine.retry import RetryPolicy, with_retry


class Flaky:
    """Coroutine factory failing with the given errors before succeeding."""

    def __init__(self, *errors: Exception, result: str = "ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def run_with_retry(fn: Flaky, policy: RetryPolicy) -> tuple[str, list[float]]:
    sleeps: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    result = asyncio.run(with_retry(fn, policy, label="test.op", sleep=fake_sleep))
    return result, sleeps


def test_success_first_try():
    fn = Flaky()
    result, sleeps = run_with_retry(fn, RetryPolicy())
    assert result == "ok"
    assert fn.calls == 1
    assert sleeps == []


def test_retries_transient_errors_with_exponential_backoff():
    fn = Flaky(
        HttpError("busy", 503, "p"),
        HttpError("busy", 502, "p"),
        ProviderError("connection reset", "p"),
    )
    policy = RetryPolicy(retries=3, min_timeout_ms=100, max_timeout_ms=10000, factor=2.0)

    result, sleeps = run_with_retry(fn, policy)

    assert result == "ok"
    assert fn.calls == 4
    assert sleeps == [pytest.approx(0.1), pytest.approx(0.2), pytest.approx(0.4)]


def test_backoff_capped_at_max_timeout():
    policy = RetryPolicy(min_timeout_ms=1000, max_timeout_ms=3000, factor=2.0)
    assert [policy.delay_for(i) for i in range(4)] == [1.0, 2.0, 3.0, 3.0]


def test_retry_after_extends_delay_up_to_cap():
    policy = RetryPolicy(min_timeout_ms=100, max_timeout_ms=5000)
    assert policy.delay_for(0, retry_after=2.0) == 2.0
    assert policy.delay_for(0, retry_after=60.0) == 5.0
    assert policy.delay_for(0, retry_after=0.01) == pytest.approx(0.1)


def test_jitter_stays_within_bounds():
    policy = RetryPolicy(min_timeout_ms=1000, max_timeout_ms=10000, jitter=True)
    for _ in range(50):
        assert 0.5 <= policy.delay_for(0) <= 1.0


def test_gives_up_after_retries_exhausted():
    fn = Flaky(*(HttpError("busy", 500, "p") for _ in range(5)))
    with pytest.raises(HttpError):
        run_with_retry(fn, RetryPolicy(retries=2, min_timeout_ms=0))
    assert fn.calls == 3


@pytest.mark.parametrize(
    "error",
    [
        HttpError("not authorized", 401, "p"),
        HttpError("bad request", 400, "p"),
        RateLimitExceeded("p", retry_after=1.0),
        ValidationError("bad gtin", field="gtin"),
        UserAuthNotSupportedError("p"),
        ConfigError("client_id and client_secret required", "p"),
    ],
)
def test_permanent_errors_abort_immediately(error: Exception):
    fn = Flaky(error)
    with pytest.raises(type(error)):
        run_with_retry(fn, RetryPolicy(retries=5))
    assert fn.calls == 1


def test_retry_statuses_configurable():
    policy = RetryPolicy(retry_statuses=(404,))
    assert policy.is_retryable(HttpError("missing", 404, "p"))
    assert not policy.is_retryable(HttpError("busy", 503, "p"))


def test_zero_retries_means_single_attempt():
    fn = Flaky(HttpError("busy", 503, "p"))
    with pytest.raises(HttpError):
        run_with_retry(fn, RetryPolicy(retries=0))
    assert fn.calls == 1
