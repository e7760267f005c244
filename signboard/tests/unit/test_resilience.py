from __future__ import annotations

import pytest

from signboard.core.errors import CmsClientError
from signboard.services.resilience import (
    CLOSED,
    HALF_OPEN,
    OPEN,
    CircuitBreaker,
    CircuitBreakerConfig,
    RetryPolicy,
    is_retryable_error,
    retry_async,
)


class _Clock:
    def __init__(self) -> None:
        self.t = 0.0

    def __call__(self) -> float:
        return self.t


def _breaker(clock: _Clock, threshold: int = 3) -> CircuitBreaker:
    return CircuitBreaker(
        "test.cms",
        config=CircuitBreakerConfig(failure_threshold=threshold, recovery_seconds=30),
        time_source=clock,
    )


@pytest.mark.asyncio
async def test_retry_async_retries_transient_then_succeeds() -> None:
    calls = {"count": 0}
    sleeps: list[float] = []

    async def flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise CmsClientError("upstream", 503)
        return "ok"

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    result = await retry_async(flaky, policy=RetryPolicy(delays_ms=(100, 200, 400)), sleep=fake_sleep)
    assert result == "ok"
    assert calls["count"] == 3
    assert sleeps == [0.1, 0.2]


@pytest.mark.asyncio
async def test_retry_async_surfaces_last_error_after_schedule() -> None:
    calls = {"count": 0}

    async def always_down() -> None:
        calls["count"] += 1
        raise CmsClientError("down", 0)

    async def fake_sleep(_seconds: float) -> None:
        return None

    with pytest.raises(CmsClientError):
        await retry_async(always_down, policy=RetryPolicy(delays_ms=(1, 1, 1)), sleep=fake_sleep)
    assert calls["count"] == 4


@pytest.mark.asyncio
async def test_retry_async_does_not_retry_client_errors() -> None:
    calls = {"count": 0}

    async def not_found() -> None:
        calls["count"] += 1
        raise CmsClientError("missing", 404)

    with pytest.raises(CmsClientError):
        await retry_async(not_found, policy=RetryPolicy(delays_ms=(1, 1)))
    assert calls["count"] == 1


def test_retryable_classification() -> None:
    assert is_retryable_error(CmsClientError("net", 0))
    assert is_retryable_error(CmsClientError("rate", 429))
    assert is_retryable_error(CmsClientError("gw", 502))
    assert not is_retryable_error(CmsClientError("bad", 400))
    assert not is_retryable_error(ValueError("plain"))


def test_circuit_breaker_transitions() -> None:
    clock = _Clock()
    breaker = _breaker(clock)
    assert breaker.get_state() == CLOSED

    for _ in range(3):
        breaker.record_failure()
    assert breaker.get_state() == OPEN
    assert not breaker.can_attempt()

    clock.t = 29.0
    assert breaker.get_state() == OPEN
    clock.t = 30.0
    assert breaker.get_state() == HALF_OPEN
    assert breaker.can_attempt()

    breaker.record_success()
    assert breaker.get_state() == CLOSED
    assert breaker.failures == 0


def test_failed_half_open_attempt_reopens() -> None:
    clock = _Clock()
    breaker = _breaker(clock, threshold=2)
    breaker.record_failure()
    breaker.record_failure()
    clock.t = 31.0
    assert breaker.get_state() == HALF_OPEN

    breaker.record_failure()
    assert breaker.get_state() == OPEN
    clock.t = 40.0
    assert not breaker.can_attempt()


def test_success_resets_failure_count_below_threshold() -> None:
    breaker = _breaker(_Clock())
    breaker.record_failure()
    breaker.record_failure()
    breaker.record_success()
    breaker.record_failure()
    assert breaker.get_state() == CLOSED
