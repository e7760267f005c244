from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from signboard.core.config import get_settings
from signboard.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half-open"

DEFAULT_RETRY_DELAYS_MS: tuple[int, ...] = (100, 200, 400)
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES


def is_retryable_error(exc: BaseException) -> bool:
    # Status 0 marks a network-level failure.
    status = getattr(exc, "http_status", None)
    if not isinstance(status, int):
        return False
    return status == 0 or is_retryable_status(status)


@dataclass(frozen=True)
class RetryPolicy:
    # One retry per delay entry; an empty tuple disables retries.
    delays_ms: tuple[int, ...] = DEFAULT_RETRY_DELAYS_MS


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(delays_ms=tuple(get_settings().ext_retry_delays_ms))


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[BaseException], bool] | None = None,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> Any:
    # Retry transient failures on a fixed backoff schedule, then surface the last error.
    policy = policy or default_retry_policy()
    retryable = retryable or is_retryable_error
    sleep = sleep or asyncio.sleep
    try:
        return await func()
    except Exception as exc:  # noqa: BLE001 - classification decides whether to re-raise
        if not retryable(exc) or not policy.delays_ms:
            raise
        last_error = exc
    for delay_ms in policy.delays_ms:
        increment_counter("external_retries_total")
        logger.debug("retry_scheduled delay_ms=%s", delay_ms)
        await sleep(delay_ms / 1000.0)
        try:
            return await func()
        except Exception as exc:  # noqa: BLE001 - classification decides whether to re-raise
            if not retryable(exc):
                raise
            last_error = exc
    raise last_error


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_seconds: float = 30.0


def default_breaker_config() -> CircuitBreakerConfig:
    settings = get_settings()
    return CircuitBreakerConfig(
        failure_threshold=settings.cb_failure_threshold,
        recovery_seconds=float(settings.cb_recovery_seconds),
    )


@dataclass
class CircuitBreakerState:
    state: str = CLOSED
    failures: int = 0
    last_failure_at: float = 0.0


@dataclass
class CircuitBreaker:
    """Consecutive-failure guard for a remote dependency.

    State lives in process memory only. A fresh worker process starts
    closed, so the breaker is a best-effort fail-fast, not a correctness
    mechanism. ``open`` turns into ``half-open`` lazily when the state is
    next read after the recovery window.
    """

    name: str
    config: CircuitBreakerConfig = field(default_factory=default_breaker_config)
    time_source: Callable[[], float] = time.monotonic
    _state: CircuitBreakerState = field(default_factory=CircuitBreakerState, init=False, repr=False)

    def _transition(self, target: str) -> None:
        if self._state.state == target:
            return
        logger.warning(
            "circuit_breaker_transition name=%s from=%s to=%s",
            self.name,
            self._state.state,
            target,
        )
        increment_counter(f"circuit_breaker_transition_total.{self.name}.{target}")
        self._state.state = target

    def get_state(self) -> str:
        if self._state.state == OPEN:
            elapsed = self.time_source() - self._state.last_failure_at
            if elapsed >= self.config.recovery_seconds:
                self._transition(HALF_OPEN)
        return self._state.state

    @property
    def failures(self) -> int:
        return self._state.failures

    def can_attempt(self) -> bool:
        return self.get_state() in (CLOSED, HALF_OPEN)

    def record_success(self) -> None:
        self._state.failures = 0
        self._transition(CLOSED)

    def record_failure(self) -> None:
        self._state.failures += 1
        self._state.last_failure_at = self.time_source()
        if self._state.failures >= self.config.failure_threshold:
            # A failed half-open attempt re-opens with a fresh recovery window.
            self._transition(OPEN)

    def reset(self) -> None:
        self._state = CircuitBreakerState()
