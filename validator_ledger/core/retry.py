"""
Retry/backoff and rate limiting as small explicit state machines.

RetryState tracks (attempt, last_error_class) and answers one question after
each failure: how long to wait before the next attempt, or None when the
attempts run out. Delays grow by a fixed multiplier with no jitter, and a
rate-limit response switches to a much longer base delay. Sleep and clock are
injectable so tests never wait.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, TypeVar

from validator_ledger.core.exceptions import RateLimitedError, UpstreamError
from validator_ledger.ledger_logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class ErrorClass(str, Enum):
    NONE = "none"
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt limit and delay schedule for one upstream."""

    max_attempts: int
    base_delay_sec: float
    """Delay after the first transient failure."""
    rate_limit_delay_sec: float
    """Delay after the first rate-limited failure."""
    multiplier: float = 2.0


def jito_policy() -> RetryPolicy:
    """4 attempts; 2s, 4s, 8s after errors, 30s, 60s, 120s after 429s."""
    return RetryPolicy(max_attempts=4, base_delay_sec=2.0, rate_limit_delay_sec=30.0)


def rpc_policy() -> RetryPolicy:
    """3 attempts with a flat 2s pause (JSON-RPC history paging)."""
    return RetryPolicy(max_attempts=3, base_delay_sec=2.0, rate_limit_delay_sec=2.0, multiplier=1.0)


def transaction_policy() -> RetryPolicy:
    """3 attempts with a flat 1s pause (single transaction fetch)."""
    return RetryPolicy(max_attempts=3, base_delay_sec=1.0, rate_limit_delay_sec=1.0, multiplier=1.0)


@dataclass
class RetryState:
    policy: RetryPolicy
    attempt: int = 0
    last_error_class: ErrorClass = ErrorClass.NONE

    def begin_attempt(self) -> int:
        self.attempt += 1
        return self.attempt

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.policy.max_attempts

    def record_failure(self, error_class: ErrorClass) -> float | None:
        """
        Record a failed attempt. Returns the delay before the next attempt,
        or None when no attempts remain.
        """
        self.last_error_class = error_class
        if self.exhausted:
            return None
        base = (
            self.policy.rate_limit_delay_sec
            if error_class is ErrorClass.RATE_LIMITED
            else self.policy.base_delay_sec
        )
        return base * self.policy.multiplier ** (self.attempt - 1)

    def record_success(self) -> None:
        self.last_error_class = ErrorClass.NONE


def classify_error(exc: BaseException) -> ErrorClass | None:
    """Map an exception to a retryable error class; None means do not retry."""
    if isinstance(exc, RateLimitedError):
        return ErrorClass.RATE_LIMITED
    if isinstance(exc, UpstreamError):
        return ErrorClass.TRANSIENT
    return None


def call_with_retry(
    fn: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    classify: Callable[[BaseException], ErrorClass | None] = classify_error,
    operation: str = "upstream_call",
) -> T:
    """
    Call fn until it succeeds or the policy is exhausted.

    Non-retryable exceptions (classify returns None) propagate immediately;
    when attempts run out the last exception propagates.
    """
    state = RetryState(policy)
    while True:
        attempt = state.begin_attempt()
        try:
            result = fn()
        except Exception as e:
            error_class = classify(e)
            if error_class is None:
                raise
            delay = state.record_failure(error_class)
            if delay is None:
                logger.warning(
                    "retry_exhausted",
                    operation=operation,
                    attempts=attempt,
                    error_class=error_class.value,
                    error=str(e),
                )
                raise
            logger.info(
                "retry_scheduled",
                operation=operation,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                error_class=error_class.value,
                delay_sec=delay,
            )
            sleep(delay)
            continue
        state.record_success()
        return result


class RateLimiter:
    """Enforces a minimum interval between consecutive calls to one upstream."""

    def __init__(
        self,
        min_interval_sec: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval_sec < 0:
            raise ValueError("min_interval_sec must be non-negative")
        self._interval = min_interval_sec
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def wait(self) -> None:
        """Block until the interval since the previous call has elapsed."""
        if self._last is not None:
            remaining = self._last + self._interval - self._clock()
            if remaining > 0:
                self._sleep(remaining)
        self._last = self._clock()
