"""
Tests for the retry state machine, call_with_retry and the rate limiter.
No real sleeping: sleep and clock are injected.
"""

from __future__ import annotations

import pytest

from validator_ledger.core.exceptions import RateLimitedError, RpcError, UpstreamError
from validator_ledger.core.retry import (
    ErrorClass,
    RateLimiter,
    RetryState,
    call_with_retry,
    jito_policy,
    rpc_policy,
)


def test_transient_delays_double():
    state = RetryState(jito_policy())
    delays = []
    for _ in range(4):
        state.begin_attempt()
        delays.append(state.record_failure(ErrorClass.TRANSIENT))
    assert delays == [2.0, 4.0, 8.0, None]
    assert state.exhausted


def test_rate_limit_uses_long_base_delay():
    state = RetryState(jito_policy())
    state.begin_attempt()
    assert state.record_failure(ErrorClass.RATE_LIMITED) == 30.0
    state.begin_attempt()
    assert state.record_failure(ErrorClass.RATE_LIMITED) == 60.0
    state.begin_attempt()
    assert state.record_failure(ErrorClass.TRANSIENT) == 8.0
    assert state.last_error_class is ErrorClass.TRANSIENT


def test_rpc_policy_is_flat():
    state = RetryState(rpc_policy())
    state.begin_attempt()
    assert state.record_failure(ErrorClass.TRANSIENT) == 2.0
    state.begin_attempt()
    assert state.record_failure(ErrorClass.TRANSIENT) == 2.0
    state.begin_attempt()
    assert state.record_failure(ErrorClass.TRANSIENT) is None


def test_call_with_retry_recovers_after_rate_limit():
    sleeps: list[float] = []
    outcomes = [RateLimitedError("429"), UpstreamError("reset"), "ok"]

    def fn():
        value = outcomes.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    assert call_with_retry(fn, jito_policy(), sleep=sleeps.append) == "ok"
    assert sleeps == [30.0, 4.0]


def test_call_with_retry_raises_last_error_when_exhausted():
    sleeps: list[float] = []
    calls = []

    def fn():
        calls.append(1)
        raise UpstreamError(f"fail {len(calls)}")

    with pytest.raises(UpstreamError, match="fail 4"):
        call_with_retry(fn, jito_policy(), sleep=sleeps.append)
    assert len(calls) == 4
    assert sleeps == [2.0, 4.0, 8.0]


def test_non_retryable_error_propagates_immediately():
    sleeps: list[float] = []

    def fn():
        raise RpcError(-32602, "invalid params")

    with pytest.raises(RpcError):
        call_with_retry(fn, jito_policy(), sleep=sleeps.append, classify=lambda e: None)
    assert sleeps == []


def test_rate_limiter_waits_only_the_remainder():
    now = [100.0]
    sleeps: list[float] = []

    def sleep(s: float) -> None:
        sleeps.append(s)
        now[0] += s

    limiter = RateLimiter(0.2, clock=lambda: now[0], sleep=sleep)
    limiter.wait()
    assert sleeps == []
    now[0] += 0.05
    limiter.wait()
    assert sleeps == [pytest.approx(0.15)]
    now[0] += 1.0
    limiter.wait()
    assert len(sleeps) == 1


def test_rate_limiter_rejects_negative_interval():
    with pytest.raises(ValueError):
        RateLimiter(-1)
