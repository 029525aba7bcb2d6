import sqlite3

import pytest
import requests

from parcel_signals.retry import RetryableStatus, RetryPolicy, compute_backoff_delays, default_is_retryable


def test_backoff_delays_grow_exponentially():
    delays = compute_backoff_delays(3, base_delay=0.5, factor=2.0, jitter=0.0, rand_fn=lambda: 0.2)
    assert delays == [0.5, 1.0, 2.0]


def test_retryable_classification():
    assert default_is_retryable(RetryableStatus(503))
    assert default_is_retryable(RetryableStatus(429))
    assert not default_is_retryable(RetryableStatus(404))
    assert default_is_retryable(requests.ConnectionError("reset"))
    assert default_is_retryable(requests.Timeout("slow"))
    assert default_is_retryable(sqlite3.OperationalError("database is locked"))
    assert not default_is_retryable(sqlite3.IntegrityError("constraint"))
    assert not default_is_retryable(ValueError("bad"))


def test_call_retries_until_success_and_sleeps_between():
    slept = []
    policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0, sleep_fn=slept.append)
    attempts = {"n": 0}

    def flaky():
        attempts["n"] += 1
        if attempts["n"] < 3:
            raise RetryableStatus(502)
        return "ok"

    assert policy.call(flaky) == "ok"
    assert attempts["n"] == 3
    assert slept == [1.0, 2.0]


def test_call_gives_up_after_max_attempts():
    policy = RetryPolicy(max_attempts=2, sleep_fn=lambda _s: None)
    attempts = {"n": 0}

    def always_down():
        attempts["n"] += 1
        raise RetryableStatus(500)

    with pytest.raises(RetryableStatus):
        policy.call(always_down)
    assert attempts["n"] == 2


def test_non_retryable_errors_raise_immediately():
    policy = RetryPolicy(max_attempts=5, sleep_fn=lambda _s: None)
    attempts = {"n": 0}

    def broken():
        attempts["n"] += 1
        raise ValueError("nope")

    with pytest.raises(ValueError):
        policy.call(broken)
    assert attempts["n"] == 1


def test_should_retry_respects_attempt_budget():
    policy = RetryPolicy(max_attempts=2)
    exc = sqlite3.OperationalError("locked")
    assert policy.should_retry(exc, 1)
    assert not policy.should_retry(exc, 2)
