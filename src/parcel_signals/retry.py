from __future__ import annotations

import random
import sqlite3
import time
from typing import Callable, List, Optional, TypeVar

import requests


RETRY_STATUS = {429, 500, 502, 503, 504}

T = TypeVar("T")


def compute_backoff_delays(
    retries, base_delay=0.2, factor=2.0, jitter=0.1, rand_fn=None
) -> List[float]:
    delays = []
    current = base_delay
    rand_fn = rand_fn or random.random
    for _ in range(retries):
        noise = (rand_fn() * 2 - 1) * jitter
        delays.append(max(0.0, current + noise))
        current *= factor
    return delays


class RetryableStatus(Exception):
    """Raised inside a retried call when the server answered with a retryable status."""

    def __init__(self, status: int, response=None) -> None:
        super().__init__(f"HTTP {status}")
        self.status = status
        self.response = response


def default_is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, RetryableStatus):
        return exc.status in RETRY_STATUS
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    if isinstance(exc, sqlite3.OperationalError):
        return True
    return False


class RetryPolicy:
    """One retry policy shared by the fetcher and the batch writer.

    ``max_attempts`` counts the first try, so ``max_attempts=2`` means one retry.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 0.2,
        factor: float = 2.0,
        jitter: float = 0.1,
        is_retryable: Optional[Callable[[BaseException], bool]] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        rand_fn: Optional[Callable[[], float]] = None,
    ) -> None:
        self.max_attempts = max(1, int(max_attempts))
        self.base_delay = base_delay
        self.factor = factor
        self.jitter = jitter
        self.is_retryable = is_retryable or default_is_retryable
        self.sleep_fn = sleep_fn
        self.rand_fn = rand_fn

    def delays(self) -> List[float]:
        return compute_backoff_delays(
            self.max_attempts - 1,
            self.base_delay,
            self.factor,
            self.jitter,
            rand_fn=self.rand_fn,
        )

    def should_retry(self, exc: BaseException, attempt: int) -> bool:
        """``attempt`` is the 1-based number of the attempt that just failed."""

        return attempt < self.max_attempts and self.is_retryable(exc)

    def wait(self, attempt: int) -> None:
        delays = self.delays()
        if 0 < attempt <= len(delays):
            self.sleep_fn(delays[attempt - 1])

    def call(self, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                self.wait(attempt)
