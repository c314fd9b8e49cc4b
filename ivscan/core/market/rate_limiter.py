# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Token-bucket rate limiter shared by every scan worker.

Budget: `capacity` admissions per `period_sec`, refilled continuously at
capacity / period_sec tokens per second. The bucket holds at most `burst`
tokens (default 1), so admissions are spread evenly across the period instead
of being granted all at once; with burst=1 no half-open window of length
period_sec ever sees more than `capacity` admissions.

Waiting is cancellable: acquire() sleeps on the caller's CancelScope and
raises ScanCancelledError without touching the bucket if the scope ends first.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from ivscan.core.cancellation import CancelScope

logger = logging.getLogger(__name__)

# Sleep bounds while waiting for a token; keeps waiters responsive
MIN_SLEEP_SEC = 0.001
MAX_SLEEP_SEC = 0.25


class RateLimiter:
    """Thread-safe token bucket.

    Args:
        capacity: admissions allowed per period (C).
        period_sec: refill period in seconds (C tokens are added per period).
        burst: bucket size; tokens available instantly after idling. Defaults to 1.
        time_func: monotonic clock, injectable for deterministic tests.
        sleep_func: sleep used when no CancelScope is given.
    """

    def __init__(
        self,
        capacity: int = 120,
        period_sec: float = 60.0,
        *,
        burst: Optional[int] = None,
        time_func: Callable[[], float] = time.monotonic,
        sleep_func: Callable[[float], None] = time.sleep,
    ) -> None:
        if capacity <= 0 or period_sec <= 0:
            raise ValueError("RateLimiter requires capacity > 0 and period_sec > 0")
        burst = 1 if burst is None else int(burst)
        if burst <= 0 or burst > capacity:
            raise ValueError("RateLimiter burst must be in [1, capacity]")
        self.capacity = int(capacity)
        self.period_sec = float(period_sec)
        self.burst = burst
        self._rate = self.capacity / self.period_sec
        self._time = time_func
        self._sleep = sleep_func
        self._lock = threading.Lock()
        self._tokens: float = float(burst)
        self._last: float = self._time()

    @property
    def rate_per_sec(self) -> float:
        return self._rate

    def _refill(self, now: float) -> None:
        elapsed = now - self._last
        if elapsed <= 0:
            return
        self._last = now
        self._tokens = min(float(self.burst), self._tokens + elapsed * self._rate)

    def available(self) -> float:
        """Tokens currently in the bucket (after refill)."""
        with self._lock:
            self._refill(self._time())
            return self._tokens

    def try_acquire(self) -> bool:
        """Take one token if available; never blocks."""
        now = self._time()
        with self._lock:
            self._refill(now)
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def acquire(self, scope: Optional[CancelScope] = None) -> None:
        """Block until one token is taken.

        Raises ScanCancelledError if `scope` is cancelled or expires first; the
        bucket is only modified when a token is actually granted.
        """
        waited = 0.0
        while True:
            if scope is not None:
                scope.raise_if_cancelled()
            now = self._time()
            with self._lock:
                self._refill(now)
                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    if waited > 0:
                        logger.debug("[RATE_LIMIT] granted after waiting %.3fs", waited)
                    return
                deficit = 1.0 - self._tokens
            sleep_for = min(max(deficit / self._rate, MIN_SLEEP_SEC), MAX_SLEEP_SEC)
            if scope is None:
                self._sleep(sleep_for)
            else:
                scope.sleep(sleep_for)
            waited += sleep_for


__all__ = ["RateLimiter", "MIN_SLEEP_SEC", "MAX_SLEEP_SEC"]
