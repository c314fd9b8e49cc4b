# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Tests for the shared token-bucket rate limiter.

Tests cover:
- Per-period admission cap over any half-open window of one refill period
- Burst size and even spacing of admissions
- Cancellation and deadlines while waiting (no bucket side effect)
- Concurrent use from many threads
"""

from __future__ import annotations

import threading
import time

import pytest

from ivscan.core.cancellation import CancelScope
from ivscan.core.errors import ScanCancelledError
from ivscan.core.market.rate_limiter import RateLimiter


class FakeClock:
    """Deterministic clock: sleeping just advances time."""

    def __init__(self) -> None:
        self.now = 0.0

    def time(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


def _limiter(clock: FakeClock, capacity: int = 120, period: float = 60.0, burst=None) -> RateLimiter:
    return RateLimiter(capacity, period, burst=burst, time_func=clock.time, sleep_func=clock.sleep)


# ============================================================================
# Admission budget
# ============================================================================

class TestAdmissionBudget:
    """Token-bucket admission under sustained demand."""

    def test_no_window_of_one_period_exceeds_capacity(self):
        """Any run of C+1 admissions spans at least one full period."""
        clock = FakeClock()
        rl = _limiter(clock)
        stamps = []
        for _ in range(360):
            rl.acquire()
            stamps.append(clock.now)
        for i in range(len(stamps) - 120):
            assert stamps[i + 120] - stamps[i] >= 60.0

    def test_half_open_window_holds_at_most_capacity(self):
        """Counting admissions in [t, t + period) from every admission time."""
        clock = FakeClock()
        rl = _limiter(clock)
        stamps = []
        for _ in range(300):
            rl.acquire()
            stamps.append(clock.now)
        for start in stamps:
            in_window = sum(1 for s in stamps if start <= s < start + 60.0)
            assert in_window <= 120

    def test_admissions_are_spread_evenly(self):
        """With burst 1, consecutive admissions are period/capacity apart."""
        clock = FakeClock()
        rl = _limiter(clock)
        stamps = []
        for _ in range(5):
            rl.acquire()
            stamps.append(clock.now)
        assert stamps == [0.0, 0.5, 1.0, 1.5, 2.0]

    def test_burst_allows_immediate_admissions(self):
        """A bucket of size 5 admits 5 requests at once, then spaces the rest."""
        clock = FakeClock()
        rl = _limiter(clock, burst=5)
        for _ in range(5):
            rl.acquire()
        assert clock.now == 0.0
        rl.acquire()
        assert clock.now == 0.5

    def test_try_acquire_does_not_block(self):
        clock = FakeClock()
        rl = _limiter(clock)
        assert rl.try_acquire() is True
        assert rl.try_acquire() is False
        clock.now += 0.5
        assert rl.try_acquire() is True

    def test_idle_bucket_never_exceeds_burst(self):
        clock = FakeClock()
        rl = _limiter(clock, burst=3)
        clock.now += 3600
        assert rl.available() == 3.0

    def test_rate_per_sec(self):
        assert RateLimiter(120, 60.0).rate_per_sec == 2.0

    @pytest.mark.parametrize("capacity,period,burst", [(0, 60.0, None), (120, 0.0, None), (10, 1.0, 11), (10, 1.0, 0)])
    def test_invalid_budget_rejected(self, capacity, period, burst):
        with pytest.raises(ValueError):
            RateLimiter(capacity, period, burst=burst)


# ============================================================================
# Cancellation
# ============================================================================

class TestCancellation:
    """acquire() honors the caller's CancelScope."""

    def test_cancelled_scope_takes_no_token(self):
        clock = FakeClock()
        rl = _limiter(clock)
        scope = CancelScope()
        scope.cancel()
        with pytest.raises(ScanCancelledError):
            rl.acquire(scope)
        assert rl.available() == 1.0

    def test_deadline_expires_while_waiting(self):
        rl = RateLimiter(1, 100.0)
        rl.acquire()
        scope = CancelScope(timeout_sec=0.05)
        t0 = time.monotonic()
        with pytest.raises(ScanCancelledError):
            rl.acquire(scope)
        assert time.monotonic() - t0 < 2.0
        # The waiter never drove the bucket negative
        assert rl.available() >= 0.0
        assert rl.available() < 1.0

    def test_cancel_from_another_thread_wakes_waiter(self):
        rl = RateLimiter(1, 100.0)
        rl.acquire()
        scope = CancelScope()
        timer = threading.Timer(0.05, scope.cancel)
        timer.start()
        t0 = time.monotonic()
        try:
            with pytest.raises(ScanCancelledError):
                rl.acquire(scope)
        finally:
            timer.cancel()
        assert time.monotonic() - t0 < 2.0


# ============================================================================
# Concurrency
# ============================================================================

class TestConcurrentUse:
    """One bucket shared by many threads."""

    def test_threads_share_one_budget(self):
        rl = RateLimiter(20, 1.0)
        granted = []
        lock = threading.Lock()

        def worker():
            for _ in range(5):
                rl.acquire()
                with lock:
                    granted.append(time.monotonic())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        t0 = time.monotonic()
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        elapsed = time.monotonic() - t0

        assert len(granted) == 40
        # 40 admissions at 20/sec with burst 1: at least 39 * 0.05s
        assert elapsed >= 1.8
