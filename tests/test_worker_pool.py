# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Tests for the bounded worker pool.

Tests cover:
- Every ticker is fetched exactly once and ends SUCCEEDED or FAILED
- Failure isolation between tickers
- 401 -> single-flight refresh -> one retry
- Concurrency never exceeds the worker count
- Cancellation and deadline: partial results are kept
- Optional transient retries
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Dict, List, Optional
from unittest.mock import patch

import pytest

from ivscan.core.auth.oauth_client import CredentialPair
from ivscan.core.auth.token_manager import TokenManager
from ivscan.core.cancellation import CancelScope
from ivscan.core.errors import AuthError, FetchError, UnauthorizedError
from ivscan.core.market.rate_limiter import RateLimiter
from ivscan.core.models.quote import QuoteRecord
from ivscan.core.pipeline.worker_pool import (
    FAIL_AUTH,
    FAIL_CANCELLED,
    FAIL_FETCH,
    FAIL_UNAUTHORIZED,
    JobState,
    WorkerPool,
)


def _rec(ticker: str, vol: float) -> QuoteRecord:
    return QuoteRecord(ticker=ticker, option_symbol=f"{ticker}-{vol}", put_call="CALL", volatility=vol)


class FakeFetcher:
    """Records calls; per-ticker behaviour is a callable(token) -> records (may raise)."""

    def __init__(self, behaviours: Optional[Dict[str, Callable[[str], List[QuoteRecord]]]] = None, delay: float = 0.0):
        self.behaviours = behaviours or {}
        self.delay = delay
        self.calls: List[tuple] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def fetch(self, ticker, access_token, scope=None):
        with self._lock:
            self.calls.append((ticker, access_token))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            behaviour = self.behaviours.get(ticker)
            if behaviour is None:
                return [_rec(ticker, 20.0)]
            return behaviour(access_token)
        finally:
            with self._lock:
                self.active -= 1


class FakeTokens:
    def __init__(self, pair=CredentialPair("A1", "R1"), refreshed=CredentialPair("A2", "R2"), error=None):
        self.pair = pair
        self.refreshed = refreshed
        self.error = error
        self.refresh_calls: List[str] = []

    def credentials(self):
        return self.pair

    def refresh(self, observed, scope=None):
        self.refresh_calls.append(observed)
        if self.error is not None:
            raise self.error
        self.pair = self.refreshed
        return self.refreshed


class CountingLimiter:
    def __init__(self):
        self.count = 0
        self._lock = threading.Lock()

    def acquire(self, scope=None):
        if scope is not None:
            scope.raise_if_cancelled()
        with self._lock:
            self.count += 1


def _unauthorized_unless(token: str, ticker: str) -> Callable[[str], List[QuoteRecord]]:
    def behaviour(access_token):
        if access_token != token:
            raise UnauthorizedError(symbol=ticker)
        return [_rec(ticker, 40.0)]
    return behaviour


# ============================================================================
# Happy path and isolation
# ============================================================================

class TestPoolBasics:
    """Every job reaches a terminal state; failures stay local."""

    def test_all_tickers_succeed_in_input_order(self):
        fetcher = FakeFetcher()
        limiter = CountingLimiter()
        pool = WorkerPool(fetcher, FakeTokens(), limiter, workers=3)
        result = pool.run(["AAPL", "MSFT", "TSLA", "NVDA"])

        assert [o.ticker for o in result.outcomes] == ["AAPL", "MSFT", "TSLA", "NVDA"]
        assert all(o.state == JobState.SUCCEEDED for o in result.outcomes)
        assert len(result.records) == 4
        assert limiter.count == 4
        assert result.cancelled is False
        assert result.interrupted is False

    def test_each_ticker_fetched_once(self):
        tickers = [f"T{i}" for i in range(25)]
        fetcher = FakeFetcher()
        WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=4).run(tickers)
        fetched = sorted(t for t, _ in fetcher.calls)
        assert fetched == sorted(tickers)

    def test_failure_is_isolated(self):
        def boom(_token):
            raise FetchError("HTTP 404", http_status=404, symbol="BAD")

        fetcher = FakeFetcher({"BAD": boom})
        result = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=2).run(["AAPL", "BAD", "MSFT"])

        bad = result.outcomes[1]
        assert bad.state == JobState.FAILED
        assert bad.error_kind == FAIL_FETCH
        assert bad.records == []
        assert "404" in bad.reason
        assert [o.ticker for o in result.succeeded] == ["AAPL", "MSFT"]
        assert result.skipped_summary() == {FAIL_FETCH: 1}

    def test_unexpected_exception_does_not_kill_pool(self):
        def crash(_token):
            raise KeyError("volatility")

        fetcher = FakeFetcher({"X": crash})
        result = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=1).run(["X", "Y"])
        assert result.outcomes[0].error_kind == "internal_error"
        assert result.outcomes[1].succeeded

    def test_empty_ticker_list(self):
        result = WorkerPool(FakeFetcher(), FakeTokens(), CountingLimiter(), workers=3).run([])
        assert result.outcomes == []
        assert result.records == []

    def test_concurrency_bounded_by_workers(self):
        fetcher = FakeFetcher(delay=0.05)
        WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=3).run([f"T{i}" for i in range(12)])
        assert 1 <= fetcher.max_active <= 3

    def test_invalid_arguments(self):
        with pytest.raises(ValueError):
            WorkerPool(FakeFetcher(), FakeTokens(), CountingLimiter(), workers=0)
        with pytest.raises(ValueError):
            WorkerPool(FakeFetcher(), FakeTokens(), CountingLimiter(), transient_retries=-1)

    def test_to_dict_summary(self):
        result = WorkerPool(FakeFetcher(), FakeTokens(), CountingLimiter(), workers=2).run(["A", "B"])
        d = result.to_dict()
        assert d["jobs"] == 2
        assert d["succeeded"] == 2
        assert d["records"] == 2
        assert d["skipped"] == {}


# ============================================================================
# Authorization renewal
# ============================================================================

class TestPoolAuthRetry:
    """401 handling: refresh once, retry once."""

    def test_401_refresh_then_retry_succeeds(self):
        tokens = FakeTokens()
        fetcher = FakeFetcher({"AAPL": _unauthorized_unless("A2", "AAPL")})
        limiter = CountingLimiter()
        result = WorkerPool(fetcher, tokens, limiter, workers=1).run(["AAPL"])

        outcome = result.outcomes[0]
        assert outcome.succeeded
        assert outcome.attempts == 2
        assert tokens.refresh_calls == ["R1"]
        assert fetcher.calls == [("AAPL", "A1"), ("AAPL", "A2")]
        assert limiter.count == 2

    def test_second_401_fails_as_unauthorized(self):
        tokens = FakeTokens()
        fetcher = FakeFetcher({"AAPL": _unauthorized_unless("never", "AAPL")})
        result = WorkerPool(fetcher, tokens, CountingLimiter(), workers=1).run(["AAPL"])

        outcome = result.outcomes[0]
        assert outcome.state == JobState.FAILED
        assert outcome.error_kind == FAIL_UNAUTHORIZED
        assert outcome.attempts == 2
        assert len(tokens.refresh_calls) == 1
        assert result.auth_failure is False

    def test_refresh_failure_reported_as_auth_failure(self):
        tokens = FakeTokens(error=AuthError("Token request failed", http_status=400))
        fetcher = FakeFetcher({t: _unauthorized_unless("A2", t) for t in ("AAPL", "MSFT")})
        result = WorkerPool(fetcher, tokens, CountingLimiter(), workers=2).run(["AAPL", "MSFT"])

        assert all(o.error_kind == FAIL_AUTH for o in result.outcomes)
        assert result.auth_failure is True

    def test_auth_failure_false_when_any_ticker_succeeded(self):
        tokens = FakeTokens(error=AuthError("boom"))
        fetcher = FakeFetcher({"AAPL": _unauthorized_unless("A2", "AAPL")})
        result = WorkerPool(fetcher, tokens, CountingLimiter(), workers=1).run(["AAPL", "MSFT"])
        assert result.outcomes[0].error_kind == FAIL_AUTH
        assert result.outcomes[1].succeeded
        assert result.auth_failure is False

    def test_many_401s_share_one_exchange(self):
        calls = []

        def fake_exchange(url, key, secret, form, timeout_sec=15):
            calls.append(form["refresh_token"])
            time.sleep(0.1)
            return CredentialPair("NEW", "R2")

        tm = TokenManager("key", "secret", CredentialPair("OLD", "R1"))
        tickers = [f"T{i}" for i in range(10)]
        fetcher = FakeFetcher({t: _unauthorized_unless("NEW", t) for t in tickers}, delay=0.01)
        with patch("ivscan.core.auth.token_manager.request_token", side_effect=fake_exchange):
            result = WorkerPool(fetcher, tm, CountingLimiter(), workers=5).run(tickers)

        assert len(result.succeeded) == 10
        assert calls == ["R1"]
        assert tm.exchange_count == 1
        assert tm.current_access_token() == "NEW"


# ============================================================================
# Cancellation
# ============================================================================

class TestPoolCancellation:
    """Cancelled or expired scopes end jobs promptly and keep partial results."""

    def test_pre_cancelled_scope_fetches_nothing(self):
        scope = CancelScope()
        scope.cancel()
        fetcher = FakeFetcher()
        result = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=2).run(["A", "B", "C"], scope)

        assert fetcher.calls == []
        assert all(o.error_kind == FAIL_CANCELLED for o in result.outcomes)
        assert result.cancelled is True
        assert result.interrupted is False

    def test_deadline_keeps_partial_results(self):
        # One permit, then the next one is 100s away: only the first job can run.
        limiter = RateLimiter(capacity=1, period_sec=100.0)
        scope = CancelScope(timeout_sec=0.3)
        fetcher = FakeFetcher()
        t0 = time.monotonic()
        result = WorkerPool(fetcher, FakeTokens(), limiter, workers=3).run(["A", "B", "C"], scope)
        elapsed = time.monotonic() - t0

        assert elapsed < 5.0
        assert len(result.succeeded) == 1
        assert len(result.records) == 1
        assert result.skipped_summary() == {FAIL_CANCELLED: 2}
        assert result.cancelled is True

    def test_cancel_from_another_thread(self):
        limiter = RateLimiter(capacity=1, period_sec=100.0)
        scope = CancelScope()
        timer = threading.Timer(0.2, scope.cancel)
        timer.start()
        try:
            result = WorkerPool(FakeFetcher(), FakeTokens(), limiter, workers=2).run(["A", "B", "C", "D"], scope)
        finally:
            timer.cancel()
        assert len(result.succeeded) == 1
        assert len(result.failed) == 3
        assert result.cancelled is True

    def test_deadline_during_token_exchange(self):
        timeouts = []

        def hanging_exchange(url, key, secret, form, timeout_sec=15):
            timeouts.append(timeout_sec)
            time.sleep(min(2.0, timeout_sec))
            raise AuthError("Token request failed: read timed out", http_status=0)

        tm = TokenManager("key", "secret", CredentialPair("OLD", "R1"), timeout_sec=15)
        tickers = ["A", "B", "C"]
        fetcher = FakeFetcher({t: _unauthorized_unless("NEW", t) for t in tickers})
        scope = CancelScope(timeout_sec=0.3)
        t0 = time.monotonic()
        with patch("ivscan.core.auth.token_manager.request_token", side_effect=hanging_exchange):
            result = WorkerPool(fetcher, tm, CountingLimiter(), workers=3).run(tickers, scope)
        elapsed = time.monotonic() - t0

        assert elapsed < 1.0
        assert timeouts and all(t <= 0.3 for t in timeouts)
        assert tm.exchange_count == 1
        assert result.skipped_summary() == {FAIL_CANCELLED: 3}
        assert result.cancelled is True


# ============================================================================
# Transient retries
# ============================================================================

class TestPoolTransientRetry:
    """Timeouts/5xx are retried only when configured."""

    @staticmethod
    def _flaky(failures: int, status: int = 503):
        state = {"n": 0}

        def behaviour(_token):
            state["n"] += 1
            if state["n"] <= failures:
                raise FetchError(f"HTTP {status}", http_status=status, symbol="AAPL")
            return [_rec("AAPL", 25.0)]
        return behaviour

    def test_no_retry_by_default(self):
        fetcher = FakeFetcher({"AAPL": self._flaky(1)})
        result = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=1).run(["AAPL"])
        assert result.outcomes[0].error_kind == FAIL_FETCH
        assert len(fetcher.calls) == 1

    def test_transient_retry_succeeds(self):
        fetcher = FakeFetcher({"AAPL": self._flaky(2)})
        pool = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=1, transient_retries=2, retry_backoff_sec=0.01)
        result = pool.run(["AAPL"])
        assert result.outcomes[0].succeeded
        assert result.outcomes[0].attempts == 3

    def test_client_errors_not_retried(self):
        fetcher = FakeFetcher({"AAPL": self._flaky(1, status=400)})
        pool = WorkerPool(fetcher, FakeTokens(), CountingLimiter(), workers=1, transient_retries=3, retry_backoff_sec=0.01)
        result = pool.run(["AAPL"])
        assert result.outcomes[0].error_kind == FAIL_FETCH
        assert len(fetcher.calls) == 1
