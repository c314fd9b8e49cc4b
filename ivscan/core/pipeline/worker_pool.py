# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Bounded worker pool for per-ticker chain fetches.

Exactly `workers` loops run on a ThreadPoolExecutor and drain one shared job
queue; the queue is closed with one sentinel per worker. Each job moves through

  PENDING -> RATE_LIMITED -> FETCHING -> SUCCEEDED
                                      -> AUTH_RETRY -> FETCHING (once) -> SUCCEEDED | FAILED
                                      -> FAILED

Job errors never leave the pool: a failed ticker contributes zero records, is
logged with its cause, and does not disturb sibling workers. The job queue and
the results queue are the only channels between the pool and its workers.
"""

from __future__ import annotations

import logging
import queue
import time
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from ivscan.core.auth.oauth_client import CredentialPair
from ivscan.core.cancellation import CancelScope
from ivscan.core.errors import AuthError, FetchError, ScanCancelledError, UnauthorizedError
from ivscan.core.models.quote import QuoteRecord

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = 10

_CLOSED = None  # queue sentinel, one per worker


class ChainFetcher(Protocol):
    def fetch(self, ticker: str, access_token: str, scope: Optional[CancelScope] = None) -> List[QuoteRecord]:
        ...


class CredentialSource(Protocol):
    def credentials(self) -> CredentialPair:
        ...

    def refresh(self, observed_refresh_token: str, scope: Optional[CancelScope] = None) -> CredentialPair:
        ...


class Admission(Protocol):
    def acquire(self, scope: Optional[CancelScope] = None) -> None:
        ...


class JobState(str, Enum):
    PENDING = "PENDING"
    RATE_LIMITED = "RATE_LIMITED"
    FETCHING = "FETCHING"
    AUTH_RETRY = "AUTH_RETRY"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


# Failure kinds reported in the skipped-ticker summary
FAIL_UNAUTHORIZED = "unauthorized"
FAIL_AUTH = "auth_error"
FAIL_FETCH = "fetch_failed"
FAIL_CANCELLED = "cancelled"
FAIL_INTERNAL = "internal_error"


@dataclass
class JobOutcome:
    """Terminal record of one ticker's job."""
    ticker: str
    state: JobState = JobState.PENDING
    records: List[QuoteRecord] = field(default_factory=list)
    error_kind: Optional[str] = None
    reason: str = ""
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED

    def fail(self, kind: str, reason: str) -> "JobOutcome":
        self.state = JobState.FAILED
        self.records = []
        self.error_kind = kind
        self.reason = reason
        return self


@dataclass
class ScanResult:
    """Everything the pool produced: per-job outcomes plus the flattened records."""
    outcomes: List[JobOutcome] = field(default_factory=list)
    cancelled: bool = False
    interrupted: bool = False
    duration_ms: int = 0

    @property
    def records(self) -> List[QuoteRecord]:
        out: List[QuoteRecord] = []
        for o in self.outcomes:
            if o.succeeded:
                out.extend(o.records)
        return out

    @property
    def succeeded(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[JobOutcome]:
        return [o for o in self.outcomes if o.state == JobState.FAILED]

    @property
    def auth_failure(self) -> bool:
        """No job succeeded and at least one was blocked by a failed token exchange."""
        if self.succeeded:
            return False
        return any(o.error_kind == FAIL_AUTH for o in self.outcomes)

    def skipped_summary(self) -> Dict[str, int]:
        """Failed-job counts by failure kind."""
        return dict(Counter(o.error_kind or FAIL_INTERNAL for o in self.failed))

    def to_dict(self) -> Dict[str, object]:
        return {
            "jobs": len(self.outcomes),
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "records": len(self.records),
            "cancelled": self.cancelled,
            "skipped": self.skipped_summary(),
            "duration_ms": self.duration_ms,
        }


class WorkerPool:
    """
    Fixed-size pool running RateLimiter -> Fetcher -> (401) TokenManager -> retry once.

    Args:
        fetcher: chain client (shared by all workers).
        token_manager: credential owner with single-flight refresh.
        rate_limiter: shared token bucket.
        workers: pool size W.
        transient_retries: extra attempts for timeouts/5xx (default 0 = none).
        retry_backoff_sec: base of the exponential backoff between transient retries.
    """

    def __init__(
        self,
        fetcher: ChainFetcher,
        token_manager: CredentialSource,
        rate_limiter: Admission,
        workers: int = DEFAULT_WORKERS,
        *,
        transient_retries: int = 0,
        retry_backoff_sec: float = 1.0,
    ) -> None:
        if workers <= 0:
            raise ValueError("workers must be > 0")
        if transient_retries < 0:
            raise ValueError("transient_retries must be >= 0")
        self._fetcher = fetcher
        self._tokens = token_manager
        self._limiter = rate_limiter
        self.workers = workers
        self.transient_retries = transient_retries
        self.retry_backoff_sec = retry_backoff_sec

    # ------------------------------------------------------------------ run

    def run(self, tickers: Sequence[str], scope: Optional[CancelScope] = None) -> ScanResult:
        """Fetch every ticker and block until each job is terminal."""
        scope = scope or CancelScope()
        jobs: "queue.Queue[Optional[Tuple[int, str]]]" = queue.Queue()
        results: "queue.Queue[Tuple[int, JobOutcome]]" = queue.Queue()
        for index, ticker in enumerate(tickers):
            jobs.put((index, ticker))
        for _ in range(self.workers):
            jobs.put(_CLOSED)

        logger.info("[SCAN_POOL] start tickers=%d workers=%d", len(tickers), self.workers)
        t0 = time.perf_counter()
        interrupted = False
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="ivscan-worker") as executor:
            futures = {
                executor.submit(self._worker_loop, worker_id, jobs, results, scope): worker_id
                for worker_id in range(self.workers)
            }
            try:
                for future in as_completed(futures):
                    worker_id = futures[future]
                    try:
                        future.result()
                    except Exception as e:
                        logger.exception("[SCAN_POOL] worker %d crashed: %s", worker_id, e)
            except KeyboardInterrupt:
                logger.warning("[SCAN_POOL] interrupted; cancelling outstanding jobs")
                interrupted = True
                scope.cancel()

        by_index: Dict[int, JobOutcome] = {}
        while True:
            try:
                index, outcome = results.get_nowait()
            except queue.Empty:
                break
            by_index[index] = outcome
        for index, ticker in enumerate(tickers):
            if index not in by_index:
                by_index[index] = JobOutcome(ticker).fail(FAIL_INTERNAL, "worker exited before finishing job")

        result = ScanResult(
            outcomes=[by_index[i] for i in sorted(by_index)],
            cancelled=interrupted or scope.cancelled,
            interrupted=interrupted,
            duration_ms=int((time.perf_counter() - t0) * 1000),
        )
        logger.info(
            "[SCAN_POOL] done succeeded=%d failed=%d records=%d duration_ms=%d",
            len(result.succeeded), len(result.failed), len(result.records), result.duration_ms,
        )
        return result

    # --------------------------------------------------------------- worker

    def _worker_loop(
        self,
        worker_id: int,
        jobs: "queue.Queue[Optional[Tuple[int, str]]]",
        results: "queue.Queue[Tuple[int, JobOutcome]]",
        scope: CancelScope,
    ) -> None:
        while True:
            item = jobs.get()
            if item is _CLOSED:
                return
            index, ticker = item
            outcome = self._run_job(ticker, scope)
            if not outcome.succeeded:
                logger.warning(
                    "[SCAN_POOL] worker=%d ticker=%s failed kind=%s reason=%s",
                    worker_id, ticker, outcome.error_kind, outcome.reason,
                )
            results.put((index, outcome))

    def _run_job(self, ticker: str, scope: CancelScope) -> JobOutcome:
        outcome = JobOutcome(ticker)
        try:
            outcome.records = self._fetch_with_renewal(outcome, scope)
        except ScanCancelledError as e:
            return outcome.fail(FAIL_CANCELLED, str(e))
        except UnauthorizedError as e:
            return outcome.fail(FAIL_UNAUTHORIZED, f"still unauthorized after token refresh ({e})")
        except AuthError as e:
            return outcome.fail(FAIL_AUTH, str(e))
        except FetchError as e:
            return outcome.fail(FAIL_FETCH, f"{e} (status={e.http_status})")
        except Exception as e:
            logger.exception("[SCAN_POOL] unexpected error for %s", ticker)
            return outcome.fail(FAIL_INTERNAL, f"{type(e).__name__}: {e}")
        outcome.state = JobState.SUCCEEDED
        return outcome

    def _fetch_with_renewal(self, outcome: JobOutcome, scope: CancelScope) -> List[QuoteRecord]:
        renewed = False
        retry_creds: Optional[CredentialPair] = None
        transient_used = 0
        while True:
            outcome.state = JobState.RATE_LIMITED
            self._limiter.acquire(scope)

            creds = retry_creds or self._tokens.credentials()
            retry_creds = None
            outcome.state = JobState.FETCHING
            outcome.attempts += 1
            try:
                return self._fetcher.fetch(outcome.ticker, creds.access_token, scope)
            except UnauthorizedError:
                if renewed:
                    raise
                outcome.state = JobState.AUTH_RETRY
                logger.info("[SCAN_POOL] ticker=%s got 401; renewing credentials", outcome.ticker)
                retry_creds = self._tokens.refresh(creds.refresh_token, scope)
                renewed = True
            except FetchError as e:
                if not e.is_transient or transient_used >= self.transient_retries:
                    raise
                backoff = self.retry_backoff_sec * (2 ** transient_used)
                transient_used += 1
                logger.info(
                    "[SCAN_POOL] ticker=%s transient failure (status=%s); retry %d/%d in %.2fs",
                    outcome.ticker, e.http_status, transient_used, self.transient_retries, backoff,
                )
                scope.sleep(backoff)


__all__ = [
    "WorkerPool",
    "JobState",
    "JobOutcome",
    "ScanResult",
    "DEFAULT_WORKERS",
    "FAIL_UNAUTHORIZED",
    "FAIL_AUTH",
    "FAIL_FETCH",
    "FAIL_CANCELLED",
    "FAIL_INTERNAL",
]
