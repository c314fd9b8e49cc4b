# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Cancellation scope shared by the pool, the rate limiter and the HTTP clients.

A scope is a threading.Event plus an optional monotonic deadline. Waiters
block on the event, so cancel() wakes every sleeper immediately; HTTP callers
use remaining() to cap their per-call timeout.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional

from ivscan.core.errors import ScanCancelledError


class CancelScope:
    """Cancellation signal with an optional deadline.

    Args:
        timeout_sec: seconds from now until the scope expires; None = no deadline.
        time_func: monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        timeout_sec: Optional[float] = None,
        *,
        time_func: Callable[[], float] = time.monotonic,
    ) -> None:
        self._event = threading.Event()
        self._time = time_func
        self._deadline: Optional[float] = None
        if timeout_sec is not None:
            self._deadline = self._time() + max(0.0, float(timeout_sec))

    def cancel(self) -> None:
        self._event.set()

    def remaining(self) -> Optional[float]:
        """Seconds left until the deadline (0.0 once expired), or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._time())

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        left = self.remaining()
        return left is not None and left <= 0.0

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ScanCancelledError("scan cancelled")
        left = self.remaining()
        if left is not None and left <= 0.0:
            raise ScanCancelledError("scan deadline exceeded")

    def sleep(self, seconds: float) -> None:
        """Sleep up to `seconds`, waking early on cancel; raises if the scope ended."""
        left = self.remaining()
        wait_for = seconds if left is None else min(seconds, left)
        if wait_for > 0:
            self._event.wait(wait_for)
        self.raise_if_cancelled()

    def cap_timeout(self, timeout_sec: float) -> float:
        """Per-call timeout bounded by what is left of the deadline."""
        left = self.remaining()
        if left is None:
            return timeout_sec
        return max(0.001, min(timeout_sec, left))


__all__ = ["CancelScope"]
