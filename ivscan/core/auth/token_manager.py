# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
TokenManager: the only owner of the access/refresh credential pair.

Workers read the pair through credentials() / current_access_token() and ask
for renewal through refresh(observed_refresh_token) after a 401.

Single-flight renewal:
  - The first caller holding the current refresh token becomes the leader and
    performs the one token exchange.
  - Every other caller with the same observed token waits on the leader's
    latch and receives the leader's pair (or its AuthError).
  - A caller whose observed token was already superseded gets the current
    pair back immediately, with no exchange.

The stored pair is swapped only if the observed refresh token still matches
(compare-and-swap), and always as a whole immutable object.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ivscan.core.auth.oauth_client import TIMEOUT_SEC, CredentialPair, request_token
from ivscan.core.cancellation import CancelScope
from ivscan.core.errors import AuthError, ScanCancelledError
from ivscan.core.schwab.endpoints import BASE_OAUTH, url_token

logger = logging.getLogger(__name__)

# Longest a waiter blocks before re-checking its CancelScope
WAIT_SLICE_SEC = 0.25


class _RefreshCall:
    """Latch for one in-flight token exchange."""

    __slots__ = ("observed", "done", "result", "error")

    def __init__(self, observed: str) -> None:
        self.observed = observed
        self.done = threading.Event()
        self.result: Optional[CredentialPair] = None
        self.error: Optional[AuthError] = None

    def wait(self, scope: Optional[CancelScope] = None) -> CredentialPair:
        """Block until the leader finishes; raises ScanCancelledError if `scope` ends first."""
        if scope is None:
            self.done.wait()
        else:
            while not self.done.is_set():
                left = scope.remaining()
                slice_sec = WAIT_SLICE_SEC if left is None else min(WAIT_SLICE_SEC, max(left, 0.001))
                if not self.done.wait(slice_sec):
                    scope.raise_if_cancelled()
        if self.error is not None:
            if scope is not None and scope.cancelled:
                raise ScanCancelledError("scan cancelled during token refresh") from self.error
            raise self.error
        if self.result is None:
            raise AuthError("token refresh finished without a credential pair")
        return self.result


class TokenManager:
    """Thread-safe holder of the credential pair with single-flight refresh."""

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        credentials: CredentialPair,
        *,
        oauth_base_url: str = BASE_OAUTH,
        timeout_sec: float = TIMEOUT_SEC,
    ) -> None:
        self._app_key = app_key
        self._app_secret = app_secret
        self._token_url = url_token(oauth_base_url)
        self._timeout_sec = timeout_sec
        self._lock = threading.Lock()
        self._pair = credentials
        self._inflight: Optional[_RefreshCall] = None
        self._exchanges = 0

    def current_access_token(self) -> str:
        return self._pair.access_token

    def credentials(self) -> CredentialPair:
        """Consistent snapshot of the current pair."""
        return self._pair

    @property
    def exchange_count(self) -> int:
        """Token exchanges performed so far."""
        return self._exchanges

    def refresh(self, observed_refresh_token: str, scope: Optional[CancelScope] = None) -> CredentialPair:
        """
        Renew credentials after an authorization failure.

        Args:
            observed_refresh_token: refresh token of the pair the caller used
                when it got the 401.
            scope: optional CancelScope. It caps the exchange timeout and lets
                waiters give up when the scan is cancelled or its deadline passes.
        Returns:
            The pair to retry with.
        Raises:
            AuthError: the exchange failed (shared by every waiter of that exchange).
            ScanCancelledError: `scope` ended before or during the exchange.
        """
        if scope is not None:
            scope.raise_if_cancelled()
        with self._lock:
            current = self._pair
            if current.refresh_token != observed_refresh_token:
                logger.debug("[TOKEN_REFRESH] observed token superseded; reusing current pair")
                return current
            call = self._inflight
            leader = call is None
            if call is None:
                call = _RefreshCall(observed_refresh_token)
                self._inflight = call
                self._exchanges += 1

        if not leader:
            logger.debug("[TOKEN_REFRESH] waiting on in-flight refresh")
            return call.wait(scope)

        timeout = scope.cap_timeout(self._timeout_sec) if scope is not None else self._timeout_sec
        logger.info("[TOKEN_REFRESH] exchanging refresh token timeout_sec=%.2f", timeout)
        try:
            new_pair = request_token(
                self._token_url,
                self._app_key,
                self._app_secret,
                {"grant_type": "refresh_token", "refresh_token": observed_refresh_token},
                timeout_sec=timeout,
            )
        except Exception as e:
            error = e if isinstance(e, AuthError) else AuthError(f"Token refresh failed: {e}")
            with self._lock:
                self._inflight = None
            call.error = error
            call.done.set()
            logger.error("[TOKEN_REFRESH] failed: %s", error)
            if scope is not None and scope.cancelled:
                raise ScanCancelledError("scan cancelled during token refresh") from e
            if error is e:
                raise
            raise error from e

        with self._lock:
            if self._pair.refresh_token == observed_refresh_token:
                self._pair = new_pair
            else:
                logger.warning("[TOKEN_REFRESH] pair changed during exchange; keeping newer pair")
                new_pair = self._pair
            self._inflight = None
        call.result = new_pair
        call.done.set()
        logger.info("[TOKEN_REFRESH] credentials renewed")
        return new_pair


__all__ = ["TokenManager"]
