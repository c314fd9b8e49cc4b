# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Error taxonomy for a scan run.

Only ConfigError is fatal before fetching starts. Everything raised while a
job is in flight (AuthError, FetchError, UnauthorizedError, ScanCancelledError)
is contained by the worker pool and recorded against the ticker.
"""

from __future__ import annotations


class IvScanError(Exception):
    """Base class for all ivscan errors."""


class ConfigError(IvScanError):
    """Missing credentials, unreadable ticker file, or invalid settings."""


class AuthError(IvScanError):
    """Token exchange with the OAuth endpoint failed."""

    def __init__(
        self,
        message: str,
        http_status: int = 0,
        response_snippet: str = "",
        endpoint: str = "",
    ) -> None:
        self.http_status = http_status
        self.response_snippet = (response_snippet or "")[:500]
        self.endpoint = endpoint or ""
        super().__init__(message)


class FetchError(IvScanError):
    """Option-chain request failed (non-2xx, transport error, or undecodable body).

    http_status is 0 when no response was received (timeout, connection error).
    """

    def __init__(
        self,
        message: str,
        http_status: int = 0,
        response_snippet: str = "",
        endpoint: str = "",
        symbol: str = "",
    ) -> None:
        self.http_status = http_status
        self.response_snippet = (response_snippet or "")[:500]
        self.endpoint = endpoint or ""
        self.symbol = symbol or ""
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        """True for failures worth retrying: no response at all, or a 5xx."""
        return self.http_status == 0 or self.http_status >= 500


class UnauthorizedError(FetchError):
    """HTTP 401 from the market-data API; the access token must be renewed."""

    def __init__(self, message: str = "HTTP 401 Unauthorized", **kwargs) -> None:
        kwargs.setdefault("http_status", 401)
        super().__init__(message, **kwargs)


class ScanCancelledError(IvScanError):
    """The scan was cancelled or its deadline passed while a job was waiting."""


__all__ = [
    "IvScanError",
    "ConfigError",
    "AuthError",
    "FetchError",
    "UnauthorizedError",
    "ScanCancelledError",
]
