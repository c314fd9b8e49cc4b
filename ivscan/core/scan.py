# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Scan orchestration: credentials -> worker pool -> ranking.

bootstrap_credentials() picks the cheapest way to a usable pair:
  1. configured access + refresh token: used as-is (renewed on first 401)
  2. configured refresh token only: one refresh exchange up front
  3. nothing: the interactive authorization-code flow
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Tuple

from ivscan.core.auth.authorize import authorize_interactively
from ivscan.core.auth.oauth_client import CredentialPair
from ivscan.core.auth.token_manager import TokenManager
from ivscan.core.cancellation import CancelScope
from ivscan.core.config import ScanConfig
from ivscan.core.market.rate_limiter import RateLimiter
from ivscan.core.pipeline.worker_pool import ScanResult, WorkerPool
from ivscan.core.ranking.iv_ranker import RankedResult, flatten, rank
from ivscan.core.schwab.chain_client import SchwabChainClient

logger = logging.getLogger(__name__)


def bootstrap_credentials(
    config: ScanConfig,
    *,
    prompt: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
) -> TokenManager:
    """Build the TokenManager holding the initial pair. Raises AuthError on failure."""
    if config.access_token and config.refresh_token:
        logger.info("[SCAN] using configured access and refresh tokens")
        pair = CredentialPair(access_token=config.access_token, refresh_token=config.refresh_token)
        return _token_manager(config, pair)

    if config.refresh_token:
        logger.info("[SCAN] exchanging configured refresh token for a fresh pair")
        manager = _token_manager(config, CredentialPair(access_token="", refresh_token=config.refresh_token))
        manager.refresh(config.refresh_token)
        return manager

    pair = authorize_interactively(
        config.app_key,
        config.app_secret,
        config.redirect_uri,
        config.oauth_base_url,
        prompt=prompt,
        out=out,
        timeout_sec=config.http_timeout_sec,
    )
    return _token_manager(config, pair)


def _token_manager(config: ScanConfig, pair: CredentialPair) -> TokenManager:
    return TokenManager(
        config.app_key,
        config.app_secret,
        pair,
        oauth_base_url=config.oauth_base_url,
        timeout_sec=config.http_timeout_sec,
    )


def build_pool(config: ScanConfig, token_manager: TokenManager) -> WorkerPool:
    fetcher = SchwabChainClient(
        config.market_data_base_url,
        strike_count=config.strike_count,
        from_months=config.from_months,
        to_months=config.to_months,
        strike_range=config.strike_range,
        timeout_sec=config.http_timeout_sec,
    )
    limiter = RateLimiter(config.rate_capacity, config.rate_period_sec, burst=config.rate_burst)
    return WorkerPool(
        fetcher,
        token_manager,
        limiter,
        config.workers,
        transient_retries=config.transient_retries,
        retry_backoff_sec=config.retry_backoff_sec,
    )


def run_scan(
    config: ScanConfig,
    tickers: Sequence[str],
    token_manager: TokenManager,
    scope: Optional[CancelScope] = None,
    pool: Optional[WorkerPool] = None,
) -> Tuple[ScanResult, RankedResult]:
    """Fetch every ticker and rank whatever was collected."""
    scope = scope or CancelScope(config.deadline_sec)
    pool = pool or build_pool(config, token_manager)
    result = pool.run(tickers, scope)
    ranked = rank(flatten(o.records for o in result.succeeded), config.top_k)
    return result, ranked


__all__ = ["bootstrap_credentials", "build_pool", "run_scan"]
