# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""QuoteRecord: one option contract flattened with its underlying's quote."""

from __future__ import annotations

import math
from dataclasses import dataclass


@dataclass(frozen=True)
class QuoteRecord:
    """
    Flat view of one option contract from a chain response.

    Underlying-level fields (last price, percent change, 52-week range) are
    repeated on every record for the same ticker.
    """
    # Underlying
    ticker: str
    underlying_last: float = 0.0
    underlying_percent_change: float = 0.0
    fifty_two_week_high: float = 0.0
    fifty_two_week_low: float = 0.0

    # Contract identity
    option_symbol: str = ""
    description: str = ""
    exchange_name: str = ""
    put_call: str = ""  # "CALL" or "PUT"
    strike_price: float = 0.0
    expiration_date: str = ""
    days_to_expiration: int = 0
    last_trading_day: int = 0

    # Prices and sizes
    bid: float = 0.0
    ask: float = 0.0
    last: float = 0.0
    mark: float = 0.0
    bid_size: int = 0
    ask_size: int = 0
    bid_ask_size: str = ""
    last_size: int = 0
    high_price: float = 0.0
    low_price: float = 0.0
    open_price: float = 0.0
    close_price: float = 0.0
    total_volume: int = 0
    net_change: float = 0.0
    open_interest: int = 0

    # Volatility and greeks
    volatility: float = 0.0
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0
    rho: float = 0.0

    # Valuation
    time_value: float = 0.0
    theoretical_option_value: float = 0.0
    theoretical_volatility: float = 0.0
    intrinsic_value: float = 0.0
    extrinsic_value: float = 0.0
    in_the_money: bool = False

    # Changes
    percent_change: float = 0.0
    mark_change: float = 0.0
    mark_percent_change: float = 0.0

    @property
    def is_rankable(self) -> bool:
        """Positive, finite implied volatility; anything else is never ranked."""
        return math.isfinite(self.volatility) and self.volatility > 0

    @property
    def expiration_day(self) -> str:
        """Expiration as YYYY-MM-DD (the API sends a full timestamp)."""
        return self.expiration_date[:10]


__all__ = ["QuoteRecord"]
