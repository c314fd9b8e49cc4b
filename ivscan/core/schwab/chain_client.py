# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Schwab option-chain client: one GET /chains per ticker, decoded into QuoteRecords.

Response shape:
  {
    "symbol": "AAPL",
    "underlying": {"last": ..., "percentChange": ..., "fiftyTwoWeekHigh": ..., ...},
    "callExpDateMap": {"2026-03-20:152": {"175.0": [contract, ...], ...}, ...},
    "putExpDateMap":  {... same shape ...}
  }

Selection policy: each (expiration, strike) leaf may list several contracts
(e.g. different settlement types). Only the first-listed contract is kept as
the bucket's representative; the rest are discarded. Records are emitted
calls first, then puts, in response order.

The client never renews tokens: HTTP 401 raises UnauthorizedError and the
caller decides what to do.
"""

from __future__ import annotations

import calendar
import logging
import math
import time
from datetime import date
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import requests

from ivscan.core.cancellation import CancelScope
from ivscan.core.errors import FetchError, UnauthorizedError
from ivscan.core.models.quote import QuoteRecord
from ivscan.core.schwab.endpoints import BASE_MARKETDATA, PATH_CHAINS, url_chains

logger = logging.getLogger(__name__)

TIMEOUT_SEC = 15
DEFAULT_STRIKE_COUNT = 10
DEFAULT_FROM_MONTHS = 3
DEFAULT_TO_MONTHS = 9
DEFAULT_STRIKE_RANGE = "NTM"


# ============================================================================
# Value coercion
# ============================================================================

def _as_float(v: Any) -> float:
    if v is None:
        return 0.0
    if isinstance(v, bool):
        raise TypeError(f"expected number, got bool {v!r}")
    return float(v)


def _as_int(v: Any) -> int:
    if v is None:
        return 0
    f = _as_float(v)
    if math.isnan(f) or math.isinf(f):
        return 0
    return int(f)


def _as_str(v: Any) -> str:
    return "" if v is None else str(v)


def _as_bool(v: Any) -> bool:
    return bool(v) if v is not None else False


# (QuoteRecord attribute, JSON key, converter)
_CONTRACT_FIELDS: Tuple[Tuple[str, str, Callable[[Any], Any]], ...] = (
    ("option_symbol", "symbol", _as_str),
    ("description", "description", _as_str),
    ("exchange_name", "exchangeName", _as_str),
    ("put_call", "putCall", _as_str),
    ("strike_price", "strikePrice", _as_float),
    ("expiration_date", "expirationDate", _as_str),
    ("days_to_expiration", "daysToExpiration", _as_int),
    ("last_trading_day", "lastTradingDay", _as_int),
    ("bid", "bid", _as_float),
    ("ask", "ask", _as_float),
    ("last", "last", _as_float),
    ("mark", "mark", _as_float),
    ("bid_size", "bidSize", _as_int),
    ("ask_size", "askSize", _as_int),
    ("bid_ask_size", "bidAskSize", _as_str),
    ("last_size", "lastSize", _as_int),
    ("high_price", "highPrice", _as_float),
    ("low_price", "lowPrice", _as_float),
    ("open_price", "openPrice", _as_float),
    ("close_price", "closePrice", _as_float),
    ("total_volume", "totalVolume", _as_int),
    ("net_change", "netChange", _as_float),
    ("open_interest", "openInterest", _as_int),
    ("volatility", "volatility", _as_float),
    ("delta", "delta", _as_float),
    ("gamma", "gamma", _as_float),
    ("theta", "theta", _as_float),
    ("vega", "vega", _as_float),
    ("rho", "rho", _as_float),
    ("time_value", "timeValue", _as_float),
    ("theoretical_option_value", "theoreticalOptionValue", _as_float),
    ("theoretical_volatility", "theoreticalVolatility", _as_float),
    ("intrinsic_value", "intrinsicValue", _as_float),
    ("extrinsic_value", "extrinsicValue", _as_float),
    ("in_the_money", "inTheMoney", _as_bool),
    ("percent_change", "percentChange", _as_float),
    ("mark_change", "markChange", _as_float),
    ("mark_percent_change", "markPercentChange", _as_float),
)


# ============================================================================
# Decoding
# ============================================================================

def _exp_date_map(payload: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    m = payload.get(key)
    if m is None:
        return {}
    if not isinstance(m, Mapping):
        raise TypeError(f"{key} is not an object")
    return m


def decode_chain(ticker: str, payload: Any) -> List[QuoteRecord]:
    """
    Flatten a chain payload into QuoteRecords (first-listed contract per
    expiration/strike bucket). Invalid-volatility records are kept here;
    filtering is the caller's job.

    Raises TypeError/ValueError when the payload does not have the expected shape.
    """
    if not isinstance(payload, Mapping):
        raise TypeError("chain payload is not an object")
    underlying = payload.get("underlying") or {}
    if not isinstance(underlying, Mapping):
        raise TypeError("underlying is not an object")
    base = {
        "ticker": ticker,
        "underlying_last": _as_float(underlying.get("last")),
        "underlying_percent_change": _as_float(underlying.get("percentChange")),
        "fifty_two_week_high": _as_float(underlying.get("fiftyTwoWeekHigh")),
        "fifty_two_week_low": _as_float(underlying.get("fiftyTwoWeekLow")),
    }

    records: List[QuoteRecord] = []
    for map_key in ("callExpDateMap", "putExpDateMap"):
        for expiration, strikes in _exp_date_map(payload, map_key).items():
            if not isinstance(strikes, Mapping):
                raise TypeError(f"{map_key}[{expiration}] is not an object")
            for strike, contracts in strikes.items():
                if not isinstance(contracts, list):
                    raise TypeError(f"{map_key}[{expiration}][{strike}] is not a list")
                if not contracts:
                    continue
                first = contracts[0]
                if not isinstance(first, Mapping):
                    raise TypeError(f"{map_key}[{expiration}][{strike}][0] is not an object")
                fields: Dict[str, Any] = dict(base)
                for attr, json_key, conv in _CONTRACT_FIELDS:
                    fields[attr] = conv(first.get(json_key))
                records.append(QuoteRecord(**fields))
    return records


# ============================================================================
# Date window
# ============================================================================

def add_months(d: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


# ============================================================================
# Client
# ============================================================================

class SchwabChainClient:
    """
    Fetches near-the-money option chains for one ticker at a time.

    Thread-safe: holds no per-request state, so all workers share one instance.
    """

    def __init__(
        self,
        base_url: str = BASE_MARKETDATA,
        *,
        strike_count: int = DEFAULT_STRIKE_COUNT,
        from_months: int = DEFAULT_FROM_MONTHS,
        to_months: int = DEFAULT_TO_MONTHS,
        strike_range: str = DEFAULT_STRIKE_RANGE,
        timeout_sec: float = TIMEOUT_SEC,
        today_func: Callable[[], date] = date.today,
    ) -> None:
        if to_months < from_months:
            raise ValueError("to_months must be >= from_months")
        self.base_url = base_url
        self.strike_count = strike_count
        self.from_months = from_months
        self.to_months = to_months
        self.strike_range = strike_range
        self.timeout_sec = timeout_sec
        self._today = today_func

    def build_params(self, ticker: str) -> Dict[str, str]:
        today = self._today()
        return {
            "symbol": ticker,
            "strikeCount": str(self.strike_count),
            "fromDate": add_months(today, self.from_months).isoformat(),
            "toDate": add_months(today, self.to_months).isoformat(),
            "range": self.strike_range,
            "includeUnderlyingQuote": "true",
        }

    def fetch(
        self,
        ticker: str,
        access_token: str,
        scope: Optional[CancelScope] = None,
    ) -> List[QuoteRecord]:
        """
        GET /chains for `ticker`. Returns only records with volatility > 0.

        Raises UnauthorizedError on 401, FetchError on any other failure.
        """
        if scope is not None:
            scope.raise_if_cancelled()
        url = url_chains(self.base_url)
        params = self.build_params(ticker)
        headers = {
            "Authorization": f"Bearer {access_token}",
            "accept": "application/json",
        }
        timeout = scope.cap_timeout(self.timeout_sec) if scope is not None else self.timeout_sec

        t0 = time.perf_counter()
        try:
            r = requests.get(url, params=params, headers=headers, timeout=timeout)
        except requests.RequestException as e:
            latency_ms = int((time.perf_counter() - t0) * 1000)
            logger.warning(
                "[SCHWAB_CALL] endpoint=%s symbol=%s status=FAIL latency_ms=%s error=%s",
                PATH_CHAINS, ticker, latency_ms, e,
            )
            raise FetchError(
                f"Request failed: {e}",
                http_status=0,
                response_snippet=str(e)[:200],
                endpoint=PATH_CHAINS,
                symbol=ticker,
            ) from e

        latency_ms = int((time.perf_counter() - t0) * 1000)

        if r.status_code == 401:
            logger.info(
                "[SCHWAB_CALL] endpoint=%s symbol=%s status=401 latency_ms=%s",
                PATH_CHAINS, ticker, latency_ms,
            )
            raise UnauthorizedError(
                response_snippet=(r.text or "")[:300],
                endpoint=PATH_CHAINS,
                symbol=ticker,
            )
        if not 200 <= r.status_code < 300:
            snippet = (r.text or "")[:300]
            logger.warning(
                "[SCHWAB_CALL] endpoint=%s symbol=%s status=%s latency_ms=%s response=%s",
                PATH_CHAINS, ticker, r.status_code, latency_ms, snippet[:200],
            )
            raise FetchError(
                f"HTTP {r.status_code}",
                http_status=r.status_code,
                response_snippet=snippet,
                endpoint=PATH_CHAINS,
                symbol=ticker,
            )

        try:
            raw = r.json()
        except ValueError as e:
            raise FetchError(
                f"Invalid JSON: {e}",
                http_status=r.status_code,
                response_snippet=(r.text or "")[:300],
                endpoint=PATH_CHAINS,
                symbol=ticker,
            ) from e

        try:
            records = decode_chain(ticker, raw)
        except (TypeError, ValueError) as e:
            raise FetchError(
                f"Undecodable chain payload: {e}",
                http_status=r.status_code,
                response_snippet=str(raw)[:300],
                endpoint=PATH_CHAINS,
                symbol=ticker,
            ) from e

        valid = [rec for rec in records if rec.is_rankable]
        logger.info(
            "[SCHWAB_CALL] endpoint=%s symbol=%s status=%s latency_ms=%s records=%d dropped_iv=%d",
            PATH_CHAINS, ticker, r.status_code, latency_ms, len(valid), len(records) - len(valid),
        )
        return valid


__all__ = [
    "SchwabChainClient",
    "decode_chain",
    "add_months",
    "TIMEOUT_SEC",
]
