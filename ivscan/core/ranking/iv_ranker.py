# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""Implied-volatility ranking: merge per-ticker batches, keep the K highest and K lowest.

Rules:
  1. Records with volatility <= 0, NaN or infinite are dropped.
  2. Stable sort, descending by volatility (ties keep input order).
  3. top = first K, bottom = last K listed lowest first; both clamp to the
     number of records, so they overlap when fewer than 2K are available.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import chain
from typing import Iterable, List, Tuple

from ivscan.core.models.quote import QuoteRecord

logger = logging.getLogger(__name__)

DEFAULT_TOP_K = 40


@dataclass(frozen=True)
class RankedResult:
    top: Tuple[QuoteRecord, ...]
    bottom: Tuple[QuoteRecord, ...]
    total: int


def flatten(batches: Iterable[Iterable[QuoteRecord]]) -> List[QuoteRecord]:
    """Merge per-ticker batches into one list; order across tickers is irrelevant."""
    return list(chain.from_iterable(batches))


def rank(records: Iterable[QuoteRecord], k: int = DEFAULT_TOP_K) -> RankedResult:
    if k < 0:
        raise ValueError("k must be >= 0")
    valid = [r for r in records if r.is_rankable]
    ordered = sorted(valid, key=lambda r: r.volatility, reverse=True)
    n = min(k, len(ordered))
    top = tuple(ordered[:n])
    bottom = tuple(reversed(ordered[len(ordered) - n:]))
    logger.info("[IV_RANK] ranked=%d k=%d top=%d bottom=%d", len(ordered), k, len(top), len(bottom))
    return RankedResult(top=top, bottom=bottom, total=len(ordered))


__all__ = ["RankedResult", "flatten", "rank", "DEFAULT_TOP_K"]
