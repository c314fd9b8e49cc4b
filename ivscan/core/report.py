# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""Console report for a ranked scan."""

from __future__ import annotations

from typing import Dict, List

from ivscan.core.models.quote import QuoteRecord
from ivscan.core.pipeline.worker_pool import ScanResult
from ivscan.core.ranking.iv_ranker import RankedResult


def format_record(rec: QuoteRecord, price: float) -> str:
    """TICKER ($last) YYYY-MM-DD TYPE@$strike IV:xx.xx% Trading at $price [symbol]"""
    return (
        f"{rec.ticker:<5} (${rec.underlying_last:4.2f}) {rec.expiration_day:>10} "
        f"{rec.put_call:>4}@${rec.strike_price:.2f} IV:{rec.volatility:5.2f}% "
        f"Trading at ${price:4.2f} [{rec.option_symbol}]"
    )


def format_ranking(ranked: RankedResult) -> List[str]:
    """Greatest-IV section priced at the ask, lowest-IV section priced at the last trade."""
    lines = ["Options with the greatest IV"]
    lines.extend(format_record(r, r.ask) for r in ranked.top)
    lines.append("")
    lines.append("Options with the lowest IV")
    lines.extend(format_record(r, r.last) for r in ranked.bottom)
    return lines


def format_skipped(result: ScanResult) -> List[str]:
    failed = result.failed
    if not failed:
        return []
    summary: Dict[str, int] = result.skipped_summary()
    parts = ", ".join(f"{kind}={count}" for kind, count in sorted(summary.items()))
    lines = [f"Skipped {len(failed)} of {len(result.outcomes)} tickers ({parts})"]
    for o in failed:
        lines.append(f"  {o.ticker:<6} {o.error_kind}: {o.reason}")
    return lines


def render_report(ranked: RankedResult, result: ScanResult) -> str:
    lines: List[str] = []
    lines.extend(format_ranking(ranked))
    skipped = format_skipped(result)
    if skipped:
        lines.append("")
        lines.extend(skipped)
    if result.cancelled:
        lines.append("")
        lines.append("Scan was cancelled; ranking covers the tickers fetched before cancellation.")
    return "\n".join(lines)


__all__ = ["format_record", "format_ranking", "format_skipped", "render_report"]
