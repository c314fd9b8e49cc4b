# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""Ticker list loader: one symbol per line."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Union

from ivscan.core.errors import ConfigError


def parse_tickers(lines: Iterable[str]) -> List[str]:
    """Strip, skip blanks and '#' comments, upper-case, drop duplicates (first wins)."""
    seen = set()
    symbols: List[str] = []
    for line in lines:
        symbol = line.strip()
        if not symbol or symbol.startswith("#"):
            continue
        symbol = symbol.upper()
        if symbol in seen:
            continue
        seen.add(symbol)
        symbols.append(symbol)
    return symbols


def load_tickers(path: Union[str, Path]) -> List[str]:
    """Read the ticker file. Raises ConfigError if it is unreadable or lists no symbols."""
    p = Path(path)
    try:
        with open(p, "r", encoding="utf-8") as f:
            symbols = parse_tickers(f)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Error reading tickers file {p}: {e}") from e
    if not symbols:
        raise ConfigError(f"Tickers file {p} contains no symbols")
    return symbols


__all__ = ["parse_tickers", "load_tickers"]
