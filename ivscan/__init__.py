# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""IvScan: concurrent option-chain fetcher that ranks contracts by implied volatility."""

__version__ = "0.1.0"
