#!/usr/bin/env python3
# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
IvScan CLI: rank option contracts across a ticker list by implied volatility.

Usage:
    python run_scan.py
    python run_scan.py --tickers tickers.stocks --workers 10 --top-k 40
    python run_scan.py --deadline 300 -v

Environment variables (also read from .env):
    SCHWAB_APP_KEY          - App key (fallback: APP_KEY)
    SCHWAB_APP_SECRET       - App secret (fallback: SECRET_KEY)
    SCHWAB_REFRESH_TOKEN    - Skip the interactive login by starting from a refresh token
    SCHWAB_ACCESS_TOKEN     - Optional access token paired with SCHWAB_REFRESH_TOKEN
    IVSCAN_TICKERS_FILE     - Ticker file, one symbol per line (default: tickers.stocks)
    IVSCAN_WORKERS          - Concurrent workers (default: 10)

Exit codes: 0 ok, 1 configuration error, 2 authentication failed, 130 interrupted.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from ivscan.core.cancellation import CancelScope
from ivscan.core.config import load_config
from ivscan.core.errors import AuthError, ConfigError
from ivscan.core.report import render_report
from ivscan.core.scan import bootstrap_credentials, run_scan
from ivscan.core.tickers import load_tickers

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_AUTH = 2
EXIT_INTERRUPTED = 130


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="IvScan option-chain IV ranking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default=None, help="Path to config.yaml (default: ./config.yaml)")
    parser.add_argument("--tickers", default=None, help="Ticker file, one symbol per line")
    parser.add_argument("--workers", type=int, default=None, help="Concurrent workers")
    parser.add_argument("--top-k", type=int, default=None, help="Records shown per section")
    parser.add_argument("--deadline", type=float, default=None, help="Abort outstanding fetches after N seconds")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    load_dotenv()

    try:
        config = load_config(args.config).with_overrides(
            tickers_file=args.tickers,
            workers=args.workers,
            top_k=args.top_k,
            deadline_sec=args.deadline,
        ).validate()
        tickers = load_tickers(config.tickers_file)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    print(f"Fetching options data for {len(tickers)} stocks")

    try:
        token_manager = bootstrap_credentials(config)
    except AuthError as e:
        logger.error("Authentication failed: %s", e)
        print(f"Error getting initial token: {e}", file=sys.stderr)
        return EXIT_AUTH
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED

    scope = CancelScope(config.deadline_sec)
    result, ranked = run_scan(config, tickers, token_manager, scope)

    print(render_report(ranked, result))
    logger.info("Scan summary: %s", result.to_dict())

    if result.auth_failure:
        print("Error: authentication failed before any fetch succeeded", file=sys.stderr)
        return EXIT_AUTH
    if result.interrupted:
        return EXIT_INTERRUPTED
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
