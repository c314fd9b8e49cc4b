# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
Schwab endpoint manifest: every HTTP caller builds its URL from this module.

Base URLs:
  - BASE_MARKETDATA: option chains (/chains)
  - BASE_OAUTH: authorize and token exchange
"""

from __future__ import annotations

BASE_MARKETDATA = "https://api.schwabapi.com/marketdata/v1"
PATH_CHAINS = "/chains"

BASE_OAUTH = "https://api.schwabapi.com/v1/oauth"
PATH_AUTHORIZE = "/authorize"
PATH_TOKEN = "/token"

DEFAULT_REDIRECT_URI = "https://127.0.0.1"


def url_chains(base: str = BASE_MARKETDATA) -> str:
    return f"{base.rstrip('/')}{PATH_CHAINS}"

def url_authorize(base: str = BASE_OAUTH) -> str:
    return f"{base.rstrip('/')}{PATH_AUTHORIZE}"

def url_token(base: str = BASE_OAUTH) -> str:
    return f"{base.rstrip('/')}{PATH_TOKEN}"

__all__ = [
    "BASE_MARKETDATA",
    "BASE_OAUTH",
    "PATH_CHAINS",
    "PATH_AUTHORIZE",
    "PATH_TOKEN",
    "DEFAULT_REDIRECT_URI",
    "url_chains",
    "url_authorize",
    "url_token",
]
