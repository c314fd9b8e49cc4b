# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
One-time interactive authorization-code flow.

1. Print the authorize URL; the user logs in and is redirected to redirect_uri.
2. The user pastes the full redirected URL back.
3. The `code` query parameter is exchanged for a credential pair.
"""

from __future__ import annotations

import logging
from typing import Callable
from urllib.parse import parse_qs, urlencode, urlparse

from ivscan.core.auth.oauth_client import TIMEOUT_SEC, CredentialPair, request_token
from ivscan.core.errors import AuthError
from ivscan.core.schwab.endpoints import BASE_OAUTH, DEFAULT_REDIRECT_URI, url_authorize, url_token

logger = logging.getLogger(__name__)


def build_authorize_url(app_key: str, redirect_uri: str = DEFAULT_REDIRECT_URI, oauth_base_url: str = BASE_OAUTH) -> str:
    query = urlencode({"client_id": app_key, "redirect_uri": redirect_uri})
    return f"{url_authorize(oauth_base_url)}?{query}"


def extract_auth_code(redirected_url: str) -> str:
    """Pull the `code` parameter out of the pasted redirect URL. Raises AuthError if absent."""
    text = (redirected_url or "").strip()
    if not text:
        raise AuthError("no redirect URL provided")
    try:
        parsed = urlparse(text)
    except ValueError as e:
        raise AuthError(f"couldn't parse redirect URI: {e}") from e
    codes = parse_qs(parsed.query).get("code") or []
    if not codes or not codes[0]:
        raise AuthError("no code found in redirect URI")
    return codes[0]


def exchange_auth_code(
    app_key: str,
    app_secret: str,
    code: str,
    redirect_uri: str = DEFAULT_REDIRECT_URI,
    oauth_base_url: str = BASE_OAUTH,
    timeout_sec: float = TIMEOUT_SEC,
) -> CredentialPair:
    return request_token(
        url_token(oauth_base_url),
        app_key,
        app_secret,
        {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        timeout_sec=timeout_sec,
    )


def authorize_interactively(
    app_key: str,
    app_secret: str,
    redirect_uri: str = DEFAULT_REDIRECT_URI,
    oauth_base_url: str = BASE_OAUTH,
    *,
    prompt: Callable[[str], str] = input,
    out: Callable[[str], None] = print,
    timeout_sec: float = TIMEOUT_SEC,
) -> CredentialPair:
    """Run the paste-the-redirect flow and return the initial credential pair."""
    out(f"Visit this URL to authorize the application: {build_authorize_url(app_key, redirect_uri, oauth_base_url)}")
    out("After authorization, you will be redirected. Copy and paste the ENTIRE redirected URL here:")
    code = extract_auth_code(prompt("> "))
    logger.info("[AUTHORIZE] authorization code received; exchanging")
    return exchange_auth_code(app_key, app_secret, code, redirect_uri, oauth_base_url, timeout_sec)


__all__ = [
    "build_authorize_url",
    "extract_auth_code",
    "exchange_auth_code",
    "authorize_interactively",
]
