# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""
OAuth token endpoint client (shared by refresh and authorization-code grants).

POST <oauth>/token
  Content-Type: application/x-www-form-urlencoded
  Authorization: Basic base64(app_key:app_secret)
  body: grant_type=...&...

The response must carry non-empty access_token and refresh_token; anything
else is an AuthError.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import requests
from requests.auth import HTTPBasicAuth

from ivscan.core.errors import AuthError
from ivscan.core.schwab.endpoints import PATH_TOKEN

logger = logging.getLogger(__name__)

TIMEOUT_SEC = 15


@dataclass(frozen=True)
class CredentialPair:
    """Access/refresh token pair. Immutable: renewals replace the whole object."""
    access_token: str
    refresh_token: str
    expires_in: Optional[int] = None
    token_type: Optional[str] = None
    scope: Optional[str] = None
    id_token: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"CredentialPair(access_token={_redact(self.access_token)}, "
            f"refresh_token={_redact(self.refresh_token)}, expires_in={self.expires_in})"
        )


def _redact(token: str) -> str:
    if not token:
        return "''"
    return f"'{token[:4]}***'"


def parse_token_response(raw: Any) -> CredentialPair:
    """Build a CredentialPair from a decoded token response. Raises ValueError on bad shape."""
    if not isinstance(raw, Mapping):
        raise ValueError("token response is not an object")
    access = raw.get("access_token")
    refresh = raw.get("refresh_token")
    if not isinstance(access, str) or not access:
        raise ValueError("token response missing access_token")
    if not isinstance(refresh, str) or not refresh:
        raise ValueError("token response missing refresh_token")
    expires_in = raw.get("expires_in")
    return CredentialPair(
        access_token=access,
        refresh_token=refresh,
        expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
        token_type=raw.get("token_type"),
        scope=raw.get("scope"),
        id_token=raw.get("id_token"),
    )


def request_token(
    token_url: str,
    app_key: str,
    app_secret: str,
    form: Dict[str, str],
    timeout_sec: float = TIMEOUT_SEC,
) -> CredentialPair:
    """POST a grant to the token endpoint. Raises AuthError on any failure."""
    grant = form.get("grant_type", "")
    t0 = time.perf_counter()
    try:
        r = requests.post(
            token_url,
            data=form,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            auth=HTTPBasicAuth(app_key, app_secret),
            timeout=timeout_sec,
        )
    except requests.RequestException as e:
        logger.warning("[TOKEN_EXCHANGE] grant=%s status=FAIL error=%s", grant, e)
        raise AuthError(f"Token request failed: {e}", endpoint=PATH_TOKEN) from e

    latency_ms = int((time.perf_counter() - t0) * 1000)
    if not 200 <= r.status_code < 300:
        snippet = (r.text or "")[:300]
        logger.warning(
            "[TOKEN_EXCHANGE] grant=%s status=%s latency_ms=%s response=%s",
            grant, r.status_code, latency_ms, snippet[:200],
        )
        raise AuthError(
            f"Token exchange failed with status {r.status_code}",
            http_status=r.status_code,
            response_snippet=snippet,
            endpoint=PATH_TOKEN,
        )

    try:
        pair = parse_token_response(r.json())
    except ValueError as e:
        raise AuthError(
            f"Error decoding token response: {e}",
            http_status=r.status_code,
            response_snippet=(r.text or "")[:300],
            endpoint=PATH_TOKEN,
        ) from e

    logger.info("[TOKEN_EXCHANGE] grant=%s status=%s latency_ms=%s", grant, r.status_code, latency_ms)
    return pair


__all__ = ["CredentialPair", "parse_token_response", "request_token"]
