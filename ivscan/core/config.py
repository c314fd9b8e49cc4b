# Copyright 2026 IvScan
# SPDX-License-Identifier: MIT
"""Configuration loader for ivscan.

Loads config.yaml (if present) and overlays environment variables.
Priority order (highest to lowest):
  1. Environment variables (SCHWAB_APP_KEY, IVSCAN_WORKERS, ...)
  2. config.yaml values
  3. Built-in defaults

Credentials are only checked by validate(), so the loader itself never fails
on a missing key.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional, Union

import yaml

from ivscan.core.errors import ConfigError
from ivscan.core.schwab.endpoints import BASE_MARKETDATA, BASE_OAUTH, DEFAULT_REDIRECT_URI

DEFAULT_CONFIG_PATH = Path("config.yaml")


@dataclass(frozen=True)
class ScanConfig:
    """Root configuration object."""
    # Credentials
    app_key: str = ""
    app_secret: str = ""
    refresh_token: str = ""
    access_token: str = ""
    redirect_uri: str = DEFAULT_REDIRECT_URI

    # Endpoints
    market_data_base_url: str = BASE_MARKETDATA
    oauth_base_url: str = BASE_OAUTH

    # Input
    tickers_file: str = "tickers.stocks"

    # Pool and rate budget
    workers: int = 10
    rate_capacity: int = 120
    rate_period_sec: float = 60.0
    rate_burst: int = 1

    # Chain request
    strike_count: int = 10
    from_months: int = 3
    to_months: int = 9
    strike_range: str = "NTM"

    # Ranking
    top_k: int = 40

    # Timeouts and retries
    http_timeout_sec: float = 15.0
    deadline_sec: Optional[float] = None
    transient_retries: int = 0
    retry_backoff_sec: float = 1.0

    def validate(self) -> "ScanConfig":
        """Raise ConfigError for missing credentials or out-of-range settings."""
        if not self.app_key or not self.app_secret:
            raise ConfigError("SCHWAB_APP_KEY and SCHWAB_APP_SECRET must be set in the environment")
        if self.workers <= 0:
            raise ConfigError(f"workers must be > 0 (got {self.workers})")
        if self.rate_capacity <= 0 or self.rate_period_sec <= 0:
            raise ConfigError("rate_capacity and rate_period_sec must be > 0")
        if not 1 <= self.rate_burst <= self.rate_capacity:
            raise ConfigError(f"rate_burst must be in [1, rate_capacity] (got {self.rate_burst})")
        if self.strike_count <= 0:
            raise ConfigError(f"strike_count must be > 0 (got {self.strike_count})")
        if self.to_months < self.from_months:
            raise ConfigError("to_months must be >= from_months")
        if self.top_k < 0:
            raise ConfigError(f"top_k must be >= 0 (got {self.top_k})")
        if self.http_timeout_sec <= 0:
            raise ConfigError("http_timeout_sec must be > 0")
        if self.deadline_sec is not None and self.deadline_sec <= 0:
            raise ConfigError("deadline_sec must be > 0 when set")
        if self.transient_retries < 0:
            raise ConfigError("transient_retries must be >= 0")
        return self

    def with_overrides(self, **overrides: Any) -> "ScanConfig":
        """Copy with non-None overrides applied (CLI flags)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def _load_yaml_config(path: Path) -> dict:
    """Load config.yaml. Missing file -> {}; malformed file -> ConfigError."""
    if not path.exists():
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Error loading {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return raw


def _env(*names: str) -> Optional[str]:
    for name in names:
        v = os.getenv(name)
        if v:
            return v
    return None


def _coerce(name: str, value: Any, kind: type) -> Any:
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {name}: {value!r}") from e


def load_config(path: Optional[Union[str, Path]] = None) -> ScanConfig:
    """Build a ScanConfig from config.yaml plus environment overrides."""
    raw = _load_yaml_config(Path(path) if path else DEFAULT_CONFIG_PATH)
    schwab_raw = raw.get("schwab", {}) or {}
    scan_raw = raw.get("scan", {}) or {}
    defaults = ScanConfig()

    def pick(section: dict, key: str, env_names: tuple, kind: type) -> Any:
        env_value = _env(*env_names)
        if env_value is not None:
            return _coerce(env_names[0], env_value, kind)
        if section.get(key) is not None:
            return _coerce(key, section[key], kind)
        return getattr(defaults, key)

    deadline_env = _env("IVSCAN_DEADLINE_SEC")
    deadline_raw = deadline_env if deadline_env is not None else scan_raw.get("deadline_sec")

    return ScanConfig(
        app_key=pick(schwab_raw, "app_key", ("SCHWAB_APP_KEY", "APP_KEY"), str),
        app_secret=pick(schwab_raw, "app_secret", ("SCHWAB_APP_SECRET", "SECRET_KEY"), str),
        refresh_token=pick(schwab_raw, "refresh_token", ("SCHWAB_REFRESH_TOKEN",), str),
        access_token=pick(schwab_raw, "access_token", ("SCHWAB_ACCESS_TOKEN",), str),
        redirect_uri=pick(schwab_raw, "redirect_uri", ("SCHWAB_REDIRECT_URI",), str),
        market_data_base_url=pick(schwab_raw, "market_data_base_url", ("SCHWAB_MARKETDATA_URL",), str),
        oauth_base_url=pick(schwab_raw, "oauth_base_url", ("SCHWAB_OAUTH_URL",), str),
        tickers_file=pick(scan_raw, "tickers_file", ("IVSCAN_TICKERS_FILE",), str),
        workers=pick(scan_raw, "workers", ("IVSCAN_WORKERS",), int),
        rate_capacity=pick(scan_raw, "rate_capacity", ("IVSCAN_RATE_CAPACITY",), int),
        rate_period_sec=pick(scan_raw, "rate_period_sec", ("IVSCAN_RATE_PERIOD_SEC",), float),
        rate_burst=pick(scan_raw, "rate_burst", ("IVSCAN_RATE_BURST",), int),
        strike_count=pick(scan_raw, "strike_count", ("IVSCAN_STRIKE_COUNT",), int),
        from_months=pick(scan_raw, "from_months", ("IVSCAN_FROM_MONTHS",), int),
        to_months=pick(scan_raw, "to_months", ("IVSCAN_TO_MONTHS",), int),
        strike_range=pick(scan_raw, "strike_range", ("IVSCAN_STRIKE_RANGE",), str),
        top_k=pick(scan_raw, "top_k", ("IVSCAN_TOP_K",), int),
        http_timeout_sec=pick(scan_raw, "http_timeout_sec", ("IVSCAN_HTTP_TIMEOUT_SEC",), float),
        deadline_sec=_coerce("deadline_sec", deadline_raw, float) if deadline_raw is not None else None,
        transient_retries=pick(scan_raw, "transient_retries", ("IVSCAN_TRANSIENT_RETRIES",), int),
        retry_backoff_sec=pick(scan_raw, "retry_backoff_sec", ("IVSCAN_RETRY_BACKOFF_SEC",), float),
    )


__all__ = ["ScanConfig", "load_config", "DEFAULT_CONFIG_PATH"]
