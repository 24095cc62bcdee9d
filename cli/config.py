"""Settings for the HTTP side of the CLI, separate from the service settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_BASE_URL = "http://localhost:8000"

_ENV_BASE_URL = "API_BASE_URL"
_ENV_POLL_INTERVAL = "CLI_POLL_INTERVAL"
_ENV_WATCH_TIMEOUT = "CLI_POLL_TIMEOUT"
_ENV_REQUEST_TIMEOUT = "CLI_REQUEST_TIMEOUT"


@dataclass(frozen=True)
class CLIConfig:
    base_url: str = DEFAULT_BASE_URL
    poll_interval: float = 2.0
    watch_timeout: float = 300.0
    request_timeout: float = 30.0


def _seconds_from_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        seconds = float(raw) if raw else default
    except ValueError:
        return default
    return seconds if seconds > 0 else default


def _normalize_base_url(url: str) -> str:
    url = url.strip().rstrip("/")
    if not url.startswith(("http://", "https://")):
        raise ValueError(f"API base URL must start with http:// or https://, got {url!r}.")
    return url


def load_config(
    base_url: Optional[str] = None,
    poll_interval: Optional[float] = None,
    watch_timeout: Optional[float] = None,
) -> CLIConfig:
    """Merge command line options over environment variables over defaults."""
    defaults = CLIConfig()
    return CLIConfig(
        base_url=_normalize_base_url(base_url or os.getenv(_ENV_BASE_URL) or defaults.base_url),
        poll_interval=poll_interval
        or _seconds_from_env(_ENV_POLL_INTERVAL, defaults.poll_interval),
        watch_timeout=watch_timeout
        or _seconds_from_env(_ENV_WATCH_TIMEOUT, defaults.watch_timeout),
        request_timeout=_seconds_from_env(_ENV_REQUEST_TIMEOUT, defaults.request_timeout),
    )
