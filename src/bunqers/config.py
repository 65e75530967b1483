"""Client settings resolved from explicit arguments, then environment, then defaults."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_API_URL = "https://api.bunq.com/v1"
DEFAULT_USER_AGENT = "bunqers-python"
DEFAULT_HEADER_PREFIX = "X-"
DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_RATE_LIMIT_DELAY_SECONDS = 3.0
DEFAULT_FALLBACK_DELAY_SECONDS = 3.0


@dataclass(frozen=True)
class ClientConfig:
    base_url: str = DEFAULT_API_URL
    user_agent: str = DEFAULT_USER_AGENT
    header_prefix: str = DEFAULT_HEADER_PREFIX
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    rate_limit_delay_seconds: float = DEFAULT_RATE_LIMIT_DELAY_SECONDS
    max_rate_limit_retries: Optional[int] = None
    fallback_delay_seconds: float = DEFAULT_FALLBACK_DELAY_SECONDS

    @property
    def client_signature_header(self) -> str:
        return f"{self.header_prefix}Client-Signature"

    @property
    def client_authentication_header(self) -> str:
        return f"{self.header_prefix}Client-Authentication"

    @property
    def server_signature_header(self) -> str:
        return f"{self.header_prefix}Server-Signature"


def _env_float(name: str) -> float | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return float(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {raw!r}") from error


def _env_int(name: str) -> int | None:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from error


def _first(*values):
    for value in values:
        if value is not None:
            return value
    return None


def resolve_config(
    *,
    base_url: str | None = None,
    user_agent: str | None = None,
    header_prefix: str | None = None,
    timeout_seconds: float | None = None,
    rate_limit_delay_seconds: float | None = None,
    max_rate_limit_retries: int | None = None,
    fallback_delay_seconds: float | None = None,
) -> ClientConfig:
    resolved_base_url = base_url or os.environ.get("BUNQERS_API_URL") or DEFAULT_API_URL
    config = ClientConfig(
        base_url=resolved_base_url.rstrip("/"),
        user_agent=user_agent or os.environ.get("BUNQERS_USER_AGENT") or DEFAULT_USER_AGENT,
        header_prefix=header_prefix or os.environ.get("BUNQERS_HEADER_PREFIX") or DEFAULT_HEADER_PREFIX,
        timeout_seconds=_first(
            timeout_seconds, _env_float("BUNQERS_TIMEOUT_SECONDS"), DEFAULT_TIMEOUT_SECONDS
        ),
        rate_limit_delay_seconds=_first(
            rate_limit_delay_seconds,
            _env_float("BUNQERS_RATE_LIMIT_DELAY"),
            DEFAULT_RATE_LIMIT_DELAY_SECONDS,
        ),
        max_rate_limit_retries=_first(max_rate_limit_retries, _env_int("BUNQERS_MAX_RATE_LIMIT_RETRIES")),
        fallback_delay_seconds=_first(
            fallback_delay_seconds,
            _env_float("BUNQERS_FALLBACK_DELAY"),
            DEFAULT_FALLBACK_DELAY_SECONDS,
        ),
    )
    if config.timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")
    if config.rate_limit_delay_seconds < 0 or config.fallback_delay_seconds < 0:
        raise ValueError("delays must be >= 0")
    return config
