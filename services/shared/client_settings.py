"""
Shared helpers for configuring the PMS client against a dashboard gateway.

The editors, the dashboard container and the tooling scripts all talk to the
same REST gateway and share the same polling cadence. Loading and validating
those settings in one place keeps timeouts, credentials and poll intervals
consistent without duplicating the parsing logic.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

DEFAULT_API_BASE_URL = "http://localhost:3000/api"
DEFAULT_STATE_DB_URL = "sqlite:///pms_client_state.db"

API_BASE_URL_ENV = "PMS_API_BASE_URL"
API_TOKEN_ENV = "PMS_API_TOKEN"
REQUEST_TIMEOUT_ENV = "PMS_REQUEST_TIMEOUT_SECONDS"
MAX_ATTEMPTS_ENV = "PMS_MAX_ATTEMPTS"
FAST_POLL_ENV = "PMS_FAST_POLL_SECONDS"
BACKGROUND_POLL_ENV = "PMS_BACKGROUND_POLL_SECONDS"
STATE_DB_URL_ENV = "PMS_STATE_DB_URL"


class ClientSettingsError(RuntimeError):
    """Raised when client configuration cannot be constructed."""


@dataclass(frozen=True, slots=True)
class ClientSettings:
    api_base_url: str
    api_token: Optional[str]
    request_timeout_seconds: float
    max_attempts: int
    fast_poll_seconds: float
    background_poll_seconds: float
    state_db_url: str


def load_client_settings(
    *,
    default_timeout: float = 30.0,
    default_max_attempts: int = 3,
    default_fast_poll: float = 1.0,
    default_background_poll: float = 10.0,
) -> ClientSettings:
    """
    Construct ClientSettings from the environment.

    Args:
        default_*: Fallback values when the matching env var is unset/empty.
    """

    api_base_url = _normalize_base_url(os.getenv(API_BASE_URL_ENV))
    api_token = (os.getenv(API_TOKEN_ENV) or "").strip() or None

    timeout = _parse_float(os.getenv(REQUEST_TIMEOUT_ENV), default_timeout, REQUEST_TIMEOUT_ENV)
    max_attempts = _parse_int(os.getenv(MAX_ATTEMPTS_ENV), default_max_attempts, MAX_ATTEMPTS_ENV)
    fast_poll = _parse_float(os.getenv(FAST_POLL_ENV), default_fast_poll, FAST_POLL_ENV)
    background_poll = _parse_float(os.getenv(BACKGROUND_POLL_ENV), default_background_poll, BACKGROUND_POLL_ENV)

    if fast_poll <= 0 or background_poll <= 0:
        raise ClientSettingsError(f"{FAST_POLL_ENV} and {BACKGROUND_POLL_ENV} must be positive")
    if max_attempts < 1:
        raise ClientSettingsError(f"{MAX_ATTEMPTS_ENV} must be at least 1 (received '{max_attempts}')")

    return ClientSettings(
        api_base_url=api_base_url,
        api_token=api_token,
        request_timeout_seconds=timeout,
        max_attempts=max_attempts,
        fast_poll_seconds=fast_poll,
        background_poll_seconds=background_poll,
        state_db_url=(os.getenv(STATE_DB_URL_ENV) or "").strip() or DEFAULT_STATE_DB_URL,
    )


def _normalize_base_url(raw_value: Optional[str]) -> str:
    candidate = (raw_value or "").strip().rstrip("/")
    if not candidate:
        return DEFAULT_API_BASE_URL
    if not candidate.startswith(("http://", "https://")):
        raise ClientSettingsError(f"{API_BASE_URL_ENV} must be an http(s) URL (received '{candidate}')")
    return candidate


def _parse_float(raw_value: Optional[str], default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return float(raw_value)
    except ValueError as exc:
        raise ClientSettingsError(f"{env_key} must be numeric (received '{raw_value}')") from exc


def _parse_int(raw_value: Optional[str], default: int, env_key: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ClientSettingsError(f"{env_key} must be an integer (received '{raw_value}')") from exc
