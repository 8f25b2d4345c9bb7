"""
Shared utilities for the PMS client.

This package contains code shared by the client library and its scripts:
- client_settings: Gateway, credential and polling configuration
- observability: Telemetry, logging, and privacy utilities
"""

from .client_settings import (
    DEFAULT_API_BASE_URL,
    DEFAULT_STATE_DB_URL,
    ClientSettings,
    ClientSettingsError,
    load_client_settings,
)

__all__ = [
    "DEFAULT_API_BASE_URL",
    "DEFAULT_STATE_DB_URL",
    "ClientSettings",
    "ClientSettingsError",
    "load_client_settings",
]
