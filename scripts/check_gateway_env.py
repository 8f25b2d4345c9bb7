#!/usr/bin/env python3
"""
Diagnostic script to check the PMS client's gateway configuration.

Prints every variable the client reads, redacting credentials, then validates
them the same way the client does at startup. Exits non-zero when a required
value is missing or a value cannot be parsed.
"""

import os
import sys
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT / "services"))

from shared.client_settings import (  # noqa: E402
    API_BASE_URL_ENV,
    API_TOKEN_ENV,
    BACKGROUND_POLL_ENV,
    DEFAULT_API_BASE_URL,
    DEFAULT_STATE_DB_URL,
    FAST_POLL_ENV,
    MAX_ATTEMPTS_ENV,
    REQUEST_TIMEOUT_ENV,
    STATE_DB_URL_ENV,
    ClientSettingsError,
    load_client_settings,
)

REQUIRED_VARS = {
    API_BASE_URL_ENV: DEFAULT_API_BASE_URL,
    API_TOKEN_ENV: "<bearer token>",
}

OPTIONAL_VARS = {
    REQUEST_TIMEOUT_ENV: "30.0",
    MAX_ATTEMPTS_ENV: "3",
    FAST_POLL_ENV: "1.0",
    BACKGROUND_POLL_ENV: "10.0",
    STATE_DB_URL_ENV: DEFAULT_STATE_DB_URL,
}


def check_env_var(key: str) -> dict[str, Any]:
    """Check if an environment variable is set, redacting credentials."""
    value = os.getenv(key)
    is_set = value is not None and value.strip() != ""

    result = {"key": key, "is_set": is_set, "value": value if is_set else None, "is_redacted": False}
    if is_set and ("TOKEN" in key.upper() or "SECRET" in key.upper()):
        result["value"] = f"{value[:4]}...{value[-4:]}" if len(value) > 11 else "***REDACTED***"
        result["is_redacted"] = True
    return result


def main() -> int:
    """Check the client's environment and report status."""
    print("=" * 70)
    print("PMS Client Environment Diagnostic")
    print("=" * 70)
    print()

    print("REQUIRED VARIABLES:")
    print("-" * 70)
    issues = []
    for key, example in REQUIRED_VARS.items():
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:35} = {result['value']}")
        else:
            print(f"✗ {key:35} = NOT SET (e.g. {example})")
            issues.append(f"{key} is not set")

    print()
    print("OPTIONAL VARIABLES:")
    print("-" * 70)
    for key, default in OPTIONAL_VARS.items():
        result = check_env_var(key)
        if result["is_set"]:
            print(f"✓ {key:35} = {result['value']}")
        else:
            print(f"○ {key:35} = NOT SET (default: {default})")

    try:
        settings = load_client_settings()
    except ClientSettingsError as exc:
        issues.append(str(exc))
    else:
        print()
        print(f"Gateway: {settings.api_base_url}")
        print(f"Polling: fast every {settings.fast_poll_seconds}s, background every {settings.background_poll_seconds}s")

    print()
    print("=" * 70)
    if issues:
        print("❌ ISSUES FOUND:")
        for issue in issues:
            print(f"   - {issue}")
        return 1

    print("✓ Client configuration is valid!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
