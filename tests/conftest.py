"""Pytest configuration for root-level integration tests.

Adds the client src directory and the services root to sys.path so the
workflow tests import modules the same way the client's own tests do.
"""

import sys
from pathlib import Path

import pytest

SERVICES_ROOT = Path(__file__).resolve().parents[1] / "services"

SERVICE_PATHS = [
    SERVICES_ROOT / "pms-client" / "src",
    SERVICES_ROOT,
]

for path in reversed(SERVICE_PATHS):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
