"""
Shared observability helpers (telemetry, privacy utilities, etc.).

The client library and its scripts import from this package to get consistent
instrumentation and logging guardrails.
"""

from .privacy import describe_month_payload, hash_payload, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    bind_request_context,
    current_request_id,
    ensure_request_id,
    get_tracer,
    new_request_id,
    reset_request_context,
    setup_telemetry,
)

__all__ = [
    "describe_month_payload",
    "hash_payload",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "bind_request_context",
    "current_request_id",
    "ensure_request_id",
    "get_tracer",
    "new_request_id",
    "reset_request_context",
    "setup_telemetry",
]
