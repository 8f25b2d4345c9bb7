import hashlib
import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

REDACTED = "[REDACTED]"


def hash_payload(value: Any) -> str:
    """
    Return a stable SHA-256 hash for the provided payload without leaking contents.

    Strings are encoded as UTF-8, bytes are used as-is, and arbitrary objects are
    serialized via JSON (falling back to repr()) before hashing.
    """

    if value is None:
        normalized = b"null"
    elif isinstance(value, bytes):
        normalized = value
    elif isinstance(value, str):
        normalized = value.encode("utf-8")
    else:
        try:
            normalized = json.dumps(value, sort_keys=True, default=str).encode("utf-8")
        except TypeError:
            normalized = repr(value).encode("utf-8")

    return hashlib.sha256(normalized).hexdigest()


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """
    Produce a shallow copy that preserves only the whitelisted keys and redacts the rest.
    """

    whitelist = set(allowed_keys)
    return {key: value if key in whitelist else REDACTED for key, value in payload.items()}


def describe_month_payload(months: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    """
    Summarize a serialized month/source payload for logging.

    Practice names and production figures stay out of the logs; only the shape
    and a content hash are reported.
    """

    return {
        "month_count": len(months),
        "source_count": sum(len(month.get("sources") or []) for month in months),
        "months": [month.get("month") for month in months],
        "payload_sha256": hash_payload(list(months)),
    }
