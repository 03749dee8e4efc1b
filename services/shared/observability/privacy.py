"""Helpers that keep free-text user input out of log records."""

import hashlib
import json
from collections.abc import Iterable, Mapping
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


def describe_utterance(text: str | None) -> dict[str, Any]:
    """Log-safe stand-in for a chat message: a short fingerprint and its length."""

    raw = text or ""
    return {
        "utterance_sha256": hash_payload(raw)[:16],
        "utterance_length": len(raw),
    }


def redact_fields(payload: Mapping[str, Any], allowed_keys: Iterable[str]) -> dict[str, Any]:
    """
    Shallow copy that keeps whitelisted keys and masks the rest (e.g. notes in a patch).
    """

    whitelist = set(allowed_keys)
    return {key: (value if key in whitelist else REDACTED) for key, value in payload.items()}
