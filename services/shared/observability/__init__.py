"""
Shared observability helpers (telemetry, privacy utilities, etc.).

Services import from this package to enable consistent instrumentation and
logging guardrails.
"""

from .privacy import describe_utterance, hash_payload, redact_fields
from .telemetry import (
    CORRELATION_ID_HEADER,
    RequestContextToken,
    bind_conversation_context,
    bind_request_context,
    ensure_request_id,
    get_tracer,
    reset_conversation_context,
    reset_request_context,
    setup_telemetry,
)

__all__ = [
    "describe_utterance",
    "hash_payload",
    "redact_fields",
    "CORRELATION_ID_HEADER",
    "RequestContextToken",
    "bind_conversation_context",
    "bind_request_context",
    "ensure_request_id",
    "get_tracer",
    "reset_conversation_context",
    "reset_request_context",
    "setup_telemetry",
]
