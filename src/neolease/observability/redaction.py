"""Redaction helpers for safe logging. All external data must pass through these."""

import re
from typing import Any

# Patterns that should never appear in logs
_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# HMAC-SHA256 hex digests (webhook and checkout signatures)
_HEX_DIGEST_PATTERN = re.compile(r"\b[0-9a-fA-F]{40,}\b")

_REDACTED = "[REDACTED]"

# Keys whose values are always dropped, whatever they look like
_SECRET_KEYS = frozenset(
    {"signature", "provider_signature", "razorpay_signature", "secret", "key_secret"}
)


def redact_string(value: str) -> str:
    """Redact PII and signature patterns from a string."""
    result = _HEX_DIGEST_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # Structure only, never values
        return f"dict(keys={sorted(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted; None is dropped."""
    return {
        k: _REDACTED if k in _SECRET_KEYS else redact_value(v)
        for k, v in kwargs.items()
        if v is not None
    }


def id_prefix(value: str | None, length: int = 8) -> str:
    """Shorten a provider identifier for log lines."""
    return value[:length] if value else ""
