"""Redaction helpers for safe logging. All external data must pass through these."""

import re
from typing import Any

_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# Phone numbers with separators or a leading +.
_PHONE_PATTERN = re.compile(r"\+\d[\d\s\-()]{8,}\d|\b\d{2,4}[\s\-]\d{3,4}[\s\-]\d{3,5}\b")
# Bare digit runs long enough to be a bank account or card number.
_ACCOUNT_NUMBER_PATTERN = re.compile(r"\b\d{8,20}\b")

_REDACTED = "[REDACTED]"

# Keys whose values are never logged, whatever their shape.
_SENSITIVE_KEYS = frozenset({
    "account_number",
    "account_holder",
    "email",
    "phone",
    "authorization",
    "signature",
})


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _EMAIL_PATTERN.sub(_REDACTED, value)
    result = _PHONE_PATTERN.sub(_REDACTED, result)
    result = _ACCOUNT_NUMBER_PATTERN.sub(_REDACTED, result)
    return result


def mask_account_number(account_number: str) -> str:
    """Show only the last four digits, e.g. '******7890'."""
    digits = account_number.strip()
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]


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
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {
        k: _REDACTED if k.lower() in _SENSITIVE_KEYS else redact_value(v)
        for k, v in kwargs.items()
    }
