"""Log redaction utilities for sensitive data.

Used before request payloads, upstream errors and client messages reach the
logs, so API keys and contact details never land in log files.
"""

import re
from typing import Any, Dict, Optional, Set


# Patterns for sensitive data
_REDACTION_PATTERNS = [
    # API keys
    (re.compile(r'AIza[0-9A-Za-z_-]{30,}'), '[REDACTED:google_key]'),
    (re.compile(r'sk-[a-zA-Z0-9_-]{20,}'), '[REDACTED:api_key]'),
    # Query-string keys (Gemini REST calls carry ?key=...)
    (re.compile(r'([?&]key=)[^&\s"]+'), r'\1[REDACTED]'),
    # Generic bearer tokens
    (re.compile(r'Bearer\s+[a-zA-Z0-9._-]{20,}'), 'Bearer [REDACTED]'),
    # Email addresses
    (re.compile(r'[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}'), '[REDACTED:email]'),
    # Phone numbers (US format)
    (re.compile(r'\b(?:\+1)?[\s.-]?\(?\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b'), '[REDACTED:phone]'),
]

_DEFAULT_SENSITIVE_KEYS = {
    "password", "secret", "token", "api_key", "apikey",
    "authorization", "cookie", "x-goog-api-key",
}


def redact_string(text: str) -> str:
    """Redact sensitive patterns from a string."""
    if not isinstance(text, str):
        return text
    result = text
    for pattern, replacement in _REDACTION_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


def redact_dict(data: Dict[str, Any], sensitive_keys: Optional[Set[str]] = None) -> Dict[str, Any]:
    """Redact sensitive values from a dictionary.

    Args:
        data: Dictionary to redact
        sensitive_keys: Set of key names whose values should be fully redacted
    """
    if sensitive_keys is None:
        sensitive_keys = _DEFAULT_SENSITIVE_KEYS

    result = {}
    for key, value in data.items():
        key_lower = key.lower()
        if any(sk in key_lower for sk in sensitive_keys):
            result[key] = "[REDACTED]"
        elif isinstance(value, str):
            result[key] = redact_string(value)
        elif isinstance(value, dict):
            result[key] = redact_dict(value, sensitive_keys)
        elif isinstance(value, list):
            result[key] = [
                redact_dict(item, sensitive_keys) if isinstance(item, dict)
                else redact_string(item) if isinstance(item, str)
                else item
                for item in value
            ]
        else:
            result[key] = value
    return result


def preview(text: str, limit: int = 48) -> str:
    """Short redacted preview of user-provided text for log lines."""
    if not text:
        return ""
    clipped = text if len(text) <= limit else text[:limit] + "..."
    return redact_string(clipped)
