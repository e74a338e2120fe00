"""
Sensitive data sanitization for chainindex.

Tenant database credentials, the webhook shared secret and the event source
API key must never reach log output or API responses. This module redacts
them from dictionaries before they are logged or echoed back.

Key matching is deliberately narrower than a generic "token" match: event
metadata carries fields such as ``token`` (a mint address) and ``tokens``
that are ordinary data in this domain.

Usage:
    from chainindex.core.sanitize import sanitize_sensitive_data

    safe = sanitize_sensitive_data({"host": "db", "password": "hunter2"})
"""

import json
import re
from typing import Any, Dict, List, Optional, Set

# Key fragments that mark a value as secret (case-insensitive, '-' == '_')
SENSITIVE_KEY_FRAGMENTS: Set[str] = {
    "password",
    "passwd",
    "secret",
    "api_key",
    "apikey",
    "authorization",
    "auth_header",
    "authheader",
    "credential",
    "private_key",
    "passphrase",
    "connection_string",
    "conninfo",
    "access_token",
    "refresh_token",
    "bearer",
}

SENSITIVE_PATTERNS: List[re.Pattern] = [
    re.compile(r"^Bearer\s+\S+", re.IGNORECASE),
    re.compile(r"^Basic\s+[A-Za-z0-9+/=]+", re.IGNORECASE),
    re.compile(r"^eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+$"),
    # libpq keyword/value or URI strings carrying a password
    re.compile(r"password\s*=", re.IGNORECASE),
    re.compile(r"^postgres(ql)?://[^:/@]+:[^@]+@", re.IGNORECASE),
]

REDACTED = "[REDACTED]"


def _is_sensitive_key(key: Any) -> bool:
    if not isinstance(key, str):
        return False
    key_lower = key.lower().replace("-", "_")
    return any(fragment in key_lower for fragment in SENSITIVE_KEY_FRAGMENTS)


def _is_sensitive_value(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    return any(pattern.search(value) for pattern in SENSITIVE_PATTERNS)


def sanitize_sensitive_data(
    data: Any,
    additional_keys: Optional[Set[str]] = None,
    redaction: str = REDACTED,
    max_depth: int = 20
) -> Any:
    """
    Recursively redact secrets from a dictionary or list.

    Returns a new object; the input is not modified.

    Example:
        >>> sanitize_sensitive_data({"username": "indexer", "password": "pw"})
        {'username': 'indexer', 'password': '[REDACTED]'}
    """
    extra = {k.lower() for k in (additional_keys or set())}
    return _sanitize_recursive(data, extra, redaction, max_depth, 0)


def _sanitize_recursive(data: Any, additional_keys: Set[str], redaction: str, max_depth: int, depth: int) -> Any:
    if depth >= max_depth:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if _is_sensitive_key(key) or (isinstance(key, str) and key.lower() in additional_keys):
                result[key] = redaction
            else:
                result[key] = _sanitize_recursive(value, additional_keys, redaction, max_depth, depth + 1)
        return result

    if isinstance(data, (list, tuple)):
        return [_sanitize_recursive(item, additional_keys, redaction, max_depth, depth + 1) for item in data]

    if _is_sensitive_value(data):
        return redaction
    return data


def sanitize_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Redact Authorization, Cookie and API key headers for logging."""
    sensitive_header_names = {
        "authorization",
        "proxy-authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
    }
    return {
        key: REDACTED if key.lower() in sensitive_header_names or _is_sensitive_key(key) else value
        for key, value in (headers or {}).items()
    }


def sanitize_for_logging(data: Any, max_length: int = 1000) -> str:
    """Sanitize and stringify ``data`` for a log line, truncated to ``max_length``."""
    sanitized = sanitize_sensitive_data(data)
    try:
        result = json.dumps(sanitized, default=str)
    except (TypeError, ValueError):
        result = str(sanitized)
    if len(result) > max_length:
        return result[:max_length - 3] + "..."
    return result


def mask_value(value: Optional[str], visible_start: int = 2, visible_end: int = 2) -> str:
    """Show only the edges of a secret, e.g. ``se...et``; short values are fully redacted."""
    if not value:
        return ""
    if len(value) <= visible_start + visible_end + 3:
        return REDACTED
    return f"{value[:visible_start]}...{value[-visible_end:]}"
