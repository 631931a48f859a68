"""
Secret redaction for provider metadata stored on shadow rows.

Only metadata that has passed through `sanitize_provider_metadata` may be
persisted. Keys naming credentials are dropped together with their subtree;
everything else is kept as-is.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

SECRET_KEYS = frozenset({
    "gitToken",
    "gitPassword",
    "gitPrivateKey",
    "cursorApiKey",
    "keycloakClientSecret",
    "apiKey",
    "token",
    "secret",
    "password",
})

SECRET_KEY_PATTERNS = (
    re.compile(r"password", re.IGNORECASE),
    re.compile(r"token", re.IGNORECASE),
    re.compile(r"secret", re.IGNORECASE),
    re.compile(r"key$", re.IGNORECASE),
    re.compile(r"credential", re.IGNORECASE),
)

EMPTY_METADATA = "{}"


def is_secret_key(key: str) -> bool:
    if key in SECRET_KEYS:
        return True
    return any(pattern.search(key) for pattern in SECRET_KEY_PATTERNS)


def _strip_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_metadata_dict(value)
    if isinstance(value, list):
        return [_strip_value(item) for item in value]
    return value


def sanitize_metadata_dict(metadata: dict) -> dict:
    """Return a copy of `metadata` without secret-shaped keys at any depth."""
    cleaned: dict = {}
    for key, value in metadata.items():
        if isinstance(key, str) and is_secret_key(key):
            continue
        cleaned[key] = _strip_value(value)
    return cleaned


def sanitize_provider_metadata(raw: Optional[str]) -> str:
    """
    Sanitize a JSON object string. Never raises.

    Empty, malformed, and non-object input all collapse to "{}".
    """
    if raw is None or not isinstance(raw, str) or not raw.strip():
        return EMPTY_METADATA
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return EMPTY_METADATA
    if not isinstance(parsed, dict):
        return EMPTY_METADATA
    return json.dumps(sanitize_metadata_dict(parsed), separators=(",", ":"))


__all__ = [
    "SECRET_KEYS",
    "SECRET_KEY_PATTERNS",
    "EMPTY_METADATA",
    "is_secret_key",
    "sanitize_metadata_dict",
    "sanitize_provider_metadata",
]
