"""
Helpers that strip credentials out of anything headed for the logs.
"""
from __future__ import annotations

from typing import Any, Mapping

SENSITIVE_KEYS = frozenset(
    {
        "password",
        "token",
        "secret",
        "key",
        "rsa_private_key",
        "rsa_public_key",
        "app_secret",
        "appsecret",
        "access_token",
        "sign",
        "authorization",
    }
)

MASK = "***"


def preview_secret(value: str | None, visible: int = 8) -> str:
    """Return the first few characters plus the total length, never the whole value."""
    if not value:
        return "<empty>"
    return f"{value[:visible]}...(len={len(value)})"


def redact(data: Any, *, enabled: bool = True) -> Any:
    """Recursively mask sensitive keys in mappings and sequences.

    ``enabled=False`` returns the data untouched (``logging.sensitive_data``).
    """
    if not enabled:
        return data
    if isinstance(data, Mapping):
        cleaned = {}
        for k, v in data.items():
            if str(k).lower() in SENSITIVE_KEYS:
                cleaned[k] = MASK if v not in (None, "") else v
            else:
                cleaned[k] = redact(v, enabled=enabled)
        return cleaned
    if isinstance(data, (list, tuple)):
        return type(data)(redact(item, enabled=enabled) for item in data)
    return data


__all__ = ["SENSITIVE_KEYS", "MASK", "preview_secret", "redact"]
