"""
Canonical string construction for gateway request signing.

The gateway signs a flat ``k=v&k=v`` string built in two passes: top-level keys
are visited in sorted order with ``biz_content`` pairs spliced in as they were
encountered, then the resulting tokens are sorted again as whole strings.
"""
from __future__ import annotations

from typing import Any, Mapping

EXCLUDED_FIELDS = frozenset({"sign", "sign_type", "header", "refund_info", "openType", "raw_request"})
BIZ_CONTENT = "biz_content"


def _render(value: Any) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "1"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def canonicalize(fields: Mapping[str, Any]) -> str:
    """Build the exact string the gateway expects to be signed.

    An empty mapping yields an empty string.
    """
    if not fields:
        return ""

    pairs: list[str] = []
    for key in sorted(fields):
        if key in EXCLUDED_FIELDS:
            continue
        value = fields[key]
        if key == BIZ_CONTENT and isinstance(value, Mapping):
            for sub_key, sub_value in value.items():
                pairs.append(f"{sub_key}={_render(sub_value)}")
        else:
            pairs.append(f"{key}={_render(value)}")

    # Re-split so pairs whose values contain '&' sort the same way the gateway does.
    tokens = "&".join(pairs).split("&")
    return "&".join(sorted(tokens))


__all__ = ["EXCLUDED_FIELDS", "canonicalize"]
