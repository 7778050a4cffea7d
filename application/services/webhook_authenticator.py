"""
Webhook authenticity checks.

The sender signs ``body || timestamp`` with HMAC-SHA256 using the shared
secret and sends the hex digest plus the unix timestamp in headers. Requests
outside the tolerance window are rejected to bound replays. Without a
configured secret the check is skipped and every webhook is trusted.
"""
from __future__ import annotations

import hashlib
import hmac
import time
from typing import Callable, Optional, Union

from core.logging_config import get_logger
from domain.common.exceptions import WebhookAuthenticationError


logger = get_logger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300

Payload = Union[bytes, str]


def _as_bytes(value: Payload) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def compute_signature(payload: Payload, timestamp: str, secret: str) -> str:
    return hmac.new(
        _as_bytes(secret),
        _as_bytes(payload) + _as_bytes(timestamp),
        hashlib.sha256,
    ).hexdigest()


def check(
    payload: Optional[Payload],
    signature: Optional[str],
    timestamp_header: Optional[str],
    shared_secret: str,
    tolerance: int,
    now: float,
) -> Optional[str]:
    """Return the rejection reason, or None when the request is authentic."""
    if not signature or not timestamp_header:
        return "missing_headers"
    if not payload:
        return "empty_body"
    try:
        sent_at = int(str(timestamp_header).strip())
    except ValueError:
        return "invalid_timestamp"
    if abs(int(now) - sent_at) > tolerance:
        return "stale_timestamp"
    expected = compute_signature(payload, str(timestamp_header).strip(), shared_secret)
    if not hmac.compare_digest(expected, signature.strip().lower()):
        return "signature_mismatch"
    return None


def authenticate(
    payload: Optional[Payload],
    signature: Optional[str],
    timestamp_header: Optional[str],
    shared_secret: Optional[str],
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> bool:
    if not shared_secret:
        return True
    reason = check(
        payload,
        signature,
        timestamp_header,
        shared_secret,
        tolerance,
        time.time() if now is None else now,
    )
    return reason is None


class WebhookAuthenticator:
    provider = "telebirr"

    def __init__(
        self,
        secret: Optional[str],
        tolerance: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret
        self._tolerance = tolerance
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    def _reason(self, payload: Optional[Payload], signature: Optional[str], timestamp_header: Optional[str]) -> Optional[str]:
        if not self._secret:
            return None
        return check(payload, signature, timestamp_header, self._secret, self._tolerance, self._clock())

    def authenticate(
        self,
        payload: Optional[Payload],
        signature: Optional[str],
        timestamp_header: Optional[str],
    ) -> bool:
        reason = self._reason(payload, signature, timestamp_header)
        if reason is not None:
            logger.warning("webhook_authentication_failed", reason=reason)
            return False
        return True

    def verify_or_raise(
        self,
        payload: Optional[Payload],
        signature: Optional[str],
        timestamp_header: Optional[str],
    ) -> None:
        reason = self._reason(payload, signature, timestamp_header)
        if reason is not None:
            logger.warning("webhook_authentication_failed", reason=reason)
            raise WebhookAuthenticationError(reason, provider=self.provider)


__all__ = ["WebhookAuthenticator", "authenticate", "compute_signature"]
