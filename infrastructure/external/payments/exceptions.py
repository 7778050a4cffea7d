"""
Exceptions for the gateway adapter mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class PaymentTransportError(BusinessException):
    def __init__(self, message: str, *, provider: str, endpoint: str | None = None, details: Optional[dict] = None):
        full_details = {"provider": provider, "endpoint": endpoint}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.TRANSPORT_ERROR,
            message=message,
            error_type="TransportError",
            details=full_details,
        )


class PaymentSignatureError(BusinessException):
    def __init__(self, message: str, *, provider: str, details: Optional[dict] = None, code: int = PaymentCode.SIGNATURE_ERROR):
        full_details = {"provider": provider}
        if details:
            full_details.update(details)
        super().__init__(
            code=code,
            message=message,
            error_type="SignatureError",
            details=full_details,
        )


class InvalidKeyError(PaymentSignatureError):
    """Key material could not be parsed. Details carry a redacted preview only."""

    def __init__(self, message: str, *, provider: str, key_preview: str | None = None):
        super().__init__(
            message,
            provider=provider,
            details={"key_preview": key_preview} if key_preview else None,
            code=PaymentCode.INVALID_KEY,
        )
        self.error_type = "InvalidKey"

