"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Optional, TypeVar
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

T = TypeVar("T")


class CreateOrder(BaseModel):
    invoice_id: str = Field(min_length=1)
    subject: str = Field(min_length=1, max_length=255)
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    merchant_context: dict[str, Any] = Field(default_factory=dict)

    @field_validator("invoice_id", "subject")
    @classmethod
    def _strip(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("must not be blank")
        return s

    def to_order_data(self) -> dict[str, Any]:
        return {"txn_ref": self.invoice_id, "amount": self.amount, "subject": self.subject}


class VerifyPaymentRequest(BaseModel):
    transaction_id: str = Field(min_length=1)
    merchant_context: dict[str, Any] = Field(default_factory=dict)


class QueryOrderRequest(BaseModel):
    order_id: str = Field(min_length=1)
    merchant_context: dict[str, Any] = Field(default_factory=dict)


class AuthTokenRequest(BaseModel):
    access_token: str = Field(min_length=1)
    merchant_context: dict[str, Any] = Field(default_factory=dict)


class WebhookPayload(BaseModel):
    """Inbound payment notification body; unknown fields are preserved."""

    merch_order_id: Optional[str] = None
    trade_status: Optional[str] = None
    total_amount: Optional[str] = None
    trade_no: Optional[str] = None
    timestamp: Optional[str] = None

    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)


class WebhookEvent(BaseModel):
    payload: WebhookPayload
    raw_body: bytes
    signature: Optional[str] = None
    timestamp: Optional[str] = None
    client_ip: Optional[str] = None
    merchant_context: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class WebhookAck(BaseModel):
    """Acknowledgement shape expected by the gateway ("0" accepted, "1" rejected)."""

    code: str
    message: str

    @classmethod
    def accepted(cls) -> "WebhookAck":
        return cls(code="0", message="Success")

    @classmethod
    def rejected(cls, reason: str) -> "WebhookAck":
        return cls(code="1", message=reason)


class VerificationJobView(BaseModel):
    transaction_ref: str
    state: str
    attempts: int
    last_status: Optional[str] = None
    created_at: Any = None
    updated_at: Any = None


class GatewayOutcome(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"


@dataclass(frozen=True)
class GatewayResult(Generic[T]):
    """Discriminated gateway result.

    ``EMPTY`` means the gateway answered without the endpoint's success marker
    ("nothing yet"); ``ERROR`` means transport, token or response-shape failure.
    """

    outcome: GatewayOutcome
    data: Optional[T] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, data: T) -> "GatewayResult[T]":
        return cls(GatewayOutcome.SUCCESS, data=data)

    @classmethod
    def empty(cls, reason: str = "no_result") -> "GatewayResult[T]":
        return cls(GatewayOutcome.EMPTY, reason=reason)

    @classmethod
    def error(cls, reason: str) -> "GatewayResult[T]":
        return cls(GatewayOutcome.ERROR, reason=reason)

    @property
    def ok(self) -> bool:
        return self.outcome is GatewayOutcome.SUCCESS


def format_amount(amount: Decimal | float | int | str) -> str:
    """Render an amount the way the gateway expects (two decimals, no exponent)."""
    return f"{Decimal(str(amount)).quantize(Decimal('0.01')):f}"
