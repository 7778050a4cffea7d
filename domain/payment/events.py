"""
Payment domain events.

Dataclass events record important payment lifecycle facts for downstream handling
(e.g., messaging, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar, Optional
import uuid


@dataclass
class PaymentEvent:
    name: ClassVar[str] = "payment.event"

    event_id: str = field(default_factory=lambda: str(uuid.uuid4()), kw_only=True)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)

    def to_payload(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload


@dataclass
class PaymentInitiated(PaymentEvent):
    name: ClassVar[str] = "payment.initiated"

    invoice_id: str
    order_data: dict = field(default_factory=dict)
    context: dict = field(default_factory=dict)


@dataclass
class WebhookReceived(PaymentEvent):
    name: ClassVar[str] = "payment.webhook_received"

    payload: dict
    client_ip: Optional[str] = None


@dataclass
class PaymentVerified(PaymentEvent):
    name: ClassVar[str] = "payment.verified"

    transaction_ref: str
    result: dict = field(default_factory=dict)
    webhook_data: dict = field(default_factory=dict)


@dataclass
class PaymentVerificationFailed(PaymentEvent):
    name: ClassVar[str] = "payment.verification_failed"

    transaction_ref: str
    result: dict = field(default_factory=dict)


@dataclass
class PaymentVerificationGaveUp(PaymentEvent):
    name: ClassVar[str] = "payment.verification_gave_up"

    transaction_ref: str
    attempts: int
    last_status: Optional[str] = None
    webhook_data: dict = field(default_factory=dict)
