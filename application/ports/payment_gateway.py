"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import GatewayResult
from domain.payment.entity import MerchantCredentials


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the mobile-money provider.

    Every call takes the caller's merchant context; "nothing yet" and failures
    come back as GatewayResult values rather than exceptions.
    """

    provider: str

    async def create_order(self, order_data: Mapping[str, Any], context: Optional[Mapping[str, Any]] = None) -> GatewayResult[str]: ...

    async def verify_payment(self, reference: str, context: Optional[Mapping[str, Any]] = None) -> GatewayResult[dict]: ...

    async def query_order(self, order_id: str, context: Optional[Mapping[str, Any]] = None) -> GatewayResult[dict]: ...

    async def get_auth_token(self, access_token: str, context: Optional[Mapping[str, Any]] = None) -> GatewayResult[dict]: ...


@runtime_checkable
class MerchantConfigResolver(Protocol):
    """Turns caller context into merchant credentials."""

    mode: str

    async def resolve(self, context: Optional[Mapping[str, Any]] = None) -> MerchantCredentials: ...
