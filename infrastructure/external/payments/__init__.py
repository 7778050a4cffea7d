"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.ports.payment_gateway import MerchantConfigResolver, PaymentGateway
from core.settings import TelebirrSettings
from infrastructure.cache.token_cache import TokenStore


def get_payment_gateway(
    settings: TelebirrSettings,
    resolver: MerchantConfigResolver,
    *,
    token_store: Optional[TokenStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    provider: str = "telebirr",
) -> PaymentGateway:
    name = provider.lower()
    if name == "telebirr":
        from .telebirr_client import TelebirrClient
        return TelebirrClient(settings, resolver, token_store=token_store, transport=transport)
    raise ValueError(f"Unsupported payment provider: {name}")
