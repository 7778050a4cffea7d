"""
Composition of the payment stack from settings.

Used by the API lifespan and by Celery tasks so both run the same wiring:
signer → resolver (→ merchant store) → gateway client (→ token store) →
verification worker → PaymentService.
"""
from __future__ import annotations

import asyncio
from typing import Optional

import httpx

from application.ports.events import EventSink
from application.ports.tasks import VerificationDispatcher
from application.services.merchant_resolver import build_resolver
from application.services.payment_service import PaymentService
from application.services.verification_worker import Sleep, VerificationWorker
from application.services.webhook_authenticator import WebhookAuthenticator
from core.config import settings as app_settings
from core.logging_config import get_logger
from core.settings import TelebirrSettings
from domain.payment.repository import MerchantStore
from infrastructure.cache import get_redis_cache
from infrastructure.cache.token_cache import InMemoryTokenStore, RedisTokenStore, TokenStore
from infrastructure.events import InMemoryEventSink, RedisEventSink
from infrastructure.external.payments.signer import RsaSigner
from infrastructure.external.payments.telebirr_client import TelebirrClient


logger = get_logger(__name__)


async def _default_token_store() -> TokenStore:
    if not app_settings.redis.url:
        return InMemoryTokenStore()
    try:
        return RedisTokenStore(await get_redis_cache())
    except Exception as exc:
        logger.error("token_store_redis_unavailable", error=str(exc))
        return InMemoryTokenStore()


def _default_merchant_store() -> MerchantStore:
    from infrastructure.database import get_sessionmaker
    from infrastructure.repositories.merchant_repository import SQLAlchemyMerchantStore

    return SQLAlchemyMerchantStore(get_sessionmaker())


def _default_dispatcher(settings: TelebirrSettings) -> VerificationDispatcher:
    # imported lazily: the Celery app discovers tasks that import this module
    from infrastructure.tasks.utils.dispatcher import TaskDispatcher

    return TaskDispatcher(queue=settings.queue.verify_payment.queue)


def _default_event_sink() -> EventSink:
    cfg = app_settings.events
    if cfg.backend == "redis" or (cfg.backend == "auto" and app_settings.redis.url):
        return RedisEventSink(channel_prefix=cfg.channel_prefix)
    return InMemoryEventSink(history_size=cfg.history_size)


async def build_payment_service(
    settings: TelebirrSettings,
    *,
    event_sink: Optional[EventSink] = None,
    merchant_store: Optional[MerchantStore] = None,
    token_store: Optional[TokenStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    dispatcher: Optional[VerificationDispatcher] = None,
    sleep: Sleep = asyncio.sleep,
) -> PaymentService:
    signer = RsaSigner(allow_pkcs1_fallback=settings.signing.allow_pkcs1_fallback)

    if settings.mode == "multi" and merchant_store is None:
        merchant_store = _default_merchant_store()
    resolver = build_resolver(settings, signer, merchant_store)

    if token_store is None and settings.cache.tokens.enabled:
        token_store = await _default_token_store()
    gateway = TelebirrClient(settings, resolver, signer=signer, token_store=token_store, transport=transport)

    if event_sink is None:
        event_sink = _default_event_sink()

    queue = settings.queue.verify_payment
    worker = VerificationWorker.from_settings(queue, gateway, event_sink, sleep=sleep)
    authenticator = WebhookAuthenticator(settings.webhook.secret, settings.webhook.tolerance_seconds)

    if dispatcher is None and queue.enabled and queue.backend == "celery":
        dispatcher = _default_dispatcher(settings)

    logger.info(
        "payment_stack_built",
        mode=settings.mode,
        token_store=type(token_store).__name__ if token_store else None,
        event_sink=type(event_sink).__name__,
        verification_backend=queue.backend if queue.enabled else "disabled",
        webhook_auth=authenticator.enabled,
    )
    return PaymentService(
        gateway=gateway,
        resolver=resolver,
        authenticator=authenticator,
        worker=worker,
        event_sink=event_sink,
        queue=queue,
        dispatcher=dispatcher,
    )
