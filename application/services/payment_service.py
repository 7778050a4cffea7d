"""
Application service orchestrating payment use-cases.

This class depends only on application ports and DTOs. Gateway, resolver,
event sink and dispatcher implementations are provided by infrastructure and
injected from the composition root (API lifespan, Celery tasks), keeping
dependencies one-way.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.payments import (
    AuthTokenRequest,
    CreateOrder,
    GatewayResult,
    QueryOrderRequest,
    VerificationJobView,
    VerifyPaymentRequest,
    WebhookAck,
    WebhookEvent,
)
from application.ports.events import EventSink
from application.ports.payment_gateway import MerchantConfigResolver, PaymentGateway
from application.ports.tasks import VerificationDispatcher
from application.services.merchant_resolver import validate_configuration
from application.services.verification_worker import VerificationWorker, job_view
from application.services.webhook_authenticator import WebhookAuthenticator
from core.logging_config import get_logger
from core.settings import VerifyPaymentQueueSettings
from domain.payment.events import PaymentInitiated, WebhookReceived
from domain.payment.verification import VerificationJob


logger = get_logger(__name__)


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        resolver: MerchantConfigResolver,
        authenticator: WebhookAuthenticator,
        worker: VerificationWorker,
        event_sink: EventSink,
        queue: VerifyPaymentQueueSettings,
        dispatcher: Optional[VerificationDispatcher] = None,
    ) -> None:
        if queue.enabled and queue.backend == "celery" and dispatcher is None:
            raise ValueError("celery verification backend requires a dispatcher")
        self.gateway = gateway
        self.resolver = resolver
        self.authenticator = authenticator
        self.worker = worker
        self.events = event_sink
        self.queue = queue
        self.dispatcher = dispatcher

    async def initiate_payment(self, req: CreateOrder) -> GatewayResult[str]:
        order_data = req.to_order_data()
        logger.info("payment_initiate_request", invoice_id=req.invoice_id, provider=self.gateway.provider)
        result = await self.gateway.create_order(order_data, req.merchant_context)
        if not result.ok:
            logger.error("payment_initiate_failed", invoice_id=req.invoice_id, outcome=result.outcome.value, reason=result.reason)
            return result

        event = PaymentInitiated(req.invoice_id, order_data, dict(req.merchant_context))
        await self.events.emit(event.name, event.to_payload())
        logger.info(
            "payment_initiate_succeeded",
            invoice_id=req.invoice_id,
            raw_request_length=len(result.data or ""),
        )
        return result

    async def verify_payment(self, req: VerifyPaymentRequest) -> GatewayResult[dict]:
        logger.info("payment_verify_request", transaction_id=req.transaction_id, provider=self.gateway.provider)
        return await self.gateway.verify_payment(req.transaction_id, req.merchant_context)

    async def query_order(self, req: QueryOrderRequest) -> GatewayResult[dict]:
        logger.info("payment_query_request", order_id=req.order_id, provider=self.gateway.provider)
        return await self.gateway.query_order(req.order_id, req.merchant_context)

    async def get_auth_token(self, req: AuthTokenRequest) -> GatewayResult[dict]:
        logger.info("payment_auth_token_request", provider=self.gateway.provider)
        return await self.gateway.get_auth_token(req.access_token, req.merchant_context)

    async def validate_configuration(self, context: Optional[dict[str, Any]] = None) -> bool:
        return await validate_configuration(self.resolver, context)

    # ---- webhooks ------------------------------------------------------

    def _triggers_verification(self, trade_status: Optional[str]) -> bool:
        statuses = self.queue.trigger_statuses
        return not statuses or trade_status in statuses

    async def handle_webhook(self, event: WebhookEvent) -> WebhookAck:
        """Authenticate and acknowledge a payment notification.

        Raises WebhookAuthenticationError when the signature or timestamp is
        rejected. Verification is scheduled, never awaited, unless the queue is
        disabled, in which case one attempt runs inline.
        """
        self.authenticator.verify_or_raise(event.raw_body, event.signature, event.timestamp)

        payload = event.payload.model_dump()
        received = WebhookReceived(payload, event.client_ip)
        await self.events.emit(received.name, received.to_payload())

        order_id = event.payload.merch_order_id
        status = event.payload.trade_status
        logger.info("payment_webhook_received", order_id=order_id, status=status, client_ip=event.client_ip)

        if not order_id:
            logger.error("payment_webhook_missing_order_id")
            return WebhookAck.rejected("Missing order ID")

        if not self._triggers_verification(status):
            logger.info("payment_webhook_ignored", order_id=order_id, status=status)
            return WebhookAck.accepted()

        if not self.queue.enabled:
            job = VerificationJob(
                transaction_ref=order_id,
                webhook_data=payload,
                client_ip=event.client_ip,
                context=dict(event.merchant_context),
            )
            await self.worker.run_job(job, max_attempts=1)
            logger.info("payment_webhook_verified_inline", order_id=order_id, state=job.state.value)
        elif self.uses_celery:
            self.dispatcher.enqueue_payment_verification(order_id, payload, event.client_ip, event.merchant_context)
            logger.info("payment_verification_queued", order_id=order_id, backend="celery")
        else:
            self.worker.submit(order_id, payload, event.client_ip, event.merchant_context)
            logger.info("payment_verification_queued", order_id=order_id, backend="inline")
        return WebhookAck.accepted()

    # ---- verification jobs ---------------------------------------------

    @property
    def uses_celery(self) -> bool:
        return self.queue.backend == "celery" and self.dispatcher is not None

    def submit_verification(
        self,
        transaction_ref: str,
        context: Optional[dict[str, Any]] = None,
    ) -> VerificationJobView:
        """Manual trigger for a verification job (operator use).

        With the Celery backend the job is sent to a worker process; its
        progress is then not visible through ``job_status`` here.
        """
        if self.uses_celery:
            self.dispatcher.enqueue_payment_verification(transaction_ref, {}, None, context)
            logger.info("payment_verification_queued", order_id=transaction_ref, backend="celery", manual=True)
            return job_view(VerificationJob(transaction_ref=transaction_ref, context=dict(context or {})))
        return job_view(self.worker.submit(transaction_ref, {}, None, context))

    def job_status(self, transaction_ref: str) -> Optional[VerificationJobView]:
        return self.worker.get(transaction_ref)

    def cancel_job(self, transaction_ref: str) -> bool:
        return self.worker.cancel(transaction_ref)

    async def aclose(self) -> None:
        await self.worker.aclose()
        # Best-effort close underlying resources
        close = getattr(self.gateway, "aclose", None)
        if callable(close):
            await close()
