import json
import time
from decimal import Decimal

import pytest

from application.dtos.payments import CreateOrder, GatewayResult, WebhookEvent, WebhookPayload
from application.services.merchant_resolver import SingleTenantResolver
from application.services.payment_service import PaymentService
from application.services.verification_worker import VerificationWorker
from application.services.webhook_authenticator import WebhookAuthenticator, compute_signature
from core.settings import VerifyPaymentQueueSettings
from domain.common.exceptions import WebhookAuthenticationError
from infrastructure.external.payments.signer import RsaSigner


class StubGateway:
    provider = "stub"

    def __init__(self, order_status: str = "PAY_SUCCESS"):
        self.order_status = order_status
        self.orders: list[dict] = []
        self.verified: list[str] = []

    async def create_order(self, order_data, context=None):
        self.orders.append(dict(order_data))
        return GatewayResult.success("appid=a&sign=s")

    async def verify_payment(self, reference, context=None):
        self.verified.append(reference)
        return GatewayResult.success({"order_status": self.order_status, "total_amount": "100.00"})

    async def query_order(self, order_id, context=None):
        return GatewayResult.empty()

    async def get_auth_token(self, access_token, context=None):
        return GatewayResult.error("token_unavailable")


class RecordingDispatcher:
    def __init__(self):
        self.calls = []

    def enqueue_payment_verification(self, transaction_ref, webhook_data, client_ip=None, context=None):
        self.calls.append((transaction_ref, dict(webhook_data), client_ip, dict(context or {})))


async def _no_sleep(delay):
    return None


def _service(settings, sink, gateway=None, secret=None, dispatcher=None, **queue):
    gateway = gateway or StubGateway()
    queue_settings = VerifyPaymentQueueSettings(**{"retry_schedule": [0], **queue})
    worker = VerificationWorker.from_settings(queue_settings, gateway, sink, sleep=_no_sleep)
    return PaymentService(
        gateway=gateway,
        resolver=SingleTenantResolver(settings, RsaSigner()),
        authenticator=WebhookAuthenticator(secret),
        worker=worker,
        event_sink=sink,
        queue=queue_settings,
        dispatcher=dispatcher,
    )


def _event(payload: dict, **kwargs) -> WebhookEvent:
    body = json.dumps(payload).encode()
    return WebhookEvent(payload=WebhookPayload.model_validate(payload), raw_body=body, **kwargs)


@pytest.mark.asyncio
async def test_initiate_payment_emits_event(make_settings, event_sink):
    gateway = StubGateway()
    service = _service(make_settings(), event_sink, gateway)
    order = CreateOrder(invoice_id="INV1", subject="Coffee", amount=Decimal("25.50"), merchant_context={"branch_id": 3})

    result = await service.initiate_payment(order)

    assert result.ok
    assert gateway.orders == [{"txn_ref": "INV1", "amount": Decimal("25.50"), "subject": "Coffee"}]
    (name, payload), = event_sink.events()
    assert name == "payment.initiated"
    assert payload["invoice_id"] == "INV1"
    assert payload["context"] == {"branch_id": 3}


@pytest.mark.asyncio
async def test_webhook_without_order_id_is_rejected(make_settings, event_sink):
    service = _service(make_settings(), event_sink)
    ack = await service.handle_webhook(_event({"trade_status": "Completed"}))
    assert ack.code == "1"
    assert ack.message == "Missing order ID"
    assert [n for n, _ in event_sink.events()] == ["payment.webhook_received"]


@pytest.mark.asyncio
async def test_non_trigger_status_is_acknowledged_without_job(make_settings, event_sink):
    service = _service(make_settings(), event_sink)
    ack = await service.handle_webhook(_event({"merch_order_id": "TXN1", "trade_status": "Pending"}))
    assert ack.code == "0"
    assert service.job_status("TXN1") is None


@pytest.mark.asyncio
async def test_empty_trigger_list_accepts_every_status(make_settings, event_sink):
    gateway = StubGateway()
    service = _service(make_settings(), event_sink, gateway, enabled=False, trigger_statuses=[])
    await service.handle_webhook(_event({"merch_order_id": "TXN1", "trade_status": "Pending"}))
    assert gateway.verified == ["TXN1"]


@pytest.mark.asyncio
async def test_disabled_queue_verifies_inline_once(make_settings, event_sink):
    gateway = StubGateway(order_status="WAIT_PAY")
    service = _service(make_settings(), event_sink, gateway, enabled=False)
    ack = await service.handle_webhook(_event({"merch_order_id": "TXN1", "trade_status": "Completed"}))
    assert ack.code == "0"
    assert gateway.verified == ["TXN1"]
    assert [n for n, _ in event_sink.events()] == ["payment.webhook_received", "payment.verification_gave_up"]


@pytest.mark.asyncio
async def test_celery_backend_dispatches(make_settings, event_sink):
    dispatcher = RecordingDispatcher()
    service = _service(make_settings(), event_sink, backend="celery", dispatcher=dispatcher)
    payload = {"merch_order_id": "TXN1", "trade_status": "Completed", "total_amount": "100.00"}
    await service.handle_webhook(_event(payload, client_ip="10.0.0.1", merchant_context={"branch_id": "7"}))

    (ref, data, ip, context), = dispatcher.calls
    assert ref == "TXN1"
    assert data["total_amount"] == "100.00"
    assert ip == "10.0.0.1"
    assert context == {"branch_id": "7"}


def test_celery_backend_requires_dispatcher(make_settings, event_sink):
    with pytest.raises(ValueError):
        _service(make_settings(), event_sink, backend="celery")


@pytest.mark.asyncio
async def test_webhook_signature_is_enforced(make_settings, event_sink):
    service = _service(make_settings(), event_sink, secret="whsec")
    payload = {"merch_order_id": "TXN1", "trade_status": "Completed"}

    with pytest.raises(WebhookAuthenticationError):
        await service.handle_webhook(_event(payload, signature="bad", timestamp="1"))
    assert event_sink.events() == []


@pytest.mark.asyncio
async def test_signed_webhook_is_accepted(make_settings, event_sink):
    service = _service(make_settings(), event_sink, secret="whsec", enabled=False)
    payload = {"merch_order_id": "TXN1", "trade_status": "Completed"}
    event = _event(payload)
    ts = str(int(time.time()))
    event = event.model_copy(update={"signature": compute_signature(event.raw_body, ts, "whsec"), "timestamp": ts})

    ack = await service.handle_webhook(event)
    assert ack.code == "0"
    assert "payment.verified" in [n for n, _ in event_sink.events()]


@pytest.mark.asyncio
async def test_validate_configuration(make_settings, event_sink):
    service = _service(make_settings(), event_sink)
    assert await service.validate_configuration()
    incomplete = _service(make_settings(single_merchant={"rsa_private_key": None}), event_sink)
    assert not await incomplete.validate_configuration()


@pytest.mark.asyncio
async def test_manual_job_with_celery_backend_is_dispatched(make_settings, event_sink):
    dispatcher = RecordingDispatcher()
    gateway = StubGateway()
    service = _service(make_settings(), event_sink, gateway=gateway, backend="celery", dispatcher=dispatcher)

    view = service.submit_verification("TXN5", {"merchant_id": 3})

    assert view.transaction_ref == "TXN5"
    assert view.state == "pending"
    assert dispatcher.calls == [("TXN5", {}, None, {"merchant_id": 3})]
    assert service.job_status("TXN5") is None
    assert gateway.verified == []


@pytest.mark.asyncio
async def test_manual_job_runs_on_local_worker(make_settings, event_sink):
    service = _service(make_settings(), event_sink)

    view = service.submit_verification("TXN6")

    assert view.transaction_ref == "TXN6"
    assert view.state == "pending"
    await service.aclose()
