import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from api.routes.payments import ip_allowed
from application.services.merchant_resolver import SingleTenantResolver
from application.services.payment_service import PaymentService
from application.services.verification_worker import VerificationWorker
from application.services.webhook_authenticator import WebhookAuthenticator, compute_signature
from infrastructure.cache.token_cache import InMemoryTokenStore
from infrastructure.events import InMemoryEventSink
from infrastructure.external.payments.signer import RsaSigner
from infrastructure.external.payments.telebirr_client import (
    PREORDER_PATH,
    TOKEN_PATH,
    VERIFY_PATH,
    TelebirrClient,
)

SECRET = "whsec"


def gateway_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path.endswith(TOKEN_PATH):
        return httpx.Response(200, json={"token": "fabric-token"})
    if path.endswith(PREORDER_PATH):
        return httpx.Response(200, json={"biz_content": {"prepay_id": "PP1"}})
    if path.endswith(VERIFY_PATH):
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={"code": "0", "data": {"order_status": "PAY_SUCCESS", "out_trade_no": body["outTradeNo"], "total_amount": "100.00"}},
        )
    return httpx.Response(404, json={"code": "404"})


async def _no_sleep(delay):
    return None


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def api(make_settings, sink, request):
    from main import app

    overrides = dict(getattr(request, "param", {}))
    webhook = {"secret": SECRET, **overrides.pop("webhook", {})}
    settings = make_settings(webhook=webhook, queue={"verify_payment": {"retry_schedule": [0]}}, **overrides)
    signer = RsaSigner()
    resolver = SingleTenantResolver(settings, signer)
    gateway = TelebirrClient(
        settings,
        resolver,
        signer=signer,
        token_store=InMemoryTokenStore(),
        transport=httpx.MockTransport(gateway_handler),
    )
    queue = settings.queue.verify_payment
    app.state.telebirr_settings = settings
    app.state.payment_service = PaymentService(
        gateway=gateway,
        resolver=resolver,
        authenticator=WebhookAuthenticator(settings.webhook.secret, settings.webhook.tolerance_seconds),
        worker=VerificationWorker.from_settings(queue, gateway, sink, sleep=_no_sleep),
        event_sink=sink,
        queue=queue,
    )
    with TestClient(app) as client:
        yield client
    app.state.payment_service = None
    app.state.telebirr_settings = None


def _signed_headers(body: bytes, ts: int | None = None) -> dict[str, str]:
    stamp = str(ts if ts is not None else int(time.time()))
    return {
        "Content-Type": "application/json",
        "X-Signature": compute_signature(body, stamp, SECRET),
        "X-Timestamp": stamp,
    }


def _wait_for_job(client: TestClient, ref: str, state: str) -> dict:
    for _ in range(200):
        resp = client.get(f"/api/v1/telebirr/jobs/{ref}")
        if resp.status_code == 200 and resp.json()["data"]["state"] == state:
            return resp.json()["data"]
        time.sleep(0.01)
    raise AssertionError(f"job {ref} never reached {state}")


def test_create_order(api):
    resp = api.post(
        "/api/v1/telebirr/order",
        json={"invoice_id": "INV-1", "subject": "Coffee", "amount": "100.00"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["invoice_id"] == "INV-1"
    assert data["amount"] == "100.00"
    assert "prepay_id=PP1" in data["raw_request"]
    assert resp.headers["X-Request-ID"]


def test_create_order_validation_error(api):
    resp = api.post("/api/v1/telebirr/order", json={"invoice_id": "INV-1", "subject": "Coffee", "amount": "-1"})
    assert resp.status_code == 422


def test_signed_webhook_triggers_verification(api, sink):
    body = json.dumps({"merch_order_id": "TXN1", "trade_status": "Completed", "total_amount": "100.00"}).encode()
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=_signed_headers(body))

    assert resp.status_code == 200
    assert resp.json() == {"code": "0", "message": "Success"}

    job = _wait_for_job(api, "TXN1", "succeeded")
    assert job["attempts"] == 1
    verified = sink.events("payment.verified")
    assert len(verified) == 1
    payload = verified[0][1]
    assert payload["transaction_ref"] == "TXN1"
    assert payload["result"]["total_amount"] == "100.00"


@pytest.mark.parametrize("api", [{"webhook": {"secret": None}}], indirect=True)
def test_unsigned_webhook_accepted_without_secret(api, sink):
    resp = api.post("/api/v1/telebirr/webhook", json={"merch_order_id": "TXN1", "trade_status": "Completed"})

    assert resp.status_code == 200
    assert resp.json() == {"code": "0", "message": "Success"}
    _wait_for_job(api, "TXN1", "succeeded")
    names = [name for name, _ in sink.events()]
    assert "payment.webhook_received" in names
    verified = sink.events("payment.verified")
    assert len(verified) == 1
    assert verified[0][1]["transaction_ref"] == "TXN1"
    assert verified[0][1]["result"]["total_amount"] == "100.00"


def test_telebirr_header_names_are_accepted(api):
    body = json.dumps({"merch_order_id": "TXN2", "trade_status": "Pending"}).encode()
    headers = _signed_headers(body)
    headers = {
        "Content-Type": "application/json",
        "X-Telebirr-Signature": headers["X-Signature"],
        "X-Telebirr-Timestamp": headers["X-Timestamp"],
    }
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=headers)
    assert resp.json()["code"] == "0"


def test_invalid_signature_is_rejected(api, sink):
    body = json.dumps({"merch_order_id": "TXN1", "trade_status": "Completed"}).encode()
    headers = _signed_headers(body)
    headers["X-Signature"] = "0" * 64
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=headers)

    assert resp.status_code == 401
    assert resp.json() == {"code": "1", "message": "Invalid signature"}
    assert sink.events() == []


def test_stale_webhook_is_rejected(api):
    body = json.dumps({"merch_order_id": "TXN1", "trade_status": "Completed"}).encode()
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=_signed_headers(body, int(time.time()) - 301))
    assert resp.status_code == 401


def test_webhook_missing_order_id(api):
    body = json.dumps({"trade_status": "Completed"}).encode()
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=_signed_headers(body))
    assert resp.status_code == 200
    assert resp.json() == {"code": "1", "message": "Missing order ID"}


@pytest.mark.parametrize("api", [{"webhook": {"ip_allowlist": ["196.188.0.0/16"]}}], indirect=True)
def test_webhook_ip_allowlist(api):
    body = b"{}"
    resp = api.post("/api/v1/telebirr/webhook", content=body, headers=_signed_headers(body))
    assert resp.status_code == 403
    assert resp.json() == {"code": "1", "message": "Forbidden"}


def test_ip_allowed():
    assert ip_allowed("10.0.0.1", None)
    assert ip_allowed("10.0.0.1", [])
    assert ip_allowed("196.188.12.4", ["196.188.0.0/16"])
    assert ip_allowed("10.0.0.1", ["10.0.0.1"])
    assert not ip_allowed("10.0.0.2", ["10.0.0.1", "not-an-ip"])
    assert not ip_allowed(None, ["10.0.0.1"])


def test_auth_route_hidden_when_feature_disabled(api):
    resp = api.post("/api/v1/telebirr/auth", json={"access_token": "abc"})
    assert resp.status_code == 404


def test_manual_job_and_status(api):
    resp = api.post("/api/v1/telebirr/jobs/TXN9", json={"merchant_context": {}})
    assert resp.status_code == 200
    assert resp.json()["data"]["transaction_ref"] == "TXN9"
    _wait_for_job(api, "TXN9", "succeeded")

    assert api.get("/api/v1/telebirr/jobs/UNKNOWN").status_code == 404
    assert api.post("/api/v1/telebirr/jobs/TXN9/cancel").json()["data"]["cancelled"] is False

    status = api.get("/api/v1/telebirr/status").json()["data"]
    assert status == {"mode": "single", "configured": True}


def test_health(api):
    resp = api.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy", "redis": "disabled"}
