"""
Telebirr API routes.

Exposes order/verify/query/auth endpoints, the gateway webhook and
verification job controls via the application service. Keep this thin: no
signing or wire details here.
"""
from __future__ import annotations

import ipaddress
import json
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_payment_service, get_telebirr_settings, require_auth_feature
from api.middleware import get_request_id
from application.dtos.payments import (
    AuthTokenRequest,
    CreateOrder,
    GatewayOutcome,
    GatewayResult,
    QueryOrderRequest,
    VerifyPaymentRequest,
    WebhookAck,
    WebhookEvent,
    WebhookPayload,
)
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import error_json, success_response
from core.settings import TelebirrSettings
from domain.common.exceptions import WebhookAuthenticationError
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


router = APIRouter(prefix="/telebirr", tags=["Telebirr"])
logger = get_logger(__name__)

SIGNATURE_HEADERS = ("X-Signature", "X-Telebirr-Signature")
TIMESTAMP_HEADERS = ("X-Timestamp", "X-Telebirr-Timestamp")


def _first_header(request: Request, names: tuple[str, ...]) -> Optional[str]:
    for name in names:
        value = request.headers.get(name)
        if value:
            return value
    return None


def _client_ip(request: Request) -> Optional[str]:
    return getattr(request.state, "client_ip", None) or (request.client.host if request.client else None)


def ip_allowed(remote_ip: Optional[str], allowlist: Optional[list[str]]) -> bool:
    """Empty allowlist admits everyone; entries are single IPs or CIDR ranges."""
    if not allowlist:
        return True
    if not remote_ip:
        return False
    try:
        rip = ipaddress.ip_address(remote_ip)
    except ValueError:
        return False
    for entry in allowlist:
        try:
            if "/" in entry:
                if rip in ipaddress.ip_network(entry, strict=False):
                    return True
            elif rip == ipaddress.ip_address(entry):
                return True
        except ValueError:
            logger.warning("webhook_allowlist_entry_invalid", entry=entry)
            continue
    return False


def _failure(
    request: Request,
    result: GatewayResult,
    message: str,
    empty_status: int = 404,
    error_status: int = 502,
) -> JSONResponse:
    if result.outcome is GatewayOutcome.EMPTY:
        status_code, code = empty_status, BusinessCode.NOT_FOUND
    else:
        status_code, code = error_status, PaymentCode.PROVIDER_ERROR
    logger.warning("gateway_request_unsuccessful", path=request.url.path, outcome=result.outcome.value, reason=result.reason)
    return error_json(
        status_code,
        code,
        message,
        "GatewayError",
        details={"reason": result.reason} if request.app.debug else None,
        request_id=get_request_id(),
    )


@router.post("/order", summary="Create payment order")
async def create_order(request: Request, payload: CreateOrder, service: PaymentService = Depends(get_payment_service)):
    result = await service.initiate_payment(payload)
    if not result.ok:
        return _failure(request, result, "Failed to create Telebirr payment order", empty_status=500, error_status=500)
    return success_response(
        data={
            "invoice_id": payload.invoice_id,
            "raw_request": result.data,
            "amount": str(payload.amount),
            "subject": payload.subject,
        },
        message="Payment order created",
    )


@router.post("/verify", summary="Verify payment")
async def verify_payment(request: Request, payload: VerifyPaymentRequest, service: PaymentService = Depends(get_payment_service)):
    result = await service.verify_payment(payload)
    if not result.ok:
        return _failure(request, result, "Verification failed")
    return success_response(data=result.data, message="Payment verified")


@router.post("/query", summary="Query order status")
async def query_order(request: Request, payload: QueryOrderRequest, service: PaymentService = Depends(get_payment_service)):
    result = await service.query_order(payload)
    if not result.ok:
        return _failure(request, result, "Query failed")
    return success_response(data=result.data, message="Order status")


@router.post("/auth", summary="Exchange user access token", dependencies=[Depends(require_auth_feature)])
async def get_auth_token(request: Request, payload: AuthTokenRequest, service: PaymentService = Depends(get_payment_service)):
    result = await service.get_auth_token(payload)
    if not result.ok:
        return _failure(request, result, "Authentication failed", empty_status=401, error_status=401)
    return success_response(data=result.data, message="Authenticated")


@router.post("/webhook", summary="Gateway payment notification")
async def webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    settings: TelebirrSettings = Depends(get_telebirr_settings),
):
    client_ip = _client_ip(request)
    if not ip_allowed(client_ip, settings.webhook.ip_allowlist):
        logger.warning("webhook_ip_not_allowed", client_ip=client_ip)
        return JSONResponse(status_code=403, content=WebhookAck.rejected("Forbidden").model_dump())

    raw_body = await request.body()
    try:
        parsed: Any = json.loads(raw_body) if raw_body else {}
    except ValueError:
        parsed = {}
    if not isinstance(parsed, dict):
        parsed = {}

    event = WebhookEvent(
        payload=WebhookPayload.model_validate(parsed),
        raw_body=raw_body,
        signature=_first_header(request, SIGNATURE_HEADERS),
        timestamp=_first_header(request, TIMESTAMP_HEADERS),
        client_ip=client_ip,
        # multi-tenant notify URLs carry the merchant context as query parameters
        merchant_context=dict(request.query_params),
    )
    try:
        ack = await service.handle_webhook(event)
    except WebhookAuthenticationError as exc:
        logger.warning("webhook_rejected", client_ip=client_ip, reason=(exc.details or {}).get("reason"))
        return JSONResponse(status_code=401, content=WebhookAck.rejected(exc.message).model_dump())
    return ack.model_dump()


@router.get("/jobs/{transaction_ref}", summary="Verification job status")
async def job_status(transaction_ref: str, service: PaymentService = Depends(get_payment_service)):
    view = service.job_status(transaction_ref)
    if view is None:
        # Celery-run jobs live in the worker process and are not tracked here
        message = "Verification job not tracked by this process" if service.uses_celery else "Verification job not found"
        return error_json(404, BusinessCode.NOT_FOUND, message, "NotFound", request_id=get_request_id())
    return success_response(data=view.model_dump(mode="json"))


@router.post("/jobs/{transaction_ref}", summary="Start a verification job manually")
async def start_job(
    transaction_ref: str,
    merchant_context: Optional[dict[str, Any]] = Body(default=None, embed=True),
    service: PaymentService = Depends(get_payment_service),
):
    view = service.submit_verification(transaction_ref, merchant_context or {})
    return success_response(data=view.model_dump(mode="json"), message="Verification job scheduled")


@router.post("/jobs/{transaction_ref}/cancel", summary="Cancel a verification job")
async def cancel_job(transaction_ref: str, service: PaymentService = Depends(get_payment_service)):
    cancelled = service.cancel_job(transaction_ref)
    return success_response(data={"transaction_ref": transaction_ref, "cancelled": cancelled})


@router.get("/status", summary="Merchant configuration check")
async def configuration_status(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    settings: TelebirrSettings = Depends(get_telebirr_settings),
):
    context = {k: v for k, v in request.query_params.items()}
    configured = await service.validate_configuration(context)
    return success_response(data={"mode": settings.mode, "configured": configured})
