"""
Telebirr gateway adapter.

Every operation resolves merchant credentials first (configuration problems
raise before any network call), obtains a fabric token, signs the request and
sends it. Network and response-shape failures come back as
``GatewayResult.error``; answers without the endpoint's success marker come
back as ``GatewayResult.empty``.
"""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import GatewayResult, format_amount
from application.ports.payment_gateway import MerchantConfigResolver, PaymentGateway
from core.settings import TelebirrSettings
from domain.payment.entity import MerchantCredentials
from infrastructure.cache.token_cache import FabricTokenCache, TokenStore
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentTransportError
from infrastructure.external.payments.signer import SIGN_TYPE, RsaSigner


TOKEN_PATH = "/payment/v1/token"
PREORDER_PATH = "/payment/v1/merchant/preOrder"
VERIFY_PATH = "/v1/pay/query"
QUERY_ORDER_PATH = "/payment/v1/merchant/queryOrder"
AUTH_TOKEN_PATH = "/payment/v1/auth/authToken"

API_VERSION = "1.0"

_TITLE_STRIP = re.compile(r"[~`!#$%^*()\-+=|\/<>?;:\"\[\]{}\\]")

# Raw request field order expected by the mobile SDK
_RAW_REQUEST_FIELDS = ("appid", "merch_code", "nonce_str", "prepay_id", "timestamp", "sign_type")


def clean_title(subject: str) -> str:
    return _TITLE_STRIP.sub("", subject)


def clean_order_id(txn_ref: str) -> str:
    return str(txn_ref).replace("-", "")


class TelebirrClient(BasePaymentClient, PaymentGateway):
    provider = "telebirr"

    def __init__(
        self,
        settings: TelebirrSettings,
        resolver: MerchantConfigResolver,
        *,
        signer: Optional[RsaSigner] = None,
        token_store: Optional[TokenStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(api=settings.api, retry=settings.retry, logging=settings.logging, transport=transport)
        self._settings = settings
        self._resolver = resolver
        self._signer = signer or RsaSigner(allow_pkcs1_fallback=settings.signing.allow_pkcs1_fallback)
        self._tokens = FabricTokenCache(settings.cache.tokens, self._fetch_fabric_token, token_store)

    @property
    def tokens(self) -> FabricTokenCache:
        return self._tokens

    # ---- credentials & tokens ----------------------------------------

    async def _credentials(self, context: Optional[Mapping[str, Any]]) -> MerchantCredentials:
        credentials = await self._resolver.resolve(context or {})
        return credentials.ensure_complete()

    async def _fetch_fabric_token(self, credentials: MerchantCredentials) -> Optional[str]:
        """Request a fabric token directly from the gateway; None on any failure."""
        if not credentials.fabric_app_id or not credentials.app_secret:
            self._log("telebirr_token_keys_missing", level="error")
            return None
        self._log("telebirr_token_request", url=f"{self.base_url}{TOKEN_PATH}")
        headers = {"Content-Type": "application/json", "X-APP-Key": credentials.fabric_app_id}
        try:
            response = await self._post_json(TOKEN_PATH, {"appSecret": credentials.app_secret}, headers)
        except PaymentTransportError as exc:
            self._log("telebirr_token_request_exception", level="error", error=exc.message, details=exc.details)
            return None
        data = self._json(response)
        if response.is_success and isinstance(data, dict) and data.get("token"):
            return str(data["token"])
        self._log("telebirr_token_request_failed", level="error", status_code=response.status_code, response=data)
        return None

    def _headers(self, credentials: MerchantCredentials, token: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "X-APP-Key": credentials.fabric_app_id or "",
            "Authorization": token,
        }

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return None

    # ---- request builders --------------------------------------------

    def _envelope(self, method: str, biz_content: dict[str, Any], private_key: str) -> dict[str, Any]:
        request: dict[str, Any] = {
            "nonce_str": self._signer.generate_nonce(),
            "method": method,
            "timestamp": self._signer.generate_timestamp(),
            "version": API_VERSION,
            "biz_content": biz_content,
        }
        request["sign"] = self._signer.sign_request(request, private_key)
        request["sign_type"] = SIGN_TYPE
        return request

    def _notify_url(self) -> str:
        return self._settings.webhook.notify_url or self._settings.webhook.path

    def _build_preorder(self, order_data: Mapping[str, Any], credentials: MerchantCredentials) -> dict[str, Any]:
        biz_content = {
            "notify_url": self._notify_url(),
            "business_type": "BuyGoods",
            "trade_type": "InApp",
            "appid": credentials.merchant_app_id,
            "merch_code": credentials.merchant_code,
            "merch_order_id": clean_order_id(order_data["txn_ref"]),
            "title": clean_title(str(order_data.get("subject", ""))),
            "total_amount": format_amount(order_data["amount"]),
            "trans_currency": "ETB",
            "timeout_express": "120m",
            "payee_identifier": credentials.merchant_code,
            "payee_identifier_type": "04",
            "payee_type": "5000",
        }
        return self._envelope("payment.preorder", biz_content, credentials.rsa_private_key or "")

    def _build_raw_request(self, prepay_id: str, credentials: MerchantCredentials) -> str:
        fields: dict[str, Any] = {
            "appid": credentials.merchant_app_id,
            "merch_code": credentials.merchant_code,
            "nonce_str": self._signer.generate_nonce(),
            "prepay_id": prepay_id,
            "timestamp": self._signer.generate_timestamp(),
            "sign_type": SIGN_TYPE,
        }
        # sign_type is excluded from the canonical string but still rendered
        fields["sign"] = self._signer.sign_request(fields, credentials.rsa_private_key or "")
        return "&".join(f"{key}={fields[key]}" for key in (*_RAW_REQUEST_FIELDS, "sign"))

    # ---- operations --------------------------------------------------

    async def _send(
        self,
        operation: str,
        path: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> tuple[Optional[httpx.Response], Any]:
        try:
            response = await self._post_json(path, payload, headers)
        except PaymentTransportError as exc:
            self._log(f"telebirr_{operation}_exception", level="error", error=exc.message, details=exc.details)
            return None, None
        return response, self._json(response)

    async def create_order(
        self,
        order_data: Mapping[str, Any],
        context: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult[str]:
        credentials = await self._credentials(context)
        token = await self._tokens.get_token(credentials)
        if not token:
            return GatewayResult.error("token_unavailable")

        payload = self._build_preorder(order_data, credentials)
        self._log("telebirr_preorder_request", order_data=dict(order_data))
        response, data = await self._send("preorder", PREORDER_PATH, payload, self._headers(credentials, token))
        if response is None:
            return GatewayResult.error("transport_error")
        if not isinstance(data, dict):
            self._log("telebirr_preorder_malformed", level="error", status_code=response.status_code)
            return GatewayResult.error("malformed_response")

        biz = data.get("biz_content")
        prepay_id = biz.get("prepay_id") if isinstance(biz, dict) else None
        if response.is_success and prepay_id:
            self._log("telebirr_preorder_created", merch_order_id=payload["biz_content"]["merch_order_id"])
            return GatewayResult.success(self._build_raw_request(str(prepay_id), credentials))

        self._log("telebirr_preorder_failed", level="error", payload=payload, response=data)
        return self._unsuccessful(response)

    async def verify_payment(
        self,
        reference: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult[dict]:
        credentials = await self._credentials(context)
        token = await self._tokens.get_token(credentials)
        if not token:
            return GatewayResult.error("token_unavailable")

        payload: dict[str, Any] = {
            "merchantAppId": credentials.merchant_app_id,
            "outTradeNo": reference,
            "nonce": self._signer.generate_nonce(),
            "timestamp": self._signer.generate_timestamp(),
        }
        payload["sign"] = self._signer.sign_request(payload, credentials.rsa_private_key or "")

        response, data = await self._send("verify_payment", VERIFY_PATH, payload, self._headers(credentials, token))
        if response is None:
            return GatewayResult.error("transport_error")
        if not isinstance(data, dict):
            self._log("telebirr_verify_payment_malformed", level="error", status_code=response.status_code)
            return GatewayResult.error("malformed_response")

        if response.is_success and str(data.get("code")) == "0":
            result = data.get("data")
            if not isinstance(result, dict):
                return GatewayResult.error("malformed_response")
            return GatewayResult.success(result)

        self._log("telebirr_verify_payment_failed", level="error", out_trade_no=reference, response=data)
        return self._unsuccessful(response)

    async def query_order(
        self,
        order_id: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult[dict]:
        credentials = await self._credentials(context)
        token = await self._tokens.get_token(credentials)
        if not token:
            return GatewayResult.error("token_unavailable")

        biz_content = {
            "appid": credentials.merchant_app_id,
            "merch_code": credentials.merchant_code,
            "merch_order_id": order_id,
        }
        payload = self._envelope("payment.queryorder", biz_content, credentials.rsa_private_key or "")

        response, data = await self._send("query_order", QUERY_ORDER_PATH, payload, self._headers(credentials, token))
        if response is None:
            return GatewayResult.error("transport_error")
        if not isinstance(data, dict):
            self._log("telebirr_query_order_malformed", level="error", status_code=response.status_code)
            return GatewayResult.error("malformed_response")

        if response.is_success and data.get("result") == "SUCCESS":
            biz = data.get("biz_content")
            if not isinstance(biz, dict):
                return GatewayResult.error("malformed_response")
            return GatewayResult.success(biz)

        self._log("telebirr_query_order_failed", level="error", merch_order_id=order_id, response=data)
        return self._unsuccessful(response)

    async def get_auth_token(
        self,
        access_token: str,
        context: Optional[Mapping[str, Any]] = None,
    ) -> GatewayResult[dict]:
        credentials = await self._credentials(context)
        if self._settings.auth.use_token_cache:
            token = await self._tokens.get_token(credentials)
        else:
            token = await self._fetch_fabric_token(credentials)
        if not token:
            return GatewayResult.error("token_unavailable")

        biz_content = {
            "access_token": access_token,
            "trade_type": "InApp",
            "appid": credentials.merchant_app_id,
            "resource_type": "OpenId",
        }
        payload = self._envelope("payment.authtoken", biz_content, credentials.rsa_private_key or "")
        self._log("telebirr_auth_token_request", access_token_preview=f"{access_token[:10]}***")

        response, data = await self._send("auth_token", AUTH_TOKEN_PATH, payload, self._headers(credentials, token))
        if response is None:
            return GatewayResult.error("transport_error")
        if not isinstance(data, dict):
            self._log("telebirr_auth_token_malformed", level="error", status_code=response.status_code)
            return GatewayResult.error("malformed_response")

        if response.is_success and str(data.get("code")) == "0":
            biz = data.get("biz_content")
            if not isinstance(biz, dict):
                return GatewayResult.error("malformed_response")
            self._log(
                "telebirr_auth_token_success",
                open_id=biz.get("open_id"),
                has_personal_info="nickName" in biz,
            )
            return GatewayResult.success(biz)

        self._log("telebirr_auth_token_failed", level="error", response=data)
        return self._unsuccessful(response)

    @staticmethod
    def _unsuccessful(response: httpx.Response) -> GatewayResult:
        if not response.is_success:
            return GatewayResult.error(f"http_{response.status_code}")
        return GatewayResult.empty("gateway_declined")


__all__ = ["TelebirrClient", "clean_title", "clean_order_id"]
