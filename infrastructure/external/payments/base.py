"""
Base payment client implementing shared concerns: http, retry, logging.

Concrete providers subclass and implement provider-specific request building
and response interpretation.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional
from contextlib import asynccontextmanager

import httpx
from tenacity import AsyncRetrying, stop_after_attempt, wait_fixed, retry_if_exception_type

from core.logging_config import get_logger
from core.settings import ApiSettings, LoggingSettings, TransportRetry
from infrastructure.external.payments.exceptions import PaymentTransportError
from shared.redaction import redact


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(
        self,
        *,
        api: ApiSettings,
        retry: TransportRetry,
        logging: Optional[LoggingSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api = api
        self._retry_cfg = retry
        self._logging = logging or LoggingSettings()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def base_url(self) -> str:
        return self._api.base_url.rstrip("/")

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(self._api.timeout)

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeouts,
                verify=self._api.verify_ssl,
                transport=self._transport,
            )
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    async def _retry(self, fn: Callable[[], Awaitable[Any]]):
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(1, int(self._retry_cfg.attempts))),
            wait=wait_fixed(self._retry_cfg.backoff_seconds),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.TransportError)),
            reraise=True,
        ):
            with attempt:
                return await fn()

    async def _post_json(self, path: str, payload: dict[str, Any], headers: dict[str, str]) -> httpx.Response:
        """POST ``payload`` as JSON; transport failures surviving the retry policy become PaymentTransportError."""
        url = f"{self.base_url}{path}"

        async def _send() -> httpx.Response:
            async with self.client() as c:
                return await c.post(url, json=payload, headers=headers)

        try:
            return await self._retry(_send)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            raise PaymentTransportError(
                "Gateway unreachable",
                provider=self.provider,
                endpoint=path,
                details={"error_type": type(exc).__name__},
            ) from exc

    # Helpers
    def _log(self, event: str, level: str = "info", **kwargs) -> None:
        if not self._logging.enabled:
            return
        getattr(logger, level)(
            event,
            provider=self.provider,
            **redact(kwargs, enabled=not self._logging.sensitive_data),
        )
