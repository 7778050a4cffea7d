"""
Background dispatch port used when verification runs on a task queue.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable


@runtime_checkable
class VerificationDispatcher(Protocol):
    def enqueue_payment_verification(
        self,
        transaction_ref: str,
        webhook_data: Mapping[str, Any],
        client_ip: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None: ...
