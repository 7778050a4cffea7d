"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Any, Mapping, Optional

from core.logging_config import get_logger
from ..config.celery import VERIFY_QUEUE, celery_app


logger = get_logger(__name__)

VERIFY_PAYMENT_TASK = "payments.verify_payment"


class TaskDispatcher:
    """Internal facade used by the application layer to schedule tasks."""

    def __init__(self, queue: str = VERIFY_QUEUE) -> None:
        self.queue = queue

    def enqueue_payment_verification(
        self,
        transaction_ref: str,
        webhook_data: Mapping[str, Any],
        client_ip: Optional[str] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Fire-and-forget; the worker process drives the retry schedule itself."""
        result = celery_app.send_task(
            VERIFY_PAYMENT_TASK,
            kwargs={
                "transaction_ref": transaction_ref,
                "webhook_data": dict(webhook_data),
                "client_ip": client_ip,
                "context": dict(context or {}),
            },
            queue=self.queue,
        )
        logger.info("verification_task_sent", transaction_ref=transaction_ref, task_id=result.id, queue=self.queue)

