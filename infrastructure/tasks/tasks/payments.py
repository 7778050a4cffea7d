"""Payment verification Celery tasks"""
from __future__ import annotations

import asyncio
from typing import Any, Optional

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import telebirr_settings
from domain.payment.verification import VerificationJob
from infrastructure.bootstrap import build_payment_service
from infrastructure.cache import shutdown_redis_cache
from infrastructure.database import dispose_engine

logger = get_logger(__name__)


async def _verify(
    transaction_ref: str,
    webhook_data: dict[str, Any],
    client_ip: Optional[str],
    context: dict[str, Any],
) -> VerificationJob:
    # every task gets a fresh event loop, so loop-bound clients are built and closed here
    service = await build_payment_service(telebirr_settings)
    try:
        job = VerificationJob(
            transaction_ref=transaction_ref,
            webhook_data=webhook_data,
            client_ip=client_ip,
            context=context,
        )
        return await service.worker.run_job(job)
    finally:
        await service.aclose()
        await shutdown_redis_cache()
        await dispose_engine()


@shared_task(name="payments.verify_payment", bind=True, base=BaseTask)
def task_verify_payment(
    self,
    transaction_ref: str,
    webhook_data: Optional[dict[str, Any]] = None,
    client_ip: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    """Poll the gateway for ``transaction_ref`` until it settles or the attempt budget is spent."""
    logger.info("verification_task_started", task_id=self.request.id, transaction_ref=transaction_ref)
    job = asyncio.run(_verify(transaction_ref, dict(webhook_data or {}), client_ip, dict(context or {})))
    return {
        "transaction_ref": job.transaction_ref,
        "state": job.state.value,
        "attempts": job.attempts,
        "last_status": job.last_status,
    }
