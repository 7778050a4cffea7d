"""Celery application configuration"""
from __future__ import annotations

import os
from core.logging_config import configure_logging, get_logger
from celery import Celery, signals
from kombu import Queue
from kombu.utils.url import maybe_sanitize_url

from core.config import settings
from core.settings import telebirr_settings


# Task modules are discovered via this tuple so new packages only need to be
# listed here rather than altering the runtime imports scattered elsewhere.
CELERY_IMPORTS = (
    "infrastructure.tasks.tasks.payments",
)

VERIFY_QUEUE = telebirr_settings.queue.verify_payment.queue


celery_app = Celery("telebirr_gateway")

celery_app.conf.update(
    broker_url=settings.celery.broker_url or settings.redis.url or os.getenv("CELERY_BROKER_URL"),
    result_backend=settings.celery.result_backend or settings.redis.url or os.getenv("CELERY_RESULT_BACKEND"),
    # webhook payloads travel as JSON only
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # acknowledge after the job reaches a terminal state so a lost worker re-delivers it
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    result_expires=3600,
    worker_prefetch_multiplier=1,
    task_time_limit=settings.celery.task_time_limit,
    task_default_queue=VERIFY_QUEUE,
    task_queues=(
        Queue(VERIFY_QUEUE),
    ),
    task_routes={
        "payments.*": {"queue": VERIFY_QUEUE},
    },
)

celery_app.conf.imports = CELERY_IMPORTS


logger = get_logger(__name__)


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=maybe_sanitize_url(sender.conf.broker_url or ""),
        result_backend=maybe_sanitize_url(sender.conf.result_backend or ""),
        queue=VERIFY_QUEUE,
    )


@signals.setup_logging.connect
def _setup_logging(**kwargs):
    # worker 进程沿用 API 的 structlog 处理链，不使用 Celery 默认日志配置
    configure_logging()
