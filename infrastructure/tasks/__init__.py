"""Celery wiring for background payment verification.

``celery_app`` is the worker entry point (``celery -A infrastructure.tasks worker``);
``TaskDispatcher`` is what the verification worker uses to hand jobs over to it.
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
