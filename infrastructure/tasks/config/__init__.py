"""Expose Celery configuration objects for convenient imports."""
from .celery import celery_app, CELERY_IMPORTS

__all__ = ["celery_app", "CELERY_IMPORTS"]
