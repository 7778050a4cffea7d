"""Task base class and the producer-side dispatcher."""
from .base_task import BaseTask
from .dispatcher import TaskDispatcher, VERIFY_PAYMENT_TASK

__all__ = ["BaseTask", "TaskDispatcher", "VERIFY_PAYMENT_TASK"]
