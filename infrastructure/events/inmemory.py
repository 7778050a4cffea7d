"""In-process EventSink.

Single-process only. Events are logged, kept in a bounded history and handed
to subscribed handlers sequentially.
"""
from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Deque, List, Optional, Tuple

from application.ports.events import EventHandler, EventSink
from core.logging_config import get_logger


logger = get_logger(__name__)


class InMemoryEventSink(EventSink):
    def __init__(self, history_size: int = 1000) -> None:
        self._handlers: List[Tuple[Optional[str], EventHandler]] = []
        self._history: Deque[Tuple[str, dict[str, Any]]] = deque(maxlen=history_size)
        self._lock = asyncio.Lock()

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:  # type: ignore[override]
        logger.info("payment_event_emitted", event_name=event_name, event_id=payload.get("event_id"))
        async with self._lock:
            self._history.append((event_name, payload))
            handlers = [h for name, h in self._handlers if name is None or name == event_name]
        for handler in handlers:
            try:
                await handler(event_name, payload)
            except Exception as exc:
                # a failing subscriber must not break delivery to the others
                logger.error("payment_event_handler_failed", event_name=event_name, error=str(exc))

    async def subscribe(self, handler: EventHandler, event_name: Optional[str] = None) -> None:
        async with self._lock:
            self._handlers.append((event_name, handler))

    def events(self, event_name: Optional[str] = None) -> list[tuple[str, dict[str, Any]]]:
        return [item for item in self._history if event_name is None or item[0] == event_name]

    async def aclose(self) -> None:
        async with self._lock:
            self._handlers.clear()
