"""
Event sink port: the host application decides how domain events are delivered.

Payment lifecycle events (``payment.verified``, ``payment.verification_gave_up``
...) are emitted by name with a JSON-serializable payload. Implementations may
be in-process, Redis pub/sub, or anything the host wires in.
"""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable


EventHandler = Callable[[str, dict[str, Any]], Awaitable[None]]


@runtime_checkable
class EventSink(Protocol):
    async def emit(self, event_name: str, payload: dict[str, Any]) -> None: ...
