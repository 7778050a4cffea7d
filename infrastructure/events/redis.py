"""Redis Pub/Sub based EventSink.

Publishes every payment event to ``{prefix}{event_name}`` so other processes
(ledger, notifications) can pattern-subscribe ``{prefix}*``.
"""
from __future__ import annotations

from typing import Any, Optional

from application.ports.events import EventSink
from core.logging_config import get_logger
from infrastructure.cache import RedisCache, get_redis_cache


logger = get_logger(__name__)


class RedisEventSink(EventSink):
    def __init__(self, cache: Optional[RedisCache] = None, channel_prefix: str = "telebirr:events:") -> None:
        self._cache = cache
        self._prefix = channel_prefix

    def _channel(self, event_name: str) -> str:
        return f"{self._prefix}{event_name}"

    async def emit(self, event_name: str, payload: dict[str, Any]) -> None:  # type: ignore[override]
        if self._cache is None:
            self._cache = await get_redis_cache()
        channel = self._channel(event_name)
        try:
            receivers = await self._cache.publish(channel, {"event": event_name, "payload": payload})
        except Exception as exc:  # pragma: no cover
            logger.error("redis_event_publish_failed", channel=channel, error=str(exc))
            return
        logger.info("payment_event_published", channel=channel, receivers=receivers)
