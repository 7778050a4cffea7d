"""
Redis 访问层

同一个连接池服务两类数据，均落在 ``settings.redis.namespace`` 前缀下：

- ``telebirr:fabric_token:<fabric_app_id>``：Fabric 令牌缓存，TTL 由令牌缓存控制
- ``telebirr:events:<event>``：支付领域事件的发布频道

值统一以 JSON 编码，读取时还原为 Python 对象。
"""
from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from core.config import settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class RedisCache:
    """带命名空间与默认 TTL 的 JSON 键值访问（令牌存储与事件发布共用）"""

    def __init__(self, client: aioredis.Redis, namespace: str = "", default_ttl: Optional[int] = None) -> None:
        self._client = client
        self._prefix = f"{namespace.strip(':')}:" if namespace.strip(":") else ""
        self._default_ttl = settings.redis.default_ttl if default_ttl is None else default_ttl

    def key(self, name: str) -> str:
        return self._prefix + name

    async def get(self, key: str) -> Any:
        raw = await self._client.get(self.key(key))
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        # ttl <= 0 表示不过期；None 使用默认 TTL
        expire = self._default_ttl if ttl is None else ttl
        await self._client.set(self.key(key), json.dumps(value, default=str), ex=expire if expire and expire > 0 else None)

    async def delete(self, key: str) -> bool:
        return bool(await self._client.delete(self.key(key)))

    async def ttl(self, key: str) -> int:
        """剩余秒数；-2 表示不存在，-1 表示无过期时间"""
        return int(await self._client.ttl(self.key(key)))

    async def publish(self, channel: str, message: Any) -> int:
        """发布到 ``<namespace>:<channel>``，返回接收到消息的订阅者数量"""
        return int(await self._client.publish(self.key(channel), json.dumps(message, default=str)))

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as exc:
            logger.warning("redis_ping_failed", error=str(exc))
            return False


_redis_client: Optional[aioredis.Redis] = None
_cache_instance: Optional[RedisCache] = None
_lock = asyncio.Lock()


async def init_redis_cache(namespace: Optional[str] = None) -> RedisCache:
    """按 REDIS__URL 创建全局连接池；未配置时抛出 RuntimeError，由调用方决定是否降级到内存实现"""
    global _redis_client, _cache_instance

    async with _lock:
        if _cache_instance is not None:
            return _cache_instance
        if not settings.redis.url:
            raise RuntimeError("REDIS__URL 未配置，无法初始化Redis缓存")

        _redis_client = aioredis.from_url(
            settings.redis.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=settings.redis.max_connections,
        )
        _cache_instance = RedisCache(_redis_client, namespace=namespace or settings.redis.namespace)
        logger.info("redis_cache_initialized", namespace=namespace or settings.redis.namespace)
        return _cache_instance


async def get_redis_cache() -> RedisCache:
    """获取全局Redis缓存实例（按需初始化）"""
    return _cache_instance or await init_redis_cache()


async def redis_health() -> str:
    """健康检查用：``disabled`` 未配置，``ok`` 可达，``unavailable`` 不可达"""
    if not settings.redis.url:
        return "disabled"
    try:
        cache = await get_redis_cache()
    except (RedisError, OSError, RuntimeError) as exc:
        logger.warning("redis_health_check_failed", error=str(exc))
        return "unavailable"
    return "ok" if await cache.ping() else "unavailable"


async def shutdown_redis_cache() -> None:
    """关闭连接池；Celery 任务每次 asyncio.run 结束后也需调用，连接绑定在事件循环上"""
    global _redis_client, _cache_instance

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        _cache_instance = None
