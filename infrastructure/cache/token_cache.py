"""
Fabric token cache.

Tokens are keyed by a hash of the merchant identity (never the secret) and
are never served past their TTL. Concurrent misses for one key share a single
in-flight fetch; unrelated keys proceed independently.
"""
from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Protocol

from core.logging_config import get_logger
from core.settings import TokenCacheSettings
from domain.payment.entity import MerchantCredentials
from infrastructure.cache.redis_cache import RedisCache


logger = get_logger(__name__)

TokenFetcher = Callable[[MerchantCredentials], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class CachedToken:
    token: str
    issued_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.issued_at >= self.ttl


class TokenStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, token: str, ttl: int) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryTokenStore:
    """Process-local store; expiry is checked against a monotonic clock on read."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, CachedToken] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        return entry.token

    async def set(self, key: str, token: str, ttl: int) -> None:
        self._entries[key] = CachedToken(token=token, issued_at=self._clock(), ttl=ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)


class RedisTokenStore:
    """Shared store for multi-process deployments; Redis enforces the TTL."""

    def __init__(self, cache: RedisCache) -> None:
        self._cache = cache

    async def get(self, key: str) -> Optional[str]:
        value = await self._cache.get(key)
        return value if isinstance(value, str) and value else None

    async def set(self, key: str, token: str, ttl: int) -> None:
        await self._cache.set(key, token, ttl=ttl)

    async def delete(self, key: str) -> None:
        await self._cache.delete(key)


class FabricTokenCache:
    def __init__(
        self,
        settings: TokenCacheSettings,
        fetcher: TokenFetcher,
        store: Optional[TokenStore] = None,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._store: TokenStore = store or InMemoryTokenStore()
        self._inflight: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    def cache_key(self, credentials: MerchantCredentials) -> str:
        digest = hashlib.sha256(credentials.identity().encode("utf-8")).hexdigest()
        return f"{self._settings.prefix}fabric_token_{digest}"

    async def get_token(self, credentials: MerchantCredentials) -> Optional[str]:
        key = self.cache_key(credentials)
        if self.enabled:
            cached = await self._store.get(key)
            if cached:
                logger.debug("fabric_token_cache_hit", cache_key=key)
                return cached

        async with self._lock:
            fetch = self._inflight.get(key)
            if fetch is None:
                # a fetch may have completed between the first read and the lock
                if self.enabled:
                    cached = await self._store.get(key)
                    if cached:
                        return cached
                # detached from every caller; a cancelled waiter leaves it running for the others
                fetch = asyncio.create_task(self._fetch(key, credentials), name=f"fabric-token-{key[-12:]}")
                self._inflight[key] = fetch
                fetch.add_done_callback(lambda t, k=key: self._fetch_done(k, t))
            else:
                logger.debug("fabric_token_fetch_joined", cache_key=key)

        return await asyncio.shield(fetch)

    def _fetch_done(self, key: str, fetch: asyncio.Task) -> None:
        if self._inflight.get(key) is fetch:
            del self._inflight[key]
        if not fetch.cancelled() and fetch.exception() is not None:
            logger.warning("fabric_token_fetch_failed", cache_key=key, error=str(fetch.exception()))

    async def _fetch(self, key: str, credentials: MerchantCredentials) -> Optional[str]:
        logger.info("fabric_token_cache_miss", cache_key=key, caching=self.enabled)
        token = await self._fetcher(credentials)
        if not token:
            logger.warning("fabric_token_unavailable", cache_key=key)
            return None
        if self.enabled:
            await self._store.set(key, token, self._settings.ttl)
        return token

    async def invalidate(self, credentials: MerchantCredentials) -> None:
        key = self.cache_key(credentials)
        await self._store.delete(key)
        logger.info("fabric_token_invalidated", cache_key=key)


__all__ = [
    "CachedToken",
    "TokenStore",
    "InMemoryTokenStore",
    "RedisTokenStore",
    "FabricTokenCache",
    "TokenFetcher",
]
