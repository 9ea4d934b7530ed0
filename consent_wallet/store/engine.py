"""Durable key-value store, store factory and lifespan management.

The background process persists three keys (``consentTokens``,
``detections`` and ``settings``) as JSON documents. Reads and writes are
atomic per key; there is no ordering across keys. Serializing concurrent
writers to the same key is the repository's job, not the store's.

Redis (``redis.asyncio``) backs the store in deployment; ``MemoryStore`` is a
drop-in for tests and single-process development.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import AsyncGenerator
from typing import Any, Protocol

import redis.asyncio as aioredis

from consent_wallet.config import settings

logger = logging.getLogger(__name__)


class DurableStore(Protocol):
    """Abstract durable map: the only resource shared between contexts."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def close(self) -> None: ...


class RedisStore:
    """JSON values stored under namespaced Redis string keys."""

    def __init__(self, client: aioredis.Redis, prefix: str = "") -> None:
        self._redis = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        raw = await self._redis.get(self._key(key))
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        await self._redis.set(self._key(key), json.dumps(value))

    async def close(self) -> None:
        await self._redis.aclose()


class MemoryStore:
    """In-process store. Values are JSON round-tripped so callers never share references."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def close(self) -> None:
        self._data.clear()


def create_store() -> DurableStore:
    """Build the store configured in settings."""
    if settings.store.use_memory_store:
        logger.info("Using in-memory durable store")
        return MemoryStore()
    client: aioredis.Redis = aioredis.from_url(settings.store.redis_url, decode_responses=True)
    logger.info("Using Redis durable store at %s", settings.store.redis_url)
    return RedisStore(client, prefix=settings.store.store_key_prefix)


@contextlib.asynccontextmanager
async def store_lifespan(store: DurableStore) -> AsyncGenerator[DurableStore, None]:
    """Context manager closing the store on shutdown.

    Usage in FastAPI lifespan:
        async with store_lifespan(create_store()) as store:
            yield
    """
    try:
        yield store
    finally:
        await store.close()
