"""Valkey cache client with an explicit connect/disconnect lifecycle."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis

from index_engine.core.config import Settings
from index_engine.core.logging import get_logger


logger = get_logger("cache.client")

CACHE_PREFIX = "index_engine"
CACHE_VERSION = "v1"


def cache_key(key: str) -> str:
    """Namespace a key: ``market-indices`` -> ``index_engine:v1:market-indices``."""
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{key}"


class CacheClient:
    """JSON cache over a Valkey connection pool.

    Failures are logged and reported through return values; callers decide
    whether a cache miss matters.
    """

    def __init__(self, url: str, max_connections: int = 20, default_ttl: int = 300):
        self.url = url
        self.max_connections = max_connections
        self.default_ttl = default_ttl
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "CacheClient":
        return cls(
            settings.valkey_url,
            max_connections=settings.valkey_max_connections,
            default_ttl=settings.cache_default_ttl,
        )

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> Redis:
        if self._client is None:
            self._pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                decode_responses=True,
                socket_timeout=5.0,
                socket_connect_timeout=5.0,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            self._client = Redis(connection_pool=self._pool)
            logger.info("Valkey connection pool initialized")
        return self._client

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None
        logger.info("Valkey connection pool closed")

    async def get(self, key: str) -> Optional[Any]:
        client = await self.connect()
        full_key = cache_key(key)
        try:
            value = await client.get(full_key)
        except redis.RedisError as e:
            logger.warning(f"Cache get failed for {full_key}: {e}")
            return None
        if value is None:
            logger.debug(f"Cache miss: {full_key}")
            return None
        logger.debug(f"Cache hit: {full_key}")
        return json.loads(value)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        client = await self.connect()
        full_key = cache_key(key)
        try:
            await client.set(full_key, json.dumps(value, default=str), ex=ttl or self.default_ttl)
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache set failed for {full_key}: {e}")
            return False

    async def delete(self, key: str) -> bool:
        client = await self.connect()
        full_key = cache_key(key)
        try:
            await client.delete(full_key)
            logger.debug(f"Cache delete: {full_key}")
            return True
        except redis.RedisError as e:
            logger.warning(f"Cache delete failed for {full_key}: {e}")
            return False

    async def healthcheck(self) -> bool:
        try:
            client = await self.connect()
            result = await asyncio.wait_for(client.ping(), timeout=5.0)
            return result is True or result == "PONG"
        except (redis.RedisError, asyncio.TimeoutError) as e:
            logger.warning(f"Valkey healthcheck failed: {e}")
            return False
