"""
Redis Store — secret store backed by an async redis client.

The client is duck-typed (``get``, ``set``, ``setex``, ``delete``),
so any redis-compatible asyncio client can be used.
"""
import logging
from typing import Any, Optional

import orjson

from .base import validate_key

logger = logging.getLogger("ledger.storage")


class RedisStore:
    """Secret store persisted in redis under ``<namespace>:<key>``."""

    def __init__(self, redis: Any, namespace: str = "ledger", ttl: Optional[int] = None):
        self._redis = redis
        self._namespace = namespace
        self._ttl = ttl

    def _redis_key(self, key: str) -> str:
        """Build Redis key."""
        return f"{self._namespace}:{key}"

    async def get(self, key: str, default: Any = None) -> Any:
        validate_key(key)
        try:
            raw = await self._redis.get(self._redis_key(key))
        except Exception as err:
            logger.error("Redis get failed: key=%s: %s", key, err)
            return default
        if raw is None:
            return default
        try:
            return orjson.loads(raw)
        except orjson.JSONDecodeError as err:
            logger.error("Redis value for key=%s is not valid JSON: %s", key, err)
            return default

    async def set(self, key: str, value: Any) -> bool:
        validate_key(key)
        try:
            payload = orjson.dumps(value)
            if self._ttl:
                await self._redis.setex(self._redis_key(key), self._ttl, payload)
            else:
                await self._redis.set(self._redis_key(key), payload)
        except Exception as err:
            logger.error("Redis set failed: key=%s: %s", key, err)
            return False
        logger.debug("Redis set: key=%s", key)
        return True

    async def delete(self, key: str) -> bool:
        validate_key(key)
        try:
            await self._redis.delete(self._redis_key(key))
        except Exception as err:
            logger.error("Redis delete failed: key=%s: %s", key, err)
            return False
        logger.debug("Redis delete: key=%s", key)
        return True
