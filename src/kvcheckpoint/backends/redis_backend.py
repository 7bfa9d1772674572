"""Redis-based key-value backend."""

import asyncio
import logging
import re
from typing import Any, List, Optional, Sequence, Tuple
from redis.asyncio import Redis, ConnectionPool
from redis.exceptions import (
    RedisError,
    ConnectionError as RedisConnectionError,
    WatchError,
)

from .base import BackendOp, DeleteOp, KeyValueBackend, ListPrependOp, SetOp
from ..config.store_config import StoreConfig
from ..errors import BackendUnavailable, CapabilityUnsupported
from ..models.capability_models import BackendCapabilityProfile

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = re.compile(r"([*?\[\]\\])")


class RedisBackend(KeyValueBackend):
    """
    Key-value backend on Redis (or Valkey) with connection pooling.

    Lists map to LPUSH/LRANGE, enumeration to SCAN MATCH, multi-key
    atomicity to MULTI/EXEC and compare-and-swap to WATCH on the current
    value. Every redis-py error is wrapped in BackendUnavailable.
    """

    def __init__(
        self,
        config: Optional[StoreConfig] = None,
        capabilities: Optional[BackendCapabilityProfile] = None,
        max_key_length: int = 1024,
    ):
        """
        Initialize Redis backend.

        Args:
            config: Store configuration (redis_url, connection_pool_size)
            capabilities: Profile to declare; narrower profiles disable primitives
            max_key_length: Maximum accepted key length
        """
        self.config = config or StoreConfig()
        self.capabilities = capabilities or BackendCapabilityProfile.full()
        self.max_key_length = max_key_length
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def _get_redis(self) -> Redis:
        """
        Get Redis client with connection pooling and retry logic.

        Returns:
            Redis async client
        """
        if self._redis is None:
            self._pool = ConnectionPool.from_url(
                self.config.redis_url,
                max_connections=self.config.connection_pool_size,
                decode_responses=False,
            )
            self._redis = Redis(connection_pool=self._pool)

            # Test connection with retry logic
            max_retries = 3
            for attempt in range(max_retries):
                try:
                    await self._redis.ping()
                    logger.info("Redis connection established successfully")
                    break
                except (RedisConnectionError, RedisError) as e:
                    if attempt == max_retries - 1:
                        logger.error(
                            f"Failed to connect to Redis after {max_retries} attempts: {e}"
                        )
                        raise BackendUnavailable(str(e)) from e
                    logger.warning(
                        f"Redis connection attempt {attempt + 1} failed, retrying..."
                    )
                    await asyncio.sleep(1)

        return self._redis

    def _require(self, capability: str) -> None:
        if not getattr(self.capabilities, capability):
            raise CapabilityUnsupported(capability)

    async def get(self, key: str) -> Optional[bytes]:
        redis = await self._get_redis()
        try:
            return await redis.get(key)
        except RedisError as e:
            raise BackendUnavailable(f"GET {key} failed: {e}") from e

    async def get_many(self, keys: Sequence[str]) -> List[Optional[bytes]]:
        if not keys:
            return []
        redis = await self._get_redis()
        try:
            return list(await redis.mget(list(keys)))
        except RedisError as e:
            raise BackendUnavailable(f"MGET of {len(keys)} keys failed: {e}") from e

    async def set(self, key: str, value: bytes, ttl: Optional[int] = None) -> None:
        redis = await self._get_redis()
        try:
            await redis.set(key, value, ex=ttl)
        except RedisError as e:
            raise BackendUnavailable(f"SET {key} failed: {e}") from e

    async def delete(self, key: str) -> bool:
        redis = await self._get_redis()
        try:
            return await redis.delete(key) > 0
        except RedisError as e:
            raise BackendUnavailable(f"DEL {key} failed: {e}") from e

    async def touch(self, key: str, ttl: int) -> bool:
        redis = await self._get_redis()
        try:
            return bool(await redis.expire(key, ttl))
        except RedisError as e:
            raise BackendUnavailable(f"EXPIRE {key} failed: {e}") from e

    async def list_prepend(
        self, key: str, *values: bytes, ttl: Optional[int] = None
    ) -> int:
        self._require("supports_ordered_list")
        redis = await self._get_redis()
        try:
            if not ttl:
                return await redis.lpush(key, *values)
            async with redis.pipeline(transaction=True) as pipe:
                pipe.lpush(key, *values)
                pipe.expire(key, ttl)
                length, _ = await pipe.execute()
            return length
        except RedisError as e:
            raise BackendUnavailable(f"LPUSH {key} failed: {e}") from e

    async def list_range(self, key: str, start: int, end: int) -> List[bytes]:
        self._require("supports_ordered_list")
        redis = await self._get_redis()
        try:
            return list(await redis.lrange(key, start, end))
        except RedisError as e:
            raise BackendUnavailable(f"LRANGE {key} failed: {e}") from e

    async def list_remove_all(self, key: str) -> bool:
        self._require("supports_ordered_list")
        return await self.delete(key)

    async def scan_by_prefix(self, prefix: str) -> List[str]:
        self._require("supports_key_enumeration")
        redis = await self._get_redis()
        pattern = _GLOB_SPECIAL.sub(r"\\\1", prefix) + "*"
        try:
            keys = []
            async for key in redis.scan_iter(match=pattern, count=100):
                keys.append(key.decode() if isinstance(key, bytes) else key)
            return sorted(set(keys))
        except RedisError as e:
            raise BackendUnavailable(f"SCAN {pattern} failed: {e}") from e

    async def transaction(self, ops: Sequence[BackendOp]) -> List[Any]:
        self._require("supports_multi_key_atomicity")
        redis = await self._get_redis()
        # Positions of the replies that belong to each op (EXPIRE replies are dropped)
        reply_positions: List[int] = []
        try:
            async with redis.pipeline(transaction=True) as pipe:
                position = 0
                for op in ops:
                    if isinstance(op, SetOp):
                        pipe.set(op.key, op.value, ex=op.ttl)
                        reply_positions.append(position)
                        position += 1
                    elif isinstance(op, DeleteOp):
                        pipe.delete(op.key)
                        reply_positions.append(position)
                        position += 1
                    elif isinstance(op, ListPrependOp):
                        self._require("supports_ordered_list")
                        pipe.lpush(op.key, *op.values)
                        reply_positions.append(position)
                        position += 1
                        if op.ttl:
                            pipe.expire(op.key, op.ttl)
                            position += 1
                    else:
                        raise TypeError(f"Unknown transaction op: {op!r}")
                replies = await pipe.execute()
        except RedisError as e:
            raise BackendUnavailable(f"MULTI/EXEC of {len(ops)} ops failed: {e}") from e

        results: List[Any] = []
        for op, position in zip(ops, reply_positions):
            reply = replies[position]
            if isinstance(op, SetOp):
                results.append(None)
            elif isinstance(op, DeleteOp):
                results.append(reply > 0)
            else:
                results.append(reply)
        return results

    async def gets(self, key: str) -> Tuple[Optional[bytes], Any]:
        self._require("supports_cas")
        value = await self.get(key)
        # The current value doubles as the swap token.
        return value, value

    async def compare_and_swap(
        self, key: str, token: Any, value: bytes, ttl: Optional[int] = None
    ) -> bool:
        self._require("supports_cas")
        redis = await self._get_redis()
        try:
            async with redis.pipeline(transaction=True) as pipe:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != token:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value, ex=ttl)
                await pipe.execute()
                return True
        except WatchError:
            logger.debug(f"WATCH conflict on {key}")
            return False
        except RedisError as e:
            raise BackendUnavailable(f"CAS on {key} failed: {e}") from e

    async def close(self) -> None:
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
        if self._pool:
            await self._pool.aclose()
            self._pool = None
        logger.info("Redis connection closed")
