"""Redis-backed cache invalidation and task dispatch."""

import redis.asyncio as redis

from backend.billing.models.effects import CacheDependencyKey, TaskTrigger


def make_cache_key(prefix: str, key: CacheDependencyKey) -> str:
    """Create the Redis key holding entries for a cache dependency.

    Args:
        prefix: Namespace prefix (e.g., "billing:cache:")
        key: Dependency key (e.g., "customer:cus_123")

    Returns:
        Redis key
    """
    return f"{prefix}{key}"


class RedisCacheInvalidator:
    """Redis-based cache invalidator using DEL."""

    def __init__(self, redis_client: redis.Redis, prefix: str = "billing:cache:") -> None:
        """Initialize invalidator.

        Args:
            redis_client: Async Redis client
            prefix: Namespace prefix for cache keys
        """
        self._redis = redis_client
        self._prefix = prefix

    async def invalidate(self, key: CacheDependencyKey) -> None:
        """Delete the cached entry set for a dependency key."""
        await self._redis.delete(make_cache_key(self._prefix, key))


class RedisTaskDispatcher:
    """Redis-based task dispatcher using RPUSH onto a work queue."""

    def __init__(self, redis_client: redis.Redis, queue_key: str = "billing:triggers") -> None:
        self._redis = redis_client
        self._queue_key = queue_key

    async def dispatch(self, trigger: TaskTrigger) -> None:
        """Push a JSON-encoded trigger onto the queue."""
        await self._redis.rpush(self._queue_key, trigger.model_dump_json())
