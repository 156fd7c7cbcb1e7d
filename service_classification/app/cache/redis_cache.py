"""
Redis result cache for the Classification Service.

Entries are keyed by rule-set version, zero-total policy and the four
input counts, so a rule change produces new keys; stale entries are also
cleared explicitly on every rule change.
"""

from typing import Dict, Any, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import CacheError
from ..rules.models import ClassificationInput, Tier


class ClassificationCache:
    """Redis cache of tier decisions."""

    RESULT_PREFIX = "classification:"

    def __init__(self, redis_url: str, default_ttl: int = 300):
        self.redis_url = redis_url
        self.logger = get_logger("classification.cache.redis")
        self.redis: Optional[redis.Redis] = None

        self.default_ttl = default_ttl
        self.max_ttl = 3600
        self.min_ttl = 30

    async def start(self):
        """Start the Redis cache."""
        try:
            self.redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )

            await self.redis.ping()

            self.logger.info("Redis cache started")

        except RedisError as e:
            self.logger.error("Failed to start Redis cache", error=str(e))
            raise CacheError("Failed to start result cache", details={"error": str(e)})

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.close()
            self.logger.info("Redis cache stopped")

    def _result_key(self, version: str, policy: str, counts: ClassificationInput) -> str:
        return (
            f"{self.RESULT_PREFIX}{version}:{policy}:"
            f"{counts.high_count}:{counts.medium_count}:{counts.low_count}:{counts.total}"
        )

    async def get_tier(self, version: str, policy: str, counts: ClassificationInput) -> Optional[Tier]:
        """Get a cached tier; any failure reads as a miss."""
        if self.redis is None:
            return None

        cache_key = self._result_key(version, policy, counts)
        try:
            cached = await self.redis.get(cache_key)
        except RedisError as e:
            self.logger.error("Error getting cached classification", error=str(e))
            return None

        if not cached:
            return None

        try:
            tier = Tier(cached)
        except ValueError:
            self.logger.warning("Discarding malformed cache entry", cache_key=cache_key, value=cached)
            return None

        self.logger.debug("Cache hit for classification", cache_key=cache_key)
        return tier

    async def set_tier(
        self,
        version: str,
        policy: str,
        counts: ClassificationInput,
        tier: Tier,
        ttl_seconds: Optional[int] = None
    ) -> bool:
        """Cache a tier decision."""
        if self.redis is None:
            return False

        ttl_seconds = ttl_seconds if ttl_seconds is not None else self.default_ttl
        ttl_seconds = max(self.min_ttl, min(self.max_ttl, ttl_seconds))
        cache_key = self._result_key(version, policy, counts)

        try:
            await self.redis.setex(cache_key, ttl_seconds, Tier(tier).value)
        except RedisError as e:
            self.logger.error("Error caching classification", error=str(e))
            return False

        self.logger.debug("Cached classification", cache_key=cache_key, ttl=ttl_seconds)
        return True

    async def invalidate_all(self) -> int:
        """Drop every cached decision."""
        if self.redis is None:
            return 0

        try:
            keys = await self.redis.keys(f"{self.RESULT_PREFIX}*")
            if keys:
                await self.redis.delete(*keys)
        except RedisError as e:
            self.logger.error("Error invalidating classifications", error=str(e))
            return 0

        self.logger.info("Invalidated cached classifications", count=len(keys))
        return len(keys)

    async def get_cache_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        if self.redis is None:
            return {}

        try:
            info = await self.redis.info()
            keys = await self.redis.keys(f"{self.RESULT_PREFIX}*")
        except RedisError as e:
            self.logger.error("Error getting cache stats", error=str(e))
            return {}

        return {
            "redis_version": info.get("redis_version"),
            "used_memory": info.get("used_memory_human"),
            "keyspace_hits": info.get("keyspace_hits"),
            "keyspace_misses": info.get("keyspace_misses"),
            "classification_keys": len(keys),
            "hit_rate": self._calculate_hit_rate(info)
        }

    def _calculate_hit_rate(self, info: Dict[str, Any]) -> float:
        """Calculate cache hit rate."""
        hits = info.get("keyspace_hits", 0)
        misses = info.get("keyspace_misses", 0)
        total = hits + misses

        if total == 0:
            return 0.0

        return hits / total

    async def health_check(self) -> bool:
        """Check Redis health."""
        if self.redis is None:
            return False
        try:
            await self.redis.ping()
            return True
        except RedisError:
            return False
