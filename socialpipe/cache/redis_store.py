"""
Redis-backed cache store.

Multi-step operations (increment + expire, push + trim + expire) run in a
MULTI/EXEC pipeline so concurrent callers on the same hot key never observe
or produce a half-applied update. Redis errors surface as
CacheUnavailableError.
"""

from typing import List, Optional, Tuple

import redis
from redis.exceptions import RedisError

from socialpipe.cache.store import CacheStore, CacheUnavailableError
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class RedisCacheStore(CacheStore):
    """Cache store on a Redis server."""
    
    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        redis_url: str = "redis://localhost:6379/0",
        socket_timeout_ms: int = 500,
    ):
        """
        Initialize the store.
        
        Args:
            client: Existing client (decode_responses=True); built from redis_url if None
            redis_url: Redis connection URL
            socket_timeout_ms: Connect and command timeout
        """
        self.redis_url = redis_url
        self.client = client or redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=socket_timeout_ms / 1000.0,
            socket_timeout=socket_timeout_ms / 1000.0,
        )
        
        logger.info("Initialized redis cache store", redis_url=redis_url)
    
    def _fail(self, operation: str, key: str, error: RedisError) -> CacheUnavailableError:
        logger.error("Redis operation failed", operation=operation, key=key, error=str(error))
        return CacheUnavailableError(f"Redis {operation} on {key} failed: {error}")
    
    def ping(self) -> bool:
        """Check the server is reachable."""
        try:
            return bool(self.client.ping())
        except RedisError as e:
            raise self._fail("PING", "-", e) from e
    
    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as e:
            raise self._fail("GET", key, e) from e
    
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        try:
            self.client.set(key, value, ex=ttl_seconds if ttl_seconds and ttl_seconds > 0 else None)
        except RedisError as e:
            raise self._fail("SET", key, e) from e
    
    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        try:
            result = self.client.set(
                key,
                value,
                ex=ttl_seconds if ttl_seconds and ttl_seconds > 0 else None,
                nx=True,
            )
            return bool(result)
        except RedisError as e:
            raise self._fail("SET NX", key, e) from e
    
    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return int(self.client.delete(*keys))
        except RedisError as e:
            raise self._fail("DEL", ",".join(keys), e) from e
    
    def delete_pattern(self, pattern: str) -> int:
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if not keys:
                return 0
            deleted = int(self.client.delete(*keys))
            logger.debug("Deleted keys by pattern", pattern=pattern, deleted=deleted)
            return deleted
        except RedisError as e:
            raise self._fail("SCAN/DEL", pattern, e) from e
    
    def increment(self, key: str, delta: int = 1, ttl_seconds: Optional[int] = None) -> int:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incrby(key, delta)
            if ttl_seconds and ttl_seconds > 0:
                pipe.expire(key, ttl_seconds)
            results = pipe.execute()
            return int(results[0])
        except RedisError as e:
            raise self._fail("INCRBY", key, e) from e
    
    def push_bounded(
        self,
        key: str,
        item: str,
        max_len: int,
        ttl_seconds: Optional[int] = None,
    ) -> int:
        if max_len <= 0:
            raise ValueError(f"max_len must be positive, got {max_len}")
        
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.lpush(key, item)
            pipe.ltrim(key, 0, max_len - 1)
            if ttl_seconds and ttl_seconds > 0:
                pipe.expire(key, ttl_seconds)
            results = pipe.execute()
            return min(int(results[0]), max_len)
        except RedisError as e:
            raise self._fail("LPUSH/LTRIM", key, e) from e
    
    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        try:
            return list(self.client.lrange(key, start, stop))
        except RedisError as e:
            raise self._fail("LRANGE", key, e) from e
    
    def increment_score(
        self,
        key: str,
        member: str,
        amount: float = 1.0,
        ttl_seconds: Optional[int] = None,
    ) -> float:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.zincrby(key, amount, member)
            if ttl_seconds and ttl_seconds > 0:
                pipe.expire(key, ttl_seconds)
            results = pipe.execute()
            return float(results[0])
        except RedisError as e:
            raise self._fail("ZINCRBY", key, e) from e
    
    def remove_member(self, key: str, member: str) -> bool:
        try:
            return bool(self.client.zrem(key, member))
        except RedisError as e:
            raise self._fail("ZREM", key, e) from e
    
    def top_members(self, key: str, limit: int = 10) -> List[Tuple[str, float]]:
        try:
            return [
                (member, float(score))
                for member, score in self.client.zrevrange(key, 0, limit - 1, withscores=True)
            ]
        except RedisError as e:
            raise self._fail("ZREVRANGE", key, e) from e
    
    def close(self) -> None:
        """Close the connection pool."""
        self.client.close()
