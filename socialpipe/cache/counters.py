"""
Cache-aside counters.

Reads try the cache first and fall back to recomputing from the store of
record, repopulating the cache. A cache outage degrades to recomputation; it
never fails the read.
"""

from typing import Callable, Optional

from socialpipe.cache.store import CacheStore, CacheUnavailableError
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class CounterService:
    """Read and maintain integer counters kept in a cache store."""
    
    def __init__(self, store: CacheStore, default_ttl_seconds: int = 60):
        """
        Initialize counter service.
        
        Args:
            store: Cache backend
            default_ttl_seconds: TTL for repopulated counters
        """
        self.store = store
        self.default_ttl_seconds = default_ttl_seconds
    
    def get_or_recompute(
        self,
        key: str,
        recompute: Callable[[], int],
        ttl_seconds: Optional[int] = None,
    ) -> int:
        """
        Read a counter, recomputing it from the store of record on a miss.
        
        Args:
            key: Counter key
            recompute: Computes the authoritative value
            ttl_seconds: TTL for the repopulated value
        
        Returns:
            Counter value (never negative)
        """
        try:
            cached = self.store.get(key)
        except CacheUnavailableError as e:
            logger.warning("Counter read failed, recomputing", key=key, error=str(e))
            return max(recompute(), 0)
        
        if cached is not None:
            try:
                return max(int(cached), 0)
            except ValueError:
                logger.warning("Discarding non-integer counter", key=key, value=cached)
        
        value = max(recompute(), 0)
        
        try:
            self.store.set(key, str(value), ttl_seconds or self.default_ttl_seconds)
        except CacheUnavailableError as e:
            logger.warning("Counter repopulation failed", key=key, error=str(e))
        
        logger.debug("Recomputed counter", key=key, value=value)
        
        return value
    
    def increment(self, key: str, delta: int = 1, ttl_seconds: Optional[int] = None) -> int:
        """
        Add a positive delta to a counter.
        
        Raises:
            ValueError: If delta is not positive
        """
        if delta <= 0:
            raise ValueError(f"Counters only grow through increment, got delta={delta}")
        return self.store.increment(key, delta, ttl_seconds or self.default_ttl_seconds)
    
    def invalidate(self, *keys: str) -> None:
        """
        Drop counters so the next read recomputes them.
        
        This is the compensating operation for reads that lower a counter
        (e.g. marking messages read).
        """
        try:
            self.store.delete(*keys)
        except CacheUnavailableError as e:
            logger.warning("Counter invalidation failed", keys=list(keys), error=str(e))
