"""Cache/counter store."""

from socialpipe.cache.counters import CounterService
from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.store import CacheStore, CacheUnavailableError, InMemoryCacheStore

__all__ = [
    "CachePolicy",
    "CacheStore",
    "CacheUnavailableError",
    "CounterService",
    "InMemoryCacheStore",
]
