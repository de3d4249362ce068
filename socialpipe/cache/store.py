"""
Cache/counter store contract and in-memory implementation.

The store holds ephemeral counters, bounded most-recent-first lists and
short-TTL cache entries. Values are opaque strings; the store never
interprets them except for counters and scores. Everything kept here must be
reconstructible from the relational store of record.
"""

import fnmatch
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class CacheUnavailableError(Exception):
    """Raised when the cache backend cannot be reached."""
    pass


class CacheStore(ABC):
    """Operations the pipeline needs from a cache backend."""
    
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Get a value, or None if missing or expired."""
    
    @abstractmethod
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        """Set a value with an optional TTL."""
    
    @abstractmethod
    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        """
        Set a value only if the key does not exist.
        
        Returns:
            True if the value was set
        """
    
    @abstractmethod
    def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
    
    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
    
    @abstractmethod
    def increment(self, key: str, delta: int = 1, ttl_seconds: Optional[int] = None) -> int:
        """
        Atomically add delta to an integer key.
        
        A missing key counts as zero. The TTL is refreshed on every call.
        
        Returns:
            The new value
        """
    
    @abstractmethod
    def push_bounded(
        self,
        key: str,
        item: str,
        max_len: int,
        ttl_seconds: Optional[int] = None,
    ) -> int:
        """
        Atomically prepend item and trim the list to max_len entries.
        
        Returns:
            List length after trimming
        """
    
    @abstractmethod
    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        """Items of a list, newest first; stop is inclusive like LRANGE."""
    
    @abstractmethod
    def increment_score(
        self,
        key: str,
        member: str,
        amount: float = 1.0,
        ttl_seconds: Optional[int] = None,
    ) -> float:
        """Add amount to member's score in a sorted set."""
    
    @abstractmethod
    def remove_member(self, key: str, member: str) -> bool:
        """Remove member from a sorted set."""
    
    @abstractmethod
    def top_members(self, key: str, limit: int = 10) -> List[Tuple[str, float]]:
        """Highest scoring members, best first."""


@dataclass
class _Entry:
    value: Any
    expires_at: Optional[float]


class InMemoryCacheStore(CacheStore):
    """
    Process-local cache store.
    
    All operations take one lock, so increment and push_bounded are atomic
    under concurrent callers.
    """
    
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """
        Initialize the store.
        
        Args:
            clock: Monotonic clock in seconds, injectable for TTL tests
        """
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
    
    def _expiry(self, ttl_seconds: Optional[int]) -> Optional[float]:
        if ttl_seconds is None or ttl_seconds <= 0:
            return None
        return self._clock() + ttl_seconds
    
    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry
    
    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return None
            if isinstance(entry.value, (list, dict)):
                raise TypeError(f"Key {key} does not hold a string value")
            return str(entry.value)
    
    def set(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        with self._lock:
            self._entries[key] = _Entry(value, self._expiry(ttl_seconds))
    
    def set_if_absent(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = _Entry(value, self._expiry(ttl_seconds))
            return True
    
    def delete(self, *keys: str) -> int:
        with self._lock:
            deleted = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._entries[key]
                    deleted += 1
            return deleted
    
    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            matches = [key for key in self._entries if fnmatch.fnmatchcase(key, pattern)]
            for key in matches:
                del self._entries[key]
            return len(matches)
    
    def increment(self, key: str, delta: int = 1, ttl_seconds: Optional[int] = None) -> int:
        with self._lock:
            entry = self._live(key)
            current = int(entry.value) if entry is not None else 0
            value = current + delta
            expires_at = self._expiry(ttl_seconds)
            if expires_at is None and entry is not None:
                expires_at = entry.expires_at
            self._entries[key] = _Entry(value, expires_at)
            return value
    
    def push_bounded(
        self,
        key: str,
        item: str,
        max_len: int,
        ttl_seconds: Optional[int] = None,
    ) -> int:
        if max_len <= 0:
            raise ValueError(f"max_len must be positive, got {max_len}")
        
        with self._lock:
            entry = self._live(key)
            items = list(entry.value) if entry is not None else []
            items.insert(0, item)
            del items[max_len:]
            expires_at = self._expiry(ttl_seconds)
            if expires_at is None and entry is not None:
                expires_at = entry.expires_at
            self._entries[key] = _Entry(items, expires_at)
            return len(items)
    
    def list_range(self, key: str, start: int = 0, stop: int = -1) -> List[str]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return []
            items = entry.value
            end = len(items) if stop == -1 else stop + 1
            return list(items[start:end])
    
    def increment_score(
        self,
        key: str,
        member: str,
        amount: float = 1.0,
        ttl_seconds: Optional[int] = None,
    ) -> float:
        with self._lock:
            entry = self._live(key)
            scores = dict(entry.value) if entry is not None else {}
            scores[member] = scores.get(member, 0.0) + amount
            expires_at = self._expiry(ttl_seconds)
            if expires_at is None and entry is not None:
                expires_at = entry.expires_at
            self._entries[key] = _Entry(scores, expires_at)
            return scores[member]
    
    def remove_member(self, key: str, member: str) -> bool:
        with self._lock:
            entry = self._live(key)
            if entry is None or member not in entry.value:
                return False
            del entry.value[member]
            return True
    
    def top_members(self, key: str, limit: int = 10) -> List[Tuple[str, float]]:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return []
            ranked = sorted(entry.value.items(), key=lambda item: (-item[1], item[0]))
            return ranked[:limit]
    
    def __len__(self) -> int:
        with self._lock:
            return sum(1 for key in list(self._entries) if self._live(key) is not None)
