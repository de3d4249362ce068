"""Tests for cache-aside counters."""

from unittest.mock import MagicMock

import pytest

from socialpipe.cache.counters import CounterService
from socialpipe.cache.store import CacheUnavailableError, InMemoryCacheStore


class TestCounterService:
    """Test CounterService."""
    
    def test_miss_recomputes_and_repopulates(self):
        """Test a cold counter is recomputed and cached."""
        store = InMemoryCacheStore()
        counters = CounterService(store)
        
        assert counters.get_or_recompute("c", lambda: 4) == 4
        assert store.get("c") == "4"
    
    def test_hit_skips_recompute(self):
        """Test a cached counter is served without recomputation."""
        store = InMemoryCacheStore()
        store.set("c", "9")
        recompute = MagicMock(return_value=1)
        
        assert CounterService(store).get_or_recompute("c", recompute) == 9
        recompute.assert_not_called()
    
    def test_never_negative(self):
        """Test negative values read as zero."""
        store = InMemoryCacheStore()
        store.set("c", "-3")
        
        assert CounterService(store).get_or_recompute("c", lambda: 0) == 0
    
    def test_cache_outage_falls_back(self):
        """Test an unreachable cache degrades to recomputation."""
        store = MagicMock()
        store.get.side_effect = CacheUnavailableError("down")
        
        assert CounterService(store).get_or_recompute("c", lambda: 2) == 2
    
    def test_increment_requires_positive_delta(self):
        """Test counters are never decremented by increment."""
        with pytest.raises(ValueError):
            CounterService(InMemoryCacheStore()).increment("c", -1)
    
    def test_invalidate_forces_recompute(self):
        """Test invalidation is the compensating operation."""
        store = InMemoryCacheStore()
        counters = CounterService(store)
        store.increment("c", 5)
        
        counters.invalidate("c")
        
        assert counters.get_or_recompute("c", lambda: 0) == 0
