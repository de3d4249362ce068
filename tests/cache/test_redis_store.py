"""Tests for the Redis cache store against a mocked client."""

from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from socialpipe.cache.redis_store import RedisCacheStore
from socialpipe.cache.store import CacheUnavailableError


@pytest.fixture
def client():
    """Mocked redis client."""
    return MagicMock()


class TestRedisCacheStore:
    """Test RedisCacheStore."""
    
    def test_increment_uses_transaction(self, client):
        """Test INCRBY and EXPIRE run in one MULTI/EXEC."""
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [7, True]
        store = RedisCacheStore(client=client)
        
        assert store.increment("unread:total:1", 1, 60) == 7
        
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.incrby.assert_called_once_with("unread:total:1", 1)
        pipe.expire.assert_called_once_with("unread:total:1", 60)
    
    def test_push_bounded_trims(self, client):
        """Test LPUSH is followed by LTRIM to the bound."""
        pipe = client.pipeline.return_value
        pipe.execute.return_value = [201, True, True]
        store = RedisCacheStore(client=client)
        
        assert store.push_bounded("chat:history:1:2", "{}", 200, 3600) == 200
        
        pipe.lpush.assert_called_once_with("chat:history:1:2", "{}")
        pipe.ltrim.assert_called_once_with("chat:history:1:2", 0, 199)
        pipe.expire.assert_called_once_with("chat:history:1:2", 3600)
    
    def test_set_if_absent_uses_nx(self, client):
        """Test markers use SET NX."""
        client.set.return_value = None
        store = RedisCacheStore(client=client)
        
        assert not store.set_if_absent("processed:trending:x", "1", 100)
        
        client.set.assert_called_once_with("processed:trending:x", "1", ex=100, nx=True)
    
    def test_delete_pattern_scans(self, client):
        """Test pattern deletion scans then deletes matches."""
        client.scan_iter.return_value = iter(["search:all:preview:a", "search:all:preview:b"])
        client.delete.return_value = 2
        store = RedisCacheStore(client=client)
        
        assert store.delete_pattern("search:all:preview:*") == 2
        
        client.delete.assert_called_once_with("search:all:preview:a", "search:all:preview:b")
    
    def test_top_members(self, client):
        """Test scores are returned as floats."""
        client.zrevrange.return_value = [("2", 3), ("1", 2)]
        store = RedisCacheStore(client=client)
        
        assert store.top_members("trending:posts", 2) == [("2", 3.0), ("1", 2.0)]
    
    def test_errors_become_cache_unavailable(self, client):
        """Test redis errors surface as CacheUnavailableError."""
        client.get.side_effect = RedisConnectionError("down")
        store = RedisCacheStore(client=client)
        
        with pytest.raises(CacheUnavailableError):
            store.get("k")
