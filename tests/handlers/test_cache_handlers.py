"""Tests for search, trending and user cache handlers."""

from unittest.mock import MagicMock

import pytest

from socialpipe.cache import keys
from socialpipe.cache.store import CacheUnavailableError, InMemoryCacheStore
from socialpipe.consumer.router import ConsumedEvent
from socialpipe.events.payloads import (
    PostCommented,
    PostCreated,
    PostDeleted,
    PostLiked,
    UserFollowed,
)
from socialpipe.handlers.search import SearchCacheHandler
from socialpipe.handlers.user_cache import UserCacheHandler


def consumed(payload, offset=0):
    return ConsumedEvent(
        topic=payload.TOPIC,
        partition=0,
        offset=offset,
        timestamp=payload.timestamp,
        key=payload.partition_key(),
        payload=payload,
    )


@pytest.fixture
def cache():
    return InMemoryCacheStore()


class TestSearchCacheHandler:
    """Test SearchCacheHandler."""
    
    def test_post_created_invalidates_previews(self, cache):
        """Test new posts drop cached search previews."""
        cache.set("search:all:preview:cats", "[]")
        cache.set("search:user:cats", "[]")
        
        SearchCacheHandler(cache).on_post_created(
            consumed(PostCreated(post_id=1, user_id=2, content="cats", timestamp=1))
        )
        
        assert cache.get("search:all:preview:cats") is None
        assert cache.get("search:user:cats") == "[]"
        assert cache.top_members(keys.TRENDING_POSTS) == [("1", 1.0)]
    
    def test_like_counted_once_per_user(self, cache):
        """Test redelivered like events bump the trending score once."""
        handler = SearchCacheHandler(cache)
        event = consumed(PostLiked(post_id=1, user_id=2, timestamp=1))
        
        handler.on_post_liked(event)
        handler.on_post_liked(event)
        handler.on_post_liked(consumed(PostLiked(post_id=1, user_id=3, timestamp=2)))
        
        assert cache.top_members(keys.TRENDING_POSTS) == [("1", 2.0)]
    
    def test_failed_bump_releases_marker(self, cache):
        """Test a failed score update can be retried."""
        store = MagicMock(wraps=cache)
        store.increment_score.side_effect = CacheUnavailableError("down")
        handler = SearchCacheHandler(store)
        event = consumed(PostLiked(post_id=1, user_id=2, timestamp=1))
        
        with pytest.raises(CacheUnavailableError):
            handler.on_post_liked(event)
        
        store.increment_score.side_effect = None
        handler.on_post_liked(event)
        
        assert cache.top_members(keys.TRENDING_POSTS) == [("1", 1.0)]
    
    def test_comment_counted_once_per_comment(self, cache):
        """Test each comment bumps trending once, however often it is delivered."""
        handler = SearchCacheHandler(cache)
        first = consumed(PostCommented(post_id=1, comment_id=5, user_id=2, content="hi", timestamp=1))
        reply = consumed(
            PostCommented(post_id=1, comment_id=6, user_id=2, content="again", timestamp=2, parent_comment_id=5)
        )
        
        handler.on_post_commented(first)
        handler.on_post_commented(first)
        handler.on_post_commented(reply)
        
        assert cache.top_members(keys.TRENDING_POSTS) == [("1", 4.0)]
    
    def test_post_deleted_leaves_trending(self, cache):
        """Test deleted posts are removed from trending."""
        handler = SearchCacheHandler(cache)
        handler.on_post_created(consumed(PostCreated(post_id=1, user_id=2, content="", timestamp=1)))
        handler.on_post_created(consumed(PostCreated(post_id=2, user_id=2, content="", timestamp=1)))
        
        handler.on_post_deleted(consumed(PostDeleted(post_id=1, user_id=2, timestamp=2)))
        
        assert cache.top_members(keys.TRENDING_POSTS) == [("2", 1.0)]


class TestUserCacheHandler:
    """Test UserCacheHandler."""
    
    def test_post_change_invalidates_author(self, cache):
        """Test post events drop the author's cached profile and counts."""
        for key in (keys.user_cache(2), keys.user_stats(2), keys.user_post_count(2), keys.user_cache(3)):
            cache.set(key, "x")
        
        UserCacheHandler(cache).on_post_changed(
            consumed(PostDeleted(post_id=1, user_id=2, timestamp=1))
        )
        
        assert cache.get(keys.user_cache(2)) is None
        assert cache.get(keys.user_stats(2)) is None
        assert cache.get(keys.user_post_count(2)) is None
        assert cache.get(keys.user_cache(3)) == "x"
    
    def test_follow_invalidates_both_users(self, cache):
        """Test follow events drop both endpoints' stats."""
        cache.set(keys.user_stats(1), "x")
        cache.set(keys.user_stats(2), "x")
        
        UserCacheHandler(cache).on_follow_changed(
            consumed(UserFollowed(follower_id=1, followed_id=2, timestamp=1))
        )
        
        assert cache.get(keys.user_stats(1)) is None
        assert cache.get(keys.user_stats(2)) is None
