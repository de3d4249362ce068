"""
Search and trending cache maintenance.

Post events invalidate cached search previews and move the post's trending
score. Each logical occurrence (a created post, one user's like) bumps the
score once, however often its event is delivered. A comment counts for more
than a like.
"""

from typing import Optional

from socialpipe.cache import keys
from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.store import CacheStore
from socialpipe.consumer.router import ConsumedEvent
from socialpipe.events.payloads import PostCommented, PostCreated, PostDeleted, PostLiked
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

CREATED_SCORE = 1.0
LIKE_SCORE = 1.0
COMMENT_SCORE = 2.0


class SearchCacheHandler:
    """Consumes post.created, post.liked, post.commented and post.deleted."""
    
    def __init__(self, store: CacheStore, policy: Optional[CachePolicy] = None):
        self.store = store
        self.policy = policy or CachePolicy()
    
    def _bump_once(self, occurrence: str, post_id: int, amount: float) -> bool:
        marker = keys.processed_marker("trending", occurrence)
        if not self.store.set_if_absent(marker, "1", self.policy.marker_ttl_seconds):
            logger.debug("Trending occurrence already applied", occurrence=occurrence)
            return False
        
        try:
            self.store.increment_score(keys.TRENDING_POSTS, str(post_id), amount)
        except Exception:
            self.store.delete(marker)
            raise
        
        return True
    
    def on_post_created(self, event: ConsumedEvent) -> None:
        payload: PostCreated = event.payload
        removed = self.store.delete_pattern(keys.SEARCH_PREVIEW_PATTERN)
        self._bump_once(f"post:{payload.post_id}", payload.post_id, CREATED_SCORE)
        logger.debug("Search cache updated for new post", post_id=payload.post_id, invalidated=removed)
    
    def on_post_liked(self, event: ConsumedEvent) -> None:
        payload: PostLiked = event.payload
        self._bump_once(
            f"like:{payload.post_id}:{payload.user_id}",
            payload.post_id,
            LIKE_SCORE,
        )
    
    def on_post_commented(self, event: ConsumedEvent) -> None:
        payload: PostCommented = event.payload
        self._bump_once(f"comment:{payload.comment_id}", payload.post_id, COMMENT_SCORE)
    
    def on_post_deleted(self, event: ConsumedEvent) -> None:
        payload: PostDeleted = event.payload
        self.store.delete_pattern(keys.SEARCH_PREVIEW_PATTERN)
        self.store.remove_member(keys.TRENDING_POSTS, str(payload.post_id))
        logger.info("Removed deleted post from search caches", post_id=payload.post_id)
