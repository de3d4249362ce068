"""
User cache invalidation.

Cached user profiles and stats embed post and follow counts; events that
change those counts drop the affected entries.
"""

from socialpipe.cache import keys
from socialpipe.cache.store import CacheStore
from socialpipe.consumer.router import ConsumedEvent
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class UserCacheHandler:
    """Consumes post.created, post.deleted, user.followed and user.unfollowed."""
    
    def __init__(self, store: CacheStore):
        self.store = store
    
    def _invalidate(self, *user_ids: int) -> None:
        user_keys = []
        for user_id in user_ids:
            user_keys.extend(
                [keys.user_cache(user_id), keys.user_stats(user_id), keys.user_post_count(user_id)]
            )
        self.store.delete(*user_keys)
        logger.debug("Invalidated user caches", user_ids=list(user_ids))
    
    def on_post_changed(self, event: ConsumedEvent) -> None:
        self._invalidate(event.payload.user_id)
    
    def on_follow_changed(self, event: ConsumedEvent) -> None:
        self._invalidate(event.payload.follower_id, event.payload.followed_id)
