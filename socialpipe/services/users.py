"""
User accounts (registration, lookup and profile stats).
"""

import json
from typing import Any, Callable, Dict, Optional

from socialpipe.cache import keys
from socialpipe.cache.store import CacheStore, CacheUnavailableError
from socialpipe.events.payloads import UserRegistered, now_ms
from socialpipe.pipeline.effects import PublishEvent
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.errors import InvalidRequestError, NotFoundError
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import User, user_summary
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

USER_STATS_TTL_SECONDS = 300


class UserService:
    """Register and look up users; user.registered is published after each registration commits."""
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        cache_store: CacheStore,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.publisher = publisher
        self.cache_store = cache_store
        self.clock = clock
    
    def register_user(self, username: str, avatar_url: Optional[str] = None) -> User:
        if not username or not username.strip():
            raise InvalidRequestError("username must not be empty")
        
        with UnitOfWork(self.db.begin()) as uow:
            user = uow.transaction.insert(
                User(username=username.strip(), avatar_url=avatar_url, created_at=self.clock())
            )
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        UserRegistered(
                            user_id=user.id,
                            username=user.username,
                            timestamp=user.created_at,
                        )
                    )
                ],
                uow,
            )
        
        logger.info("Registered user", user_id=user.id, username=user.username)
        
        return user
    
    def get_user(self, user_id: int) -> Dict:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user_summary(user, user_id)
    
    def get_user_stats(self, user_id: int) -> Dict[str, Any]:
        """
        Post, follower and following counts of a user.
        
        Cached under user:<id>:stats; post and follow events drop the entry.
        
        Raises:
            NotFoundError: If the user does not exist
        """
        cache_key = keys.user_stats(user_id)
        
        try:
            cached = self.cache_store.get(cache_key)
        except CacheUnavailableError as e:
            logger.warning("User stats cache read failed", user_id=user_id, error=str(e))
            cached = None
        
        if cached is not None:
            return json.loads(cached)
        
        if self.db.get_user(user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        
        stats = {
            "userId": user_id,
            "postCount": self.db.count_posts_by(user_id),
            "followerCount": len(self.db.follower_ids(user_id)),
            "followingCount": len(self.db.following_ids(user_id)),
        }
        
        try:
            self.cache_store.set(
                cache_key,
                json.dumps(stats, separators=(",", ":")),
                USER_STATS_TTL_SECONDS,
            )
        except CacheUnavailableError as e:
            logger.warning("User stats cache write failed", user_id=user_id, error=str(e))
        
        return stats
