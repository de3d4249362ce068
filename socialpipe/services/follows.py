"""
Follow graph.

Edges are directed records keyed by (follower_id, followed_id). Following is
not friendship: friends are the separate relation kept by FriendService.
"""

from typing import Callable, List

from socialpipe.cache import keys
from socialpipe.events.payloads import UserFollowed, UserUnfollowed, now_ms
from socialpipe.pipeline.effects import InvalidateCache, PublishEvent
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import InvalidRequestError, NotFoundError
from socialpipe.services.notifications import NotificationService
from socialpipe.store.memory import InMemoryDatabase, IntegrityError
from socialpipe.store.models import FollowEdge, NotificationType
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


def _user_cache_keys(*user_ids: int) -> tuple:
    return tuple(k for user_id in user_ids for k in (keys.user_cache(user_id), keys.user_stats(user_id)))


class FollowService:
    """Follow and unfollow users; each new edge notifies the followed user."""
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        notifications: NotificationService,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.publisher = publisher
        self.notifications = notifications
        self.clock = clock
    
    def follow(self, ctx: RequestContext, target_id: int) -> bool:
        """
        Follow target_id.
        
        Returns:
            False if the caller already follows target_id
        
        Raises:
            InvalidRequestError: On a self-follow
            NotFoundError: If target_id does not exist
        """
        if target_id == ctx.user_id:
            raise InvalidRequestError("Cannot follow yourself")
        
        follower = self.db.get_user(ctx.user_id)
        if follower is None:
            raise NotFoundError(f"User {ctx.user_id} not found")
        if self.db.get_user(target_id) is None:
            raise NotFoundError(f"User {target_id} not found")
        
        if self.is_following(ctx.user_id, target_id):
            return False
        
        try:
            with UnitOfWork(self.db.begin()) as uow:
                edge = uow.transaction.insert(
                    FollowEdge(ctx.user_id, target_id, created_at=self.clock())
                )
                self.publisher.register_after_commit(
                    [
                        PublishEvent(
                            UserFollowed(
                                follower_id=ctx.user_id,
                                followed_id=target_id,
                                timestamp=edge.created_at,
                            )
                        ),
                        InvalidateCache(keys=_user_cache_keys(ctx.user_id, target_id)),
                    ],
                    uow,
                )
                self.notifications.send_notification(
                    target_id,
                    NotificationType.FOLLOW,
                    title="New follower",
                    message=f"{follower.username} started following you",
                    sender_id=ctx.user_id,
                    unit_of_work=uow,
                )
        except IntegrityError:
            return False
        
        logger.info("User followed", follower_id=ctx.user_id, followed_id=target_id)
        
        return True
    
    def unfollow(self, ctx: RequestContext, target_id: int) -> bool:
        """
        Returns:
            False if the caller was not following target_id
        """
        edge = self.db.get_follow(ctx.user_id, target_id)
        if edge is None:
            return False
        
        with UnitOfWork(self.db.begin()) as uow:
            uow.transaction.delete(edge)
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        UserUnfollowed(
                            follower_id=ctx.user_id,
                            followed_id=target_id,
                            timestamp=self.clock(),
                        )
                    ),
                    InvalidateCache(keys=_user_cache_keys(ctx.user_id, target_id)),
                ],
                uow,
            )
        
        logger.info("User unfollowed", follower_id=ctx.user_id, followed_id=target_id)
        
        return True
    
    def is_following(self, follower_id: int, followed_id: int) -> bool:
        return self.db.get_follow(follower_id, followed_id) is not None
    
    def is_friend(self, user_a: int, user_b: int) -> bool:
        """True when an accepted friend request links the two users, whatever they follow."""
        return self.db.get_friendship(user_a, user_b) is not None
    
    def followers(self, user_id: int) -> List[int]:
        return self.db.follower_ids(user_id)
    
    def following(self, user_id: int) -> List[int]:
        return self.db.following_ids(user_id)
    
    def follower_count(self, user_id: int) -> int:
        return len(self.db.follower_ids(user_id))
    
    def following_count(self, user_id: int) -> int:
        return len(self.db.following_ids(user_id))
