"""
Posts and likes.

Deleting a post deletes its likes and comments in the same transaction.
"""

from typing import Any, Callable, Dict, Optional

from socialpipe.cache import keys
from socialpipe.events.payloads import PostCreated, PostDeleted, PostLiked, now_ms
from socialpipe.pipeline.effects import InvalidateCache, PublishEvent
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import NotFoundError, PermissionDeniedError
from socialpipe.services.notifications import NotificationService
from socialpipe.store.memory import InMemoryDatabase, IntegrityError
from socialpipe.store.models import Like, NotificationType, Post, User, Visibility, post_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class PostService:
    """Create, read and delete posts, and like or unlike them."""
    
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
    
    def _author(self, user_id: int) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
    
    def _visible_post(self, ctx: RequestContext, post_id: int) -> Post:
        post = self.db.get_post(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        if not post.is_visible_to(ctx.user_id):
            raise PermissionDeniedError("You don't have permission to view this post")
        return post
    
    def create_post(
        self,
        ctx: RequestContext,
        caption: Optional[str] = None,
        visibility: Visibility = Visibility.PUBLIC,
        promoted: bool = False,
    ) -> Dict[str, Any]:
        """
        Create a post.
        
        After commit: post.created is published, the author's cached counts
        are dropped and, for PUBLIC posts only, every follower is sent a
        NEW_POST notification.
        """
        author = self._author(ctx.user_id)
        
        with UnitOfWork(self.db.begin()) as uow:
            post = uow.transaction.insert(
                Post(
                    user_id=author.id,
                    caption=caption,
                    visibility=visibility,
                    promoted=promoted,
                    created_at=self.clock(),
                )
            )
            
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        PostCreated(
                            post_id=post.id,
                            user_id=author.id,
                            content=caption or "",
                            timestamp=post.created_at,
                        )
                    ),
                    InvalidateCache(
                        keys=(keys.user_post_count(author.id), keys.user_stats(author.id))
                    ),
                ],
                uow,
            )
            
            if visibility == Visibility.PUBLIC:
                for follower_id in self.db.follower_ids(author.id):
                    self.notifications.send_notification(
                        follower_id,
                        NotificationType.NEW_POST,
                        title="New post",
                        message=f"{author.username} shared a new post",
                        sender_id=author.id,
                        entity_id=post.id,
                        unit_of_work=uow,
                    )
        
        logger.info("Post created", post_id=post.id, user_id=author.id, visibility=visibility.value)
        
        return post_to_dict(post, author)
    
    def get_post(self, ctx: RequestContext, post_id: int) -> Dict[str, Any]:
        """
        Raises:
            NotFoundError: If the post does not exist
            PermissionDeniedError: If the post is not visible to the caller
        """
        post = self._visible_post(ctx, post_id)
        return post_to_dict(post, self.db.get_user(post.user_id))
    
    def delete_post(self, ctx: RequestContext, post_id: int) -> None:
        post = self.db.get_post(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        if post.user_id != ctx.user_id:
            raise PermissionDeniedError("You can only delete your own posts")
        
        with UnitOfWork(self.db.begin()) as uow:
            for like in self.db.likes_of(post_id):
                uow.transaction.delete(like)
            for comment in self.db.comments_of(post_id):
                uow.transaction.delete(comment)
            uow.transaction.delete(post)
            
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        PostDeleted(post_id=post.id, user_id=post.user_id, timestamp=self.clock())
                    ),
                    InvalidateCache(
                        keys=(
                            keys.user_post_count(post.user_id),
                            keys.user_stats(post.user_id),
                            keys.post_comment_count(post.id),
                        )
                    ),
                ],
                uow,
            )
        
        logger.info("Post deleted", post_id=post_id, user_id=ctx.user_id)
    
    def like_post(self, ctx: RequestContext, post_id: int) -> bool:
        """
        Like a post the caller can see.
        
        Returns:
            False if the caller already liked it
        """
        post = self._visible_post(ctx, post_id)
        
        if self.db.get_like(post_id, ctx.user_id) is not None:
            return False
        
        liker = self._author(ctx.user_id)
        
        try:
            with UnitOfWork(self.db.begin()) as uow:
                like = uow.transaction.insert(
                    Like(post_id=post_id, user_id=ctx.user_id, created_at=self.clock())
                )
                self.publisher.register_after_commit(
                    [
                        PublishEvent(
                            PostLiked(post_id=post_id, user_id=ctx.user_id, timestamp=like.created_at)
                        )
                    ],
                    uow,
                )
                self.notifications.send_notification(
                    post.user_id,
                    NotificationType.LIKE,
                    title="New like",
                    message=f"{liker.username} liked your post",
                    sender_id=ctx.user_id,
                    entity_id=post_id,
                    unit_of_work=uow,
                )
        except IntegrityError:
            return False
        
        return True
    
    def unlike_post(self, ctx: RequestContext, post_id: int) -> bool:
        like = self.db.get_like(post_id, ctx.user_id)
        if like is None:
            return False
        
        with UnitOfWork(self.db.begin()) as uow:
            uow.transaction.delete(like)
        
        return True
    
    def like_count(self, post_id: int) -> int:
        return self.db.count_likes(post_id)
