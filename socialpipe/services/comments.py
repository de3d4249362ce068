"""
Comments and replies on posts.

A reply names the comment it answers. Comment and reply counts are cache-aside
counters dropped after every write that changes them.
"""

from typing import Any, Callable, Dict, List, Optional

from socialpipe.cache import keys
from socialpipe.cache.counters import CounterService
from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.store import CacheStore
from socialpipe.events.payloads import PostCommented, now_ms
from socialpipe.pipeline.effects import InvalidateCache, PublishEvent
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import InvalidRequestError, NotFoundError, PermissionDeniedError
from socialpipe.services.notifications import NotificationService
from socialpipe.services.pagination import paginate
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import Comment, NotificationType, Post, comment_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class CommentService:
    """
    Write and read comments.
    
    After a comment commits, post.commented is published, the affected
    counters are dropped and the post owner (or, for a reply, the author of
    the answered comment) is notified if they are friends with the commenter.
    """
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        notifications: NotificationService,
        cache_store: CacheStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.publisher = publisher
        self.notifications = notifications
        self.policy = policy or CachePolicy()
        self.counters = CounterService(cache_store, self.policy.comment_count_ttl_seconds)
        self.clock = clock
    
    def _visible_post(self, ctx: RequestContext, post_id: int) -> Post:
        post = self.db.get_post(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        if not post.is_visible_to(ctx.user_id):
            raise PermissionDeniedError("You don't have permission to view this post")
        return post
    
    def _count_keys(self, comment: Comment) -> tuple:
        count_keys = [keys.post_comment_count(comment.post_id)]
        if comment.parent_id is not None:
            count_keys.append(keys.comment_replies_count(comment.parent_id))
        return tuple(count_keys)
    
    def add_comment(
        self,
        ctx: RequestContext,
        post_id: int,
        content: str,
        parent_comment_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Comment on a post, or reply to one of its comments.
        
        Returns:
            CommentResponse of the stored comment
        
        Raises:
            InvalidRequestError: If content is blank or the parent belongs to
                another post
            NotFoundError: If the post, the parent or the caller does not exist
            PermissionDeniedError: If the post is not visible to the caller
        """
        if not content or not content.strip():
            raise InvalidRequestError("Comment content must not be empty")
        
        post = self._visible_post(ctx, post_id)
        author = self.db.get_user(ctx.user_id)
        if author is None:
            raise NotFoundError(f"User {ctx.user_id} not found")
        
        parent = None
        if parent_comment_id is not None:
            parent = self.db.get_comment(parent_comment_id)
            if parent is None:
                raise NotFoundError(f"Comment {parent_comment_id} not found")
            if parent.post_id != post_id:
                raise InvalidRequestError("Parent comment belongs to another post")
        
        with UnitOfWork(self.db.begin()) as uow:
            comment = uow.transaction.insert(
                Comment(
                    post_id=post_id,
                    user_id=author.id,
                    content=content.strip(),
                    parent_id=parent_comment_id,
                    created_at=self.clock(),
                )
            )
            
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        PostCommented(
                            post_id=post_id,
                            comment_id=comment.id,
                            user_id=author.id,
                            content=comment.content,
                            timestamp=comment.created_at,
                            parent_comment_id=parent_comment_id,
                        )
                    ),
                    InvalidateCache(keys=self._count_keys(comment)),
                ],
                uow,
            )
            
            if parent is not None:
                recipient_id, notification_type = parent.user_id, NotificationType.REPLY
                title, verb = "New reply", "replied to your comment"
            else:
                recipient_id, notification_type = post.user_id, NotificationType.COMMENT
                title, verb = "New comment", "commented on your post"
            
            if self.db.get_friendship(author.id, recipient_id) is not None:
                self.notifications.send_notification(
                    recipient_id,
                    notification_type,
                    title=title,
                    message=f"{author.username} {verb}",
                    sender_id=author.id,
                    entity_id=comment.id,
                    unit_of_work=uow,
                )
        
        logger.info(
            "Comment added",
            comment_id=comment.id,
            post_id=post_id,
            user_id=author.id,
            parent_comment_id=parent_comment_id,
        )
        
        return comment_to_dict(comment, author)
    
    def delete_comment(self, ctx: RequestContext, comment_id: int) -> None:
        """
        Delete one of the caller's comments together with every reply below it.
        
        Raises:
            NotFoundError: If the comment does not exist
            PermissionDeniedError: If the caller did not write it
        """
        comment = self.db.get_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        if comment.user_id != ctx.user_id:
            raise PermissionDeniedError("You can only delete your own comments")
        
        replies: List[Comment] = []
        frontier = [comment_id]
        while frontier:
            children = self.db.replies_of(frontier.pop())
            replies.extend(children)
            frontier.extend(child.id for child in children)
        
        with UnitOfWork(self.db.begin()) as uow:
            for reply in replies:
                uow.transaction.delete(reply)
            uow.transaction.delete(comment)
            
            self.publisher.register_after_commit(
                [
                    InvalidateCache(
                        keys=self._count_keys(comment) + (keys.comment_replies_count(comment_id),)
                    )
                ],
                uow,
            )
        
        logger.info("Comment deleted", comment_id=comment_id, replies=len(replies))
    
    def get_post_comments(
        self,
        ctx: RequestContext,
        post_id: int,
        page: int = 0,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """Top-level comments of a visible post, newest first, with reply counts."""
        self._visible_post(ctx, post_id)
        comments = self.db.top_level_comments(post_id)
        authors = self.db.users_by_id(c.user_id for c in comments)
        return paginate(
            comments,
            page,
            page_size,
            lambda c: comment_to_dict(c, authors.get(c.user_id), self.replies_count(c.id)),
        )
    
    def get_replies(self, ctx: RequestContext, comment_id: int) -> List[Dict[str, Any]]:
        """Replies to a comment, oldest first."""
        comment = self.db.get_comment(comment_id)
        if comment is None:
            raise NotFoundError(f"Comment {comment_id} not found")
        self._visible_post(ctx, comment.post_id)
        
        replies = self.db.replies_of(comment_id)
        authors = self.db.users_by_id(r.user_id for r in replies)
        return [comment_to_dict(r, authors.get(r.user_id)) for r in replies]
    
    def comment_count(self, post_id: int) -> int:
        return self.counters.get_or_recompute(
            keys.post_comment_count(post_id),
            lambda: self.db.count_comments(post_id),
        )
    
    def replies_count(self, comment_id: int) -> int:
        return self.counters.get_or_recompute(
            keys.comment_replies_count(comment_id),
            lambda: self.db.count_replies(comment_id),
        )
