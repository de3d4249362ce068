"""
Notifications.

send_notification does not write a row: it schedules a notification.send
event on the caller's unit of work, and the consumer materializes the row.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from socialpipe.cache import keys
from socialpipe.cache.counters import CounterService
from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.store import CacheStore, CacheUnavailableError
from socialpipe.events.payloads import NotificationSend, now_ms
from socialpipe.handlers.notifications import notification_summary
from socialpipe.pipeline.effects import InvalidateCache, PublishEvent
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import NotFoundError, PermissionDeniedError
from socialpipe.services.pagination import paginate
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import Notification, NotificationType, notification_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

RETENTION_DAYS = 30


class NotificationService:
    """
    Schedule notifications through the event log and serve the receiver's reads.
    
    Unread counts are cache-aside counters; recent summaries come from the
    bounded list the materializer maintains.
    """
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        cache_store: CacheStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.publisher = publisher
        self.cache_store = cache_store
        self.policy = policy or CachePolicy()
        self.counters = CounterService(cache_store, self.policy.notification_count_ttl_seconds)
        self.clock = clock
    
    def send_notification(
        self,
        receiver_id: int,
        type: NotificationType,
        title: str,
        message: Optional[str] = None,
        sender_id: Optional[int] = None,
        entity_id: Optional[int] = None,
        unit_of_work: Optional[UnitOfWork] = None,
    ) -> None:
        """
        Schedule a notification for receiver_id.
        
        The notification.send event is published after the given (or
        current) unit of work commits; self-notifications are dropped here
        and again by the consumer.
        """
        if sender_id is not None and sender_id == receiver_id:
            return
        
        self.publisher.register_after_commit(
            [
                PublishEvent(
                    NotificationSend(
                        user_id=receiver_id,
                        title=title,
                        message=message,
                        type=type.value,
                        timestamp=self.clock(),
                        sender_id=sender_id,
                        entity_id=entity_id,
                    )
                )
            ],
            unit_of_work,
        )
    
    def list_notifications(
        self,
        ctx: RequestContext,
        page: int = 0,
        page_size: int = 20,
        unread_only: bool = False,
    ) -> Dict[str, Any]:
        notifications = self.db.notifications_for(ctx.user_id, unread_only=unread_only)
        senders = self.db.users_by_id(
            n.sender_id for n in notifications if n.sender_id is not None
        )
        return paginate(
            notifications,
            page,
            page_size,
            lambda n: notification_to_dict(n, senders.get(n.sender_id)),
        )
    
    def count_unread(self, ctx: RequestContext) -> int:
        return self.counters.get_or_recompute(
            keys.notification_unread_count(ctx.user_id),
            lambda: self.db.count_unread_notifications(ctx.user_id),
        )
    
    def recent(self, ctx: RequestContext, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent notification summaries, newest first, from the bounded list."""
        limit = max(1, min(limit, self.policy.recent_list_max_len))
        
        try:
            cached = self.cache_store.list_range(keys.notifications_recent(ctx.user_id), 0, limit - 1)
        except CacheUnavailableError as e:
            logger.warning("Recent notifications read failed", error=str(e))
            cached = []
        
        if cached:
            return [json.loads(item) for item in cached]
        
        return [
            json.loads(notification_summary(n))
            for n in self.db.notifications_for(ctx.user_id)[:limit]
        ]
    
    def _owned(self, ctx: RequestContext, notification_id: int) -> Notification:
        notification = self.db.get_notification(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.receiver_id != ctx.user_id:
            raise PermissionDeniedError("Not your notification")
        return notification
    
    def _invalidate_count(self, uow: UnitOfWork, *receiver_ids: int) -> None:
        self.publisher.register_after_commit(
            [
                InvalidateCache(
                    keys=tuple(keys.notification_unread_count(r) for r in receiver_ids)
                )
            ],
            uow,
        )
    
    def mark_as_read(self, ctx: RequestContext, notification_id: int) -> None:
        notification = self._owned(ctx, notification_id)
        if notification.is_read:
            return
        
        with UnitOfWork(self.db.begin()) as uow:
            notification.is_read = True
            uow.transaction.update(notification)
            self._invalidate_count(uow, ctx.user_id)
    
    def mark_all_as_read(self, ctx: RequestContext) -> int:
        unread = self.db.notifications_for(ctx.user_id, unread_only=True)
        
        with UnitOfWork(self.db.begin()) as uow:
            for notification in unread:
                notification.is_read = True
                uow.transaction.update(notification)
            self._invalidate_count(uow, ctx.user_id)
        
        logger.info("Marked all notifications read", user_id=ctx.user_id, count=len(unread))
        
        return len(unread)
    
    def delete_notification(self, ctx: RequestContext, notification_id: int) -> None:
        notification = self._owned(ctx, notification_id)
        
        with UnitOfWork(self.db.begin()) as uow:
            uow.transaction.delete(notification)
            if not notification.is_read:
                self._invalidate_count(uow, ctx.user_id)
    
    def purge_older_than(self, days: int = RETENTION_DAYS) -> int:
        """
        Delete notifications older than days.
        
        Returns:
            Number of notifications deleted
        """
        cutoff = self.clock() - days * 24 * 3600 * 1000
        expired = self.db.notifications_older_than(cutoff)
        if not expired:
            return 0
        
        with UnitOfWork(self.db.begin()) as uow:
            for notification in expired:
                uow.transaction.delete(notification)
            self._invalidate_count(uow, *sorted({n.receiver_id for n in expired}))
        
        logger.info("Purged old notifications", count=len(expired), cutoff=cutoff)
        
        return len(expired)
