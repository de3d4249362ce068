"""
Notification materialization.

Turns notification.send events into persisted Notification rows. A row is
written at most once per natural key, so a redelivered event changes
nothing; the unread counter, recent list and live push only follow a row
that was actually inserted.
"""

import json
from typing import Optional

from socialpipe.cache import keys
from socialpipe.cache.policy import CachePolicy
from socialpipe.consumer.retry import MissingEntityError
from socialpipe.consumer.router import ConsumedEvent
from socialpipe.events.payloads import NotificationSend
from socialpipe.pipeline.effects import IncrementCounter, PushListItem, RealtimePush
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.realtime.channel import NOTIFICATIONS_DESTINATION
from socialpipe.store.memory import InMemoryDatabase, IntegrityError
from socialpipe.store.models import Notification, NotificationType, notification_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


def notification_summary(notification: Notification) -> str:
    """Small JSON summary kept in the recent-notifications list."""
    return json.dumps(
        {
            "id": notification.id,
            "type": notification.type.value,
            "title": notification.title,
            "message": notification.message,
            "senderId": notification.sender_id,
            "entityId": notification.entity_id,
            "createdAt": notification.created_at,
        },
        separators=(",", ":"),
    )


class NotificationMaterializer:
    """Consumes notification.send."""
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        policy: Optional[CachePolicy] = None,
    ):
        self.db = db
        self.publisher = publisher
        self.policy = policy or CachePolicy()
    
    def handle(self, event: ConsumedEvent) -> None:
        """
        Materialize one notification.
        
        Raises:
            MissingEntityError: If the receiver no longer exists
            ValueError: If the notification type is unknown
        """
        payload: NotificationSend = event.payload
        
        if payload.sender_id is not None and payload.sender_id == payload.user_id:
            logger.debug("Skipping self-notification", user_id=payload.user_id)
            return
        
        if self.db.get_user(payload.user_id) is None:
            raise MissingEntityError(f"Receiver {payload.user_id} not found")
        
        notification = Notification(
            receiver_id=payload.user_id,
            sender_id=payload.sender_id,
            type=NotificationType(payload.type),
            title=payload.title,
            message=payload.message,
            entity_id=payload.entity_id,
            created_at=payload.timestamp,
        )
        
        if self.db.find_notification(notification.natural_key()) is not None:
            logger.info(
                "Notification already materialized",
                user_id=payload.user_id,
                type=payload.type,
                offset=event.offset,
            )
            return
        
        sender = self.db.get_user(payload.sender_id)
        
        try:
            with UnitOfWork(self.db.begin()) as uow:
                uow.transaction.insert(notification)
                self.publisher.register_after_commit(
                    [
                        IncrementCounter(
                            keys.notification_unread_count(notification.receiver_id),
                            1,
                            self.policy.notification_count_ttl_seconds,
                        ),
                        PushListItem(
                            keys.notifications_recent(notification.receiver_id),
                            notification_summary(notification),
                            self.policy.recent_list_max_len,
                            self.policy.recent_list_ttl_seconds,
                        ),
                        RealtimePush(
                            notification.receiver_id,
                            NOTIFICATIONS_DESTINATION,
                            notification_to_dict(notification, sender),
                        ),
                    ],
                    uow,
                )
        except IntegrityError:
            logger.info(
                "Concurrent duplicate notification ignored",
                user_id=payload.user_id,
                type=payload.type,
            )
            return
        
        logger.info(
            "Materialized notification",
            notification_id=notification.id,
            user_id=notification.receiver_id,
            type=notification.type.value,
        )
