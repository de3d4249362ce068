"""
Direct messages.

Sending a message commits the row, then (after commit only) publishes
message.sent, bumps the receiver's unread counters, prepends the message to
the conversation's recent list and pushes it to the receiver's live
connections.
"""

import json
from typing import Any, Callable, Dict, List, Optional

from socialpipe.cache import keys
from socialpipe.cache.counters import CounterService
from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.store import CacheStore, CacheUnavailableError
from socialpipe.events.payloads import MessageDeleted, MessageSent, now_ms
from socialpipe.pipeline.effects import (
    IncrementCounter,
    InvalidateCache,
    PublishEvent,
    PushListItem,
    RealtimePush,
)
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.realtime.channel import MESSAGES_DESTINATION
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import InvalidRequestError, NotFoundError, PermissionDeniedError
from socialpipe.services.pagination import paginate
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import Message, MessageType, User, message_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

CONVERSATION_CACHE_TTL_SECONDS = 300


class MessageService:
    """Send, read and manage direct messages."""
    
    def __init__(
        self,
        db: InMemoryDatabase,
        publisher: CommitSynchronizedPublisher,
        cache_store: CacheStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], int] = now_ms,
    ):
        """
        Initialize message service.
        
        Args:
            db: Store of record
            publisher: After-commit effect publisher
            cache_store: Cache for counters and recent lists
            policy: Cache TTLs and bounds
            clock: Current time in ms
        """
        self.db = db
        self.publisher = publisher
        self.cache_store = cache_store
        self.policy = policy or CachePolicy()
        self.counters = CounterService(cache_store, self.policy.unread_ttl_seconds)
        self.clock = clock
    
    def _require_user(self, user_id: int) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
    
    def send_message(
        self,
        ctx: RequestContext,
        receiver_id: int,
        content: Optional[str] = None,
        media_url: Optional[str] = None,
        message_type: MessageType = MessageType.TEXT,
    ) -> Dict[str, Any]:
        """
        Send a message from the caller to receiver_id.
        
        Returns:
            MessageDto of the stored message
        
        Raises:
            InvalidRequestError: If the message has neither content nor media
            NotFoundError: If sender or receiver does not exist
        """
        if not content and not media_url:
            raise InvalidRequestError("A message needs content or media")
        
        sender = self._require_user(ctx.user_id)
        receiver = self._require_user(receiver_id)
        
        with UnitOfWork(self.db.begin()) as uow:
            message = uow.transaction.insert(
                Message(
                    sender_id=sender.id,
                    receiver_id=receiver.id,
                    content=content,
                    media_url=media_url,
                    message_type=message_type,
                    created_at=self.clock(),
                )
            )
            dto = message_to_dict(message, sender, receiver)
            
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        MessageSent(
                            message_id=message.id,
                            sender_id=sender.id,
                            receiver_id=receiver.id,
                            content=content,
                            timestamp=message.created_at,
                        )
                    ),
                    IncrementCounter(
                        keys.unread_messages(receiver.id, sender.id),
                        1,
                        self.policy.unread_ttl_seconds,
                    ),
                    IncrementCounter(
                        keys.unread_total(receiver.id),
                        1,
                        self.policy.unread_ttl_seconds,
                    ),
                    PushListItem(
                        keys.chat_history(sender.id, receiver.id),
                        json.dumps(dto, separators=(",", ":")),
                        self.policy.recent_list_max_len,
                        self.policy.recent_list_ttl_seconds,
                    ),
                    InvalidateCache(
                        keys=(
                            keys.conversation_list(sender.id),
                            keys.conversation_list(receiver.id),
                        )
                    ),
                    RealtimePush(receiver.id, MESSAGES_DESTINATION, dto),
                ],
                uow,
            )
        
        logger.info(
            "Message sent",
            message_id=message.id,
            sender_id=sender.id,
            receiver_id=receiver.id,
        )
        
        return dto
    
    def get_chat_history(
        self,
        ctx: RequestContext,
        partner_id: int,
        page: int = 0,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """Conversation with partner_id from the store of record, newest first."""
        messages = self.db.messages_between(ctx.user_id, partner_id)
        users = self.db.users_by_id([ctx.user_id, partner_id])
        
        return paginate(
            messages,
            page,
            page_size,
            lambda m: message_to_dict(m, users.get(m.sender_id), users.get(m.receiver_id)),
        )
    
    def recent_messages(self, ctx: RequestContext, partner_id: int, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Latest messages of a conversation, newest first.
        
        Served from the bounded recent list; falls back to the store of
        record when the list is cold or the cache is down.
        """
        limit = max(1, min(limit, self.policy.recent_list_max_len))
        
        try:
            cached = self.cache_store.list_range(
                keys.chat_history(ctx.user_id, partner_id), 0, limit - 1
            )
        except CacheUnavailableError as e:
            logger.warning("Recent messages read failed", error=str(e))
            cached = []
        
        if cached:
            return [json.loads(item) for item in cached]
        
        users = self.db.users_by_id([ctx.user_id, partner_id])
        return [
            message_to_dict(m, users.get(m.sender_id), users.get(m.receiver_id))
            for m in self.db.messages_between(ctx.user_id, partner_id)[:limit]
        ]
    
    def count_unread(self, ctx: RequestContext, sender_id: int) -> int:
        """Unread messages from sender_id to the caller."""
        return self.counters.get_or_recompute(
            keys.unread_messages(ctx.user_id, sender_id),
            lambda: self.db.count_unread_messages(ctx.user_id, sender_id),
        )
    
    def count_total_unread(self, ctx: RequestContext) -> int:
        """All unread messages waiting for the caller."""
        return self.counters.get_or_recompute(
            keys.unread_total(ctx.user_id),
            lambda: self.db.count_unread_messages(ctx.user_id),
        )
    
    def mark_as_read(self, ctx: RequestContext, sender_id: int) -> int:
        """
        Mark every message from sender_id to the caller as read.
        
        The unread counters are dropped after commit and recomputed by the
        next read.
        
        Returns:
            Number of messages marked
        """
        unread = self.db.unread_messages(ctx.user_id, sender_id)
        
        with UnitOfWork(self.db.begin()) as uow:
            for message in unread:
                message.is_read = True
                uow.transaction.update(message)
            
            self.publisher.register_after_commit(
                [
                    InvalidateCache(
                        keys=(
                            keys.unread_messages(ctx.user_id, sender_id),
                            keys.unread_total(ctx.user_id),
                        )
                    )
                ],
                uow,
            )
        
        logger.info("Marked messages read", receiver_id=ctx.user_id, sender_id=sender_id, count=len(unread))
        
        return len(unread)
    
    def delete_message(self, ctx: RequestContext, message_id: int) -> None:
        """
        Delete one of the caller's own messages.
        
        Raises:
            NotFoundError: If the message does not exist
            PermissionDeniedError: If the caller did not send it
        """
        message = self.db.get_message(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        if message.sender_id != ctx.user_id:
            raise PermissionDeniedError("You can only delete your own messages")
        
        invalidated = [
            keys.conversation_list(message.sender_id),
            keys.conversation_list(message.receiver_id),
            keys.chat_history(message.sender_id, message.receiver_id),
        ]
        if not message.is_read:
            invalidated += [
                keys.unread_messages(message.receiver_id, message.sender_id),
                keys.unread_total(message.receiver_id),
            ]
        
        with UnitOfWork(self.db.begin()) as uow:
            uow.transaction.delete(message)
            self.publisher.register_after_commit(
                [
                    PublishEvent(
                        MessageDeleted(
                            message_id=message.id,
                            sender_id=message.sender_id,
                            receiver_id=message.receiver_id,
                            timestamp=self.clock(),
                        )
                    ),
                    InvalidateCache(keys=tuple(invalidated)),
                ],
                uow,
            )
        
        logger.info("Message deleted", message_id=message_id, sender_id=ctx.user_id)
    
    def get_conversations(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        """
        Chat partners of the caller with their last message, most recent first.
        """
        cache_key = keys.conversation_list(ctx.user_id)
        
        try:
            cached = self.cache_store.get(cache_key)
        except CacheUnavailableError as e:
            logger.warning("Conversation cache read failed", error=str(e))
            cached = None
        
        if cached is not None:
            return json.loads(cached)
        
        conversations = self._load_conversations(ctx.user_id)
        
        try:
            self.cache_store.set(
                cache_key,
                json.dumps(conversations, separators=(",", ":")),
                CONVERSATION_CACHE_TTL_SECONDS,
            )
        except CacheUnavailableError as e:
            logger.warning("Conversation cache write failed", error=str(e))
        
        return conversations
    
    def _load_conversations(self, user_id: int) -> List[Dict[str, Any]]:
        partner_ids = self.db.chat_partner_ids(user_id)
        users = self.db.users_by_id([user_id, *partner_ids])
        
        conversations = []
        for partner_id in partner_ids:
            last = self.db.messages_between(user_id, partner_id)[0]
            conversations.append(
                {
                    "partnerId": partner_id,
                    "lastMessage": message_to_dict(
                        last, users.get(last.sender_id), users.get(last.receiver_id)
                    ),
                    "unreadCount": self.db.count_unread_messages(user_id, partner_id),
                }
            )
        
        conversations.sort(
            key=lambda c: (c["lastMessage"]["createdAt"], c["lastMessage"]["id"]),
            reverse=True,
        )
        return conversations
