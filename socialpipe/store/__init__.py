"""Store of record."""

from socialpipe.store.memory import InMemoryDatabase, IntegrityError, Transaction
from socialpipe.store.models import (
    FollowEdge,
    Like,
    Message,
    MessageType,
    Notification,
    NotificationType,
    Post,
    User,
    Visibility,
)

__all__ = [
    "FollowEdge",
    "InMemoryDatabase",
    "IntegrityError",
    "Like",
    "Message",
    "MessageType",
    "Notification",
    "NotificationType",
    "Post",
    "Transaction",
    "User",
    "Visibility",
]
