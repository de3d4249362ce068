"""
In-memory transactional store of record.

Reference adapter for the relational store: writes are buffered in a
transaction and applied atomically on commit, unique keys are checked at
commit time, and readers only ever see committed rows.
"""

import itertools
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, Tuple, Type

from socialpipe.store.models import (
    Comment,
    FollowEdge,
    FriendRequest,
    FriendRequestStatus,
    Friendship,
    Like,
    Message,
    Notification,
    Post,
    User,
)
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

TABLES: Dict[Type, str] = {
    User: "users",
    Post: "posts",
    Message: "messages",
    Notification: "notifications",
    FollowEdge: "follows",
    Like: "likes",
    Comment: "comments",
    FriendRequest: "friend_requests",
    Friendship: "friendships",
}

GENERATED_ID_TABLES = ("users", "posts", "messages", "notifications", "comments", "friend_requests")


class IntegrityError(Exception):
    """Raised at commit when a unique key would be violated."""
    pass


class TransactionError(Exception):
    """Raised when a finished transaction is used again."""
    pass


def _table_for(entity: Any) -> str:
    table = TABLES.get(type(entity))
    if table is None:
        raise TypeError(f"Not a stored entity: {type(entity).__name__}")
    return table


class Transaction:
    """Buffered writes applied atomically by commit()."""
    
    def __init__(self, db: "InMemoryDatabase"):
        self._db = db
        self._operations: List[Tuple[str, str, Any]] = []
        self._finished = False
    
    def _check_open(self) -> None:
        if self._finished:
            raise TransactionError("Transaction already finished")
    
    def insert(self, entity: Any) -> Any:
        """
        Stage an insert.
        
        Generated ids are assigned immediately so the caller can reference
        the row before commit; ids of rolled-back inserts are not reused.
        
        Returns:
            The entity (with its id set)
        """
        self._check_open()
        table = _table_for(entity)
        if table in GENERATED_ID_TABLES and not entity.id:
            entity.id = self._db.next_id(table)
        self._operations.append(("insert", table, replace(entity)))
        return entity
    
    def update(self, entity: Any) -> Any:
        """Stage a full-row update."""
        self._check_open()
        self._operations.append(("update", _table_for(entity), replace(entity)))
        return entity
    
    def delete(self, entity: Any) -> None:
        """Stage a delete."""
        self._check_open()
        self._operations.append(("delete", _table_for(entity), entity.primary_key()))
    
    @property
    def pending(self) -> int:
        return len(self._operations)
    
    def commit(self) -> None:
        """
        Apply every staged write, or none.
        
        Raises:
            IntegrityError: If a unique key would be violated
        """
        self._check_open()
        self._finished = True
        self._db.apply(self._operations)
    
    def rollback(self) -> None:
        self._finished = True
        self._operations = []


class InMemoryDatabase:
    """Committed rows plus unique indexes."""
    
    def __init__(self):
        self._tables: Dict[str, Dict[Hashable, Any]] = {name: {} for name in TABLES.values()}
        self._sequences = {name: itertools.count(1) for name in GENERATED_ID_TABLES}
        self._notification_keys: Dict[Tuple, int] = {}
        self._lock = threading.RLock()
    
    def begin(self) -> Transaction:
        return Transaction(self)
    
    def next_id(self, table: str) -> int:
        with self._lock:
            return next(self._sequences[table])
    
    def apply(self, operations: List[Tuple[str, str, Any]]) -> None:
        """Validate then apply a transaction's writes under one lock."""
        with self._lock:
            tables = {name: dict(rows) for name, rows in self._tables.items()}
            notification_keys = dict(self._notification_keys)
            
            for op, table, value in operations:
                rows = tables[table]
                
                if op == "insert":
                    key = value.primary_key()
                    if key in rows:
                        raise IntegrityError(f"Duplicate primary key {key!r} in {table}")
                    if table == "notifications":
                        natural_key = value.natural_key()
                        if natural_key in notification_keys:
                            raise IntegrityError(
                                f"Duplicate notification {natural_key!r}"
                            )
                        notification_keys[natural_key] = value.id
                    rows[key] = value
                
                elif op == "update":
                    key = value.primary_key()
                    if key not in rows:
                        continue
                    rows[key] = value
                
                elif op == "delete":
                    removed = rows.pop(value, None)
                    if removed is not None and table == "notifications":
                        notification_keys.pop(removed.natural_key(), None)
            
            if any(table == "friend_requests" for _, table, _ in operations):
                pending_pairs = set()
                for request in tables["friend_requests"].values():
                    if request.status is not FriendRequestStatus.PENDING:
                        continue
                    if request.pair() in pending_pairs:
                        raise IntegrityError(
                            f"Duplicate pending friend request for {request.pair()!r}"
                        )
                    pending_pairs.add(request.pair())
            
            self._tables = tables
            self._notification_keys = notification_keys
    
    def _get(self, table: str, key: Hashable) -> Optional[Any]:
        with self._lock:
            row = self._tables[table].get(key)
        return replace(row) if row is not None else None
    
    def _select(self, table: str, predicate: Callable[[Any], bool]) -> List[Any]:
        with self._lock:
            rows = list(self._tables[table].values())
        return [replace(row) for row in rows if predicate(row)]
    
    def _count(self, table: str, predicate: Callable[[Any], bool]) -> int:
        with self._lock:
            return sum(1 for row in self._tables[table].values() if predicate(row))
    
    # Users
    
    def get_user(self, user_id: Optional[int]) -> Optional[User]:
        if user_id is None:
            return None
        return self._get("users", user_id)
    
    def users_by_id(self, user_ids: Iterable[int]) -> Dict[int, User]:
        wanted = set(user_ids)
        return {user.id: user for user in self._select("users", lambda u: u.id in wanted)}
    
    # Posts
    
    def get_post(self, post_id: int) -> Optional[Post]:
        return self._get("posts", post_id)
    
    def feed_candidates(self, author_ids: Iterable[int]) -> List[Post]:
        """Posts written by author_ids plus every promoted post."""
        authors = set(author_ids)
        return self._select("posts", lambda p: p.user_id in authors or p.is_promoted)
    
    def count_posts_by(self, user_id: int) -> int:
        return self._count("posts", lambda p: p.user_id == user_id)
    
    # Likes
    
    def get_like(self, post_id: int, user_id: int) -> Optional[Like]:
        return self._get("likes", (post_id, user_id))
    
    def likes_of(self, post_id: int) -> List[Like]:
        return self._select("likes", lambda like: like.post_id == post_id)
    
    def count_likes(self, post_id: int) -> int:
        return self._count("likes", lambda like: like.post_id == post_id)
    
    # Follow edges
    
    def get_follow(self, follower_id: int, followed_id: int) -> Optional[FollowEdge]:
        return self._get("follows", (follower_id, followed_id))
    
    def following_ids(self, user_id: int) -> List[int]:
        edges = self._select("follows", lambda e: e.follower_id == user_id)
        return sorted(edge.followed_id for edge in edges)
    
    def follower_ids(self, user_id: int) -> List[int]:
        edges = self._select("follows", lambda e: e.followed_id == user_id)
        return sorted(edge.follower_id for edge in edges)
    
    # Messages
    
    def get_message(self, message_id: int) -> Optional[Message]:
        return self._get("messages", message_id)
    
    def messages_between(self, user_a: int, user_b: int) -> List[Message]:
        """Conversation messages, newest first."""
        pair = {user_a, user_b}
        messages = self._select(
            "messages",
            lambda m: {m.sender_id, m.receiver_id} == pair,
        )
        return sorted(messages, key=lambda m: (m.created_at, m.id), reverse=True)
    
    def chat_partner_ids(self, user_id: int) -> List[int]:
        partners = set()
        for m in self._select("messages", lambda m: user_id in (m.sender_id, m.receiver_id)):
            partners.add(m.receiver_id if m.sender_id == user_id else m.sender_id)
        return sorted(partners)
    
    def unread_messages(self, receiver_id: int, sender_id: Optional[int] = None) -> List[Message]:
        return self._select(
            "messages",
            lambda m: (
                m.receiver_id == receiver_id
                and not m.is_read
                and (sender_id is None or m.sender_id == sender_id)
            ),
        )
    
    def count_unread_messages(self, receiver_id: int, sender_id: Optional[int] = None) -> int:
        return self._count(
            "messages",
            lambda m: (
                m.receiver_id == receiver_id
                and not m.is_read
                and (sender_id is None or m.sender_id == sender_id)
            ),
        )
    
    # Notifications
    
    def get_notification(self, notification_id: int) -> Optional[Notification]:
        return self._get("notifications", notification_id)
    
    def find_notification(self, natural_key: Tuple) -> Optional[Notification]:
        with self._lock:
            notification_id = self._notification_keys.get(natural_key)
        if notification_id is None:
            return None
        return self._get("notifications", notification_id)
    
    def notifications_for(self, receiver_id: int, unread_only: bool = False) -> List[Notification]:
        """Notifications of a user, newest first."""
        notifications = self._select(
            "notifications",
            lambda n: n.receiver_id == receiver_id and (not unread_only or not n.is_read),
        )
        return sorted(notifications, key=lambda n: (n.created_at, n.id), reverse=True)
    
    def count_unread_notifications(self, receiver_id: int) -> int:
        return self._count(
            "notifications",
            lambda n: n.receiver_id == receiver_id and not n.is_read,
        )
    
    def notifications_older_than(self, cutoff_ms: int) -> List[Notification]:
        return self._select("notifications", lambda n: n.created_at < cutoff_ms)
    
    # Comments
    
    def get_comment(self, comment_id: int) -> Optional[Comment]:
        return self._get("comments", comment_id)
    
    def comments_of(self, post_id: int) -> List[Comment]:
        """Every comment and reply on a post."""
        return self._select("comments", lambda c: c.post_id == post_id)
    
    def top_level_comments(self, post_id: int) -> List[Comment]:
        """Comments on a post that answer no other comment, newest first."""
        comments = self._select(
            "comments",
            lambda c: c.post_id == post_id and c.parent_id is None,
        )
        return sorted(comments, key=lambda c: (c.created_at, c.id), reverse=True)
    
    def replies_of(self, comment_id: int) -> List[Comment]:
        """Replies to a comment, oldest first."""
        replies = self._select("comments", lambda c: c.parent_id == comment_id)
        return sorted(replies, key=lambda c: (c.created_at, c.id))
    
    def count_comments(self, post_id: int) -> int:
        return self._count("comments", lambda c: c.post_id == post_id)
    
    def count_replies(self, comment_id: int) -> int:
        return self._count("comments", lambda c: c.parent_id == comment_id)
    
    # Friend requests and friendships
    
    def get_friend_request(self, request_id: int) -> Optional[FriendRequest]:
        return self._get("friend_requests", request_id)
    
    def pending_request_between(self, user_a: int, user_b: int) -> Optional[FriendRequest]:
        """The PENDING request between two users, sent in either direction."""
        pair = {user_a, user_b}
        requests = self._select(
            "friend_requests",
            lambda r: (
                r.status is FriendRequestStatus.PENDING
                and {r.sender_id, r.receiver_id} == pair
            ),
        )
        return requests[0] if requests else None
    
    def friend_requests_received(self, user_id: int) -> List[FriendRequest]:
        """Pending requests sent to user_id, newest first."""
        requests = self._select(
            "friend_requests",
            lambda r: r.receiver_id == user_id and r.status is FriendRequestStatus.PENDING,
        )
        return sorted(requests, key=lambda r: (r.created_at, r.id), reverse=True)
    
    def friend_requests_sent(self, user_id: int) -> List[FriendRequest]:
        """Pending requests sent by user_id, newest first."""
        requests = self._select(
            "friend_requests",
            lambda r: r.sender_id == user_id and r.status is FriendRequestStatus.PENDING,
        )
        return sorted(requests, key=lambda r: (r.created_at, r.id), reverse=True)
    
    def get_friendship(self, user_id: int, friend_id: int) -> Optional[Friendship]:
        return self._get("friendships", (user_id, friend_id))
    
    def friend_ids(self, user_id: int) -> List[int]:
        edges = self._select("friendships", lambda f: f.user_id == user_id)
        return sorted(edge.friend_id for edge in edges)
