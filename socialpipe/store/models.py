"""
Relational entities and their read DTOs.

Times are epoch milliseconds. Follow edges, friendships and likes are independent records
keyed by their endpoints; nothing here holds references to other entities.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Hashable, Optional, Tuple


class Visibility(Enum):
    """Who may see a post."""
    
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"
    ADVERTISE = "ADVERTISE"
    
    def is_public(self) -> bool:
        return self in (Visibility.PUBLIC, Visibility.ADVERTISE)


class MessageType(Enum):
    TEXT = "TEXT"
    IMAGE = "IMAGE"
    VIDEO = "VIDEO"


class NotificationType(Enum):
    LIKE = "LIKE"
    COMMENT = "COMMENT"
    FOLLOW = "FOLLOW"
    MESSAGE = "MESSAGE"
    POST = "POST"
    NEW_POST = "NEW_POST"
    REPLY = "REPLY"
    MENTION = "MENTION"
    FRIEND_REQUEST = "FRIEND_REQUEST"
    FRIEND_ACCEPT = "FRIEND_ACCEPT"
    SYSTEM = "SYSTEM"


@dataclass
class User:
    id: int = 0
    username: str = ""
    avatar_url: Optional[str] = None
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return self.id


@dataclass
class Post:
    """
    A post.
    
    Attributes:
        promoted: Paid placement; ADVERTISE posts are always promoted
    """
    id: int = 0
    user_id: int = 0
    caption: Optional[str] = None
    visibility: Visibility = Visibility.PUBLIC
    promoted: bool = False
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return self.id
    
    @property
    def is_promoted(self) -> bool:
        return self.promoted or self.visibility == Visibility.ADVERTISE
    
    def is_visible_to(self, viewer_id: int) -> bool:
        """PUBLIC and ADVERTISE posts are visible to anyone, others only to the owner."""
        return self.user_id == viewer_id or self.visibility.is_public()


@dataclass
class Message:
    id: int = 0
    sender_id: int = 0
    receiver_id: int = 0
    content: Optional[str] = None
    media_url: Optional[str] = None
    message_type: MessageType = MessageType.TEXT
    is_read: bool = False
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return self.id


@dataclass
class Notification:
    """
    A materialized notification.
    
    System notifications have no sender.
    """
    id: int = 0
    receiver_id: int = 0
    sender_id: Optional[int] = None
    type: NotificationType = NotificationType.SYSTEM
    title: str = ""
    message: Optional[str] = None
    entity_id: Optional[int] = None
    is_read: bool = False
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return self.id
    
    def natural_key(self) -> Tuple:
        """
        Identity of the logical occurrence this notification records.
        
        Returns:
            (receiver, sender, type, entity) for user-originated notifications,
            (receiver, type, title, created_at) for system ones
        """
        if self.sender_id is None:
            return (self.receiver_id, self.type.value, self.title, self.created_at)
        return (self.receiver_id, self.sender_id, self.type.value, self.entity_id)


@dataclass
class FollowEdge:
    """Directed edge: follower_id follows followed_id."""
    follower_id: int
    followed_id: int
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return (self.follower_id, self.followed_id)


@dataclass
class Like:
    post_id: int
    user_id: int
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return (self.post_id, self.user_id)


@dataclass
class Comment:
    """A comment on a post; replies carry the id of the comment they answer."""
    id: int = 0
    post_id: int = 0
    user_id: int = 0
    content: str = ""
    parent_id: Optional[int] = None
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return self.id


class FriendRequestStatus(Enum):
    """
    Friend request lifecycle.
    
    State transitions:
    PENDING → ACCEPTED
            ↘ REJECTED
            ↘ CANCELLED
    """
    
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


@dataclass
class FriendRequest:
    """
    Request from sender_id to befriend receiver_id.
    
    At most one PENDING request exists per pair of users, in either direction.
    """
    id: int = 0
    sender_id: int = 0
    receiver_id: int = 0
    status: FriendRequestStatus = FriendRequestStatus.PENDING
    created_at: int = 0
    responded_at: Optional[int] = None
    
    def primary_key(self) -> Hashable:
        return self.id
    
    def pair(self) -> Tuple[int, int]:
        """The two users, in order, regardless of direction."""
        low, high = sorted((self.sender_id, self.receiver_id))
        return (low, high)


@dataclass
class Friendship:
    """Directed edge: friend_id is a friend of user_id. Friends hold one edge each way."""
    user_id: int
    friend_id: int
    created_at: int = 0
    
    def primary_key(self) -> Hashable:
        return (self.user_id, self.friend_id)


def user_summary(user: Optional[User], user_id: Optional[int]) -> Dict[str, Any]:
    if user is None:
        return {"id": user_id, "username": None, "avatarUrl": None}
    return {"id": user.id, "username": user.username, "avatarUrl": user.avatar_url}


def post_to_dict(post: Post, author: Optional[User] = None) -> Dict[str, Any]:
    """PostResponse DTO."""
    summary = user_summary(author, post.user_id)
    return {
        "id": post.id,
        "userId": post.user_id,
        "username": summary["username"],
        "userAvatarUrl": summary["avatarUrl"],
        "caption": post.caption,
        "visibility": post.visibility.value,
        "promoted": post.is_promoted,
        "createdAt": post.created_at,
    }


def message_to_dict(
    message: Message,
    sender: Optional[User] = None,
    receiver: Optional[User] = None,
) -> Dict[str, Any]:
    """MessageDto, shared by the chat history read and the live push."""
    sender_summary = user_summary(sender, message.sender_id)
    receiver_summary = user_summary(receiver, message.receiver_id)
    return {
        "id": message.id,
        "senderId": message.sender_id,
        "senderUsername": sender_summary["username"],
        "senderAvatarUrl": sender_summary["avatarUrl"],
        "receiverId": message.receiver_id,
        "receiverUsername": receiver_summary["username"],
        "receiverAvatarUrl": receiver_summary["avatarUrl"],
        "content": message.content,
        "mediaUrl": message.media_url,
        "messageType": message.message_type.value,
        "isRead": message.is_read,
        "createdAt": message.created_at,
    }


def notification_to_dict(
    notification: Notification,
    sender: Optional[User] = None,
) -> Dict[str, Any]:
    """NotificationResponse DTO, shared by the list read and the live push."""
    summary = user_summary(sender, notification.sender_id)
    return {
        "id": notification.id,
        "senderId": notification.sender_id,
        "senderUsername": summary["username"],
        "senderAvatarUrl": summary["avatarUrl"],
        "type": notification.type.value,
        "title": notification.title,
        "message": notification.message,
        "entityId": notification.entity_id,
        "isRead": notification.is_read,
        "createdAt": notification.created_at,
    }


def comment_to_dict(
    comment: Comment,
    author: Optional[User] = None,
    replies_count: int = 0,
) -> Dict[str, Any]:
    """CommentResponse DTO."""
    summary = user_summary(author, comment.user_id)
    return {
        "id": comment.id,
        "postId": comment.post_id,
        "userId": comment.user_id,
        "username": summary["username"],
        "userAvatarUrl": summary["avatarUrl"],
        "content": comment.content,
        "parentCommentId": comment.parent_id,
        "repliesCount": replies_count,
        "createdAt": comment.created_at,
    }


def friend_request_to_dict(
    request: FriendRequest,
    sender: Optional[User] = None,
    receiver: Optional[User] = None,
) -> Dict[str, Any]:
    """FriendRequestResponse DTO."""
    sender_summary = user_summary(sender, request.sender_id)
    receiver_summary = user_summary(receiver, request.receiver_id)
    return {
        "id": request.id,
        "senderId": request.sender_id,
        "senderUsername": sender_summary["username"],
        "senderAvatarUrl": sender_summary["avatarUrl"],
        "receiverId": request.receiver_id,
        "receiverUsername": receiver_summary["username"],
        "receiverAvatarUrl": receiver_summary["avatarUrl"],
        "status": request.status.value,
        "createdAt": request.created_at,
        "respondedAt": request.responded_at,
    }
