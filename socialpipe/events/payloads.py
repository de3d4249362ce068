"""
Typed event payloads.

Each topic has exactly one payload variant. Variants are encoded to JSON with
camelCase field names (the wire contract consumed by other services) and
decoded explicitly: a payload with missing or mistyped fields is rejected
with MalformedEventError instead of flowing through as an untyped map.
"""

import json
import time
import typing
from dataclasses import asdict, dataclass, fields
from typing import Any, ClassVar, Dict, Optional, Type

from socialpipe.events import topics


class MalformedEventError(ValueError):
    """Raised when an event payload cannot be decoded."""
    pass


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


def conversation_key(user_a: int, user_b: int) -> str:
    """
    Partition key shared by both directions of a conversation.
    
    Args:
        user_a: One participant
        user_b: The other participant
    
    Returns:
        "<min>:<max>"
    """
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _matches(value: Any, hint: Any) -> bool:
    if typing.get_origin(hint) is typing.Union:
        return any(_matches(value, arg) for arg in typing.get_args(hint))
    if hint is type(None):
        return value is None
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, hint)


@dataclass(frozen=True)
class EventPayload:
    """Base class for topic payload variants."""
    
    TOPIC: ClassVar[str] = ""
    
    def partition_key(self) -> str:
        """Key that scopes ordering for this event."""
        raise NotImplementedError
    
    def to_dict(self) -> Dict[str, Any]:
        """Wire representation with camelCase keys."""
        return {_camel(name): value for name, value in asdict(self).items()}
    
    @classmethod
    def from_dict(cls, data: Any) -> "EventPayload":
        """
        Decode a wire dictionary into this variant.
        
        Args:
            data: Decoded JSON object
        
        Returns:
            Payload instance
        
        Raises:
            MalformedEventError: If fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise MalformedEventError(
                f"{cls.TOPIC} payload must be an object, got {type(data).__name__}"
            )
        
        hints = typing.get_type_hints(cls)
        values = {}
        
        for f in fields(cls):
            wire_name = _camel(f.name)
            hint = hints[f.name]
            optional = type(None) in typing.get_args(hint)
            
            if wire_name not in data or data[wire_name] is None:
                if not optional:
                    raise MalformedEventError(
                        f"{cls.TOPIC} payload missing field {wire_name}"
                    )
                values[f.name] = None
                continue
            
            value = data[wire_name]
            if not _matches(value, hint):
                raise MalformedEventError(
                    f"{cls.TOPIC} field {wire_name} has invalid value {value!r}"
                )
            values[f.name] = value
        
        return cls(**values)


@dataclass(frozen=True)
class PostCreated(EventPayload):
    TOPIC: ClassVar[str] = topics.POST_CREATED
    
    post_id: int
    user_id: int
    content: str
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.post_id)


@dataclass(frozen=True)
class PostLiked(EventPayload):
    TOPIC: ClassVar[str] = topics.POST_LIKED
    
    post_id: int
    user_id: int
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.post_id)


@dataclass(frozen=True)
class PostDeleted(EventPayload):
    TOPIC: ClassVar[str] = topics.POST_DELETED
    
    post_id: int
    user_id: int
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.post_id)


@dataclass(frozen=True)
class PostCommented(EventPayload):
    """A comment, or a reply when parent_comment_id is set."""
    TOPIC: ClassVar[str] = topics.POST_COMMENTED
    
    post_id: int
    comment_id: int
    user_id: int
    content: str
    timestamp: int
    parent_comment_id: Optional[int] = None
    
    def partition_key(self) -> str:
        return str(self.post_id)


@dataclass(frozen=True)
class MessageSent(EventPayload):
    TOPIC: ClassVar[str] = topics.MESSAGE_SENT
    
    message_id: int
    sender_id: int
    receiver_id: int
    content: Optional[str]
    timestamp: int
    
    def partition_key(self) -> str:
        return conversation_key(self.sender_id, self.receiver_id)


@dataclass(frozen=True)
class MessageDeleted(EventPayload):
    TOPIC: ClassVar[str] = topics.MESSAGE_DELETED
    
    message_id: int
    sender_id: int
    receiver_id: int
    timestamp: int
    
    def partition_key(self) -> str:
        return conversation_key(self.sender_id, self.receiver_id)


@dataclass(frozen=True)
class NotificationSend(EventPayload):
    """
    Request to materialize a notification for user_id.
    
    sender_id and entity_id are absent for system notifications.
    """
    TOPIC: ClassVar[str] = topics.NOTIFICATION_SEND
    
    user_id: int
    title: str
    message: Optional[str]
    type: str
    timestamp: int
    sender_id: Optional[int] = None
    entity_id: Optional[int] = None
    
    def partition_key(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class UserRegistered(EventPayload):
    TOPIC: ClassVar[str] = topics.USER_REGISTERED
    
    user_id: int
    username: str
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.user_id)


@dataclass(frozen=True)
class UserFollowed(EventPayload):
    TOPIC: ClassVar[str] = topics.USER_FOLLOWED
    
    follower_id: int
    followed_id: int
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.follower_id)


@dataclass(frozen=True)
class UserUnfollowed(EventPayload):
    TOPIC: ClassVar[str] = topics.USER_UNFOLLOWED
    
    follower_id: int
    followed_id: int
    timestamp: int
    
    def partition_key(self) -> str:
        return str(self.follower_id)


PAYLOAD_TYPES: Dict[str, Type[EventPayload]] = {
    cls.TOPIC: cls
    for cls in (
        PostCreated,
        PostLiked,
        PostDeleted,
        PostCommented,
        MessageSent,
        MessageDeleted,
        NotificationSend,
        UserRegistered,
        UserFollowed,
        UserUnfollowed,
    )
}


def encode_payload(payload: EventPayload) -> bytes:
    """
    Encode a payload variant to UTF-8 JSON.
    
    Args:
        payload: Payload to encode
    
    Returns:
        Encoded bytes
    """
    return json.dumps(payload.to_dict(), separators=(",", ":")).encode("utf-8")


def decode_payload(topic: str, data: bytes) -> EventPayload:
    """
    Decode bytes read from topic into its payload variant.
    
    Args:
        topic: Topic the bytes were read from
        data: Encoded payload
    
    Returns:
        Payload instance
    
    Raises:
        MalformedEventError: If the topic is unknown or the bytes are invalid
    """
    payload_type = PAYLOAD_TYPES.get(topic)
    if payload_type is None:
        raise MalformedEventError(f"No payload type registered for topic {topic}")
    
    try:
        raw = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedEventError(f"Invalid JSON on topic {topic}: {e}") from e
    
    return payload_type.from_dict(raw)
