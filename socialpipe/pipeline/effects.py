"""
Post-commit side effects.

An effect is a closed description of one downstream write. Services build
lists of effects while their transaction is open; the publisher executes them
only once the transaction has committed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from socialpipe.events.payloads import EventPayload


class EffectKind(Enum):
    """Kinds of post-commit effect."""
    
    PUBLISH_EVENT = "PUBLISH_EVENT"
    INCREMENT_COUNTER = "INCREMENT_COUNTER"
    PUSH_LIST_ITEM = "PUSH_LIST_ITEM"
    REALTIME_PUSH = "REALTIME_PUSH"
    INVALIDATE_CACHE = "INVALIDATE_CACHE"


class Effect:
    """Base class for effects."""
    
    kind: EffectKind
    
    def describe(self) -> Dict[str, Any]:
        """Fields used when logging a failure."""
        return {"kind": self.kind.value}


@dataclass(frozen=True)
class PublishEvent(Effect):
    """
    Append an event to its topic.
    
    Attributes:
        payload: Typed payload; its topic and partition key come from the variant
    """
    payload: EventPayload
    
    kind = EffectKind.PUBLISH_EVENT
    
    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "topic": self.payload.TOPIC,
            "partition_key": self.payload.partition_key(),
        }


@dataclass(frozen=True)
class IncrementCounter(Effect):
    """
    Atomically increment a counter.
    
    Attributes:
        key: Counter key
        delta: Positive amount to add
        ttl_seconds: TTL refreshed on every increment
    """
    key: str
    delta: int = 1
    ttl_seconds: Optional[int] = None
    
    kind = EffectKind.INCREMENT_COUNTER
    
    def __post_init__(self) -> None:
        if self.delta <= 0:
            raise ValueError(f"delta must be positive, got {self.delta}")
    
    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "key": self.key, "delta": self.delta}


@dataclass(frozen=True)
class PushListItem(Effect):
    """
    Prepend an item to a bounded most-recent-first list.
    
    Attributes:
        key: List key
        item: Serialized item
        max_len: Length the list is trimmed to
        ttl_seconds: TTL refreshed on every push
    """
    key: str
    item: str
    max_len: int
    ttl_seconds: Optional[int] = None
    
    kind = EffectKind.PUSH_LIST_ITEM
    
    def __post_init__(self) -> None:
        if self.max_len <= 0:
            raise ValueError(f"max_len must be positive, got {self.max_len}")
    
    def describe(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "key": self.key, "max_len": self.max_len}


@dataclass(frozen=True)
class RealtimePush(Effect):
    """
    Push a DTO to a user's live connections.
    
    Attributes:
        user_id: Recipient
        destination: Logical queue
        payload: DTO in the same shape as the matching read endpoint
    """
    user_id: int
    destination: str
    payload: Dict[str, Any] = field(default_factory=dict)
    
    kind = EffectKind.REALTIME_PUSH
    
    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "user_id": self.user_id,
            "destination": self.destination,
        }


@dataclass(frozen=True)
class InvalidateCache(Effect):
    """
    Delete cache keys so the next read recomputes them.
    
    Attributes:
        keys: Exact keys to delete
        patterns: Glob patterns to delete
    """
    keys: Tuple[str, ...] = ()
    patterns: Tuple[str, ...] = ()
    
    kind = EffectKind.INVALIDATE_CACHE
    
    def describe(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "keys": list(self.keys),
            "patterns": list(self.patterns),
        }
