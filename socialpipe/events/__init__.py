"""Event topics and typed event payloads."""

from socialpipe.events.payloads import (
    EventPayload,
    MalformedEventError,
    conversation_key,
    decode_payload,
    encode_payload,
)
from socialpipe.events.topics import TopicConfig, TopicRegistry

__all__ = [
    "EventPayload",
    "MalformedEventError",
    "conversation_key",
    "decode_payload",
    "encode_payload",
    "TopicConfig",
    "TopicRegistry",
]
