"""Real-time push channel."""

from socialpipe.realtime.channel import (
    MESSAGES_DESTINATION,
    NOTIFICATIONS_DESTINATION,
    ConnectionHandle,
    PushChannel,
)

__all__ = [
    "MESSAGES_DESTINATION",
    "NOTIFICATIONS_DESTINATION",
    "ConnectionHandle",
    "PushChannel",
]
