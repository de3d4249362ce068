"""Event consumption with retry and dead-lettering."""

from socialpipe.consumer.dead_letter import DeadLetterRecord, DeadLetterSink
from socialpipe.consumer.offsets import OffsetStore, TopicPartition
from socialpipe.consumer.retry import (
    FailureAction,
    MissingEntityError,
    NonRetryableError,
    RetryableError,
    RetryPolicy,
)
from socialpipe.consumer.router import (
    ConsumedEvent,
    ConsumerRouter,
    MessageState,
    RouterConfig,
    Subscription,
)

__all__ = [
    "ConsumedEvent",
    "ConsumerRouter",
    "DeadLetterRecord",
    "DeadLetterSink",
    "FailureAction",
    "MessageState",
    "MissingEntityError",
    "NonRetryableError",
    "OffsetStore",
    "RetryPolicy",
    "RetryableError",
    "RouterConfig",
    "Subscription",
    "TopicPartition",
]
