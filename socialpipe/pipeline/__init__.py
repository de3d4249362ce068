"""Commit-synchronized side effects."""

from socialpipe.pipeline.effects import (
    Effect,
    EffectKind,
    IncrementCounter,
    InvalidateCache,
    PublishEvent,
    PushListItem,
    RealtimePush,
)
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher, PublisherConfig
from socialpipe.pipeline.unit_of_work import (
    UnitOfWork,
    UnitOfWorkState,
    UnitOfWorkStateError,
    current_unit_of_work,
)

__all__ = [
    "CommitSynchronizedPublisher",
    "Effect",
    "EffectKind",
    "IncrementCounter",
    "InvalidateCache",
    "PublishEvent",
    "PublisherConfig",
    "PushListItem",
    "RealtimePush",
    "UnitOfWork",
    "UnitOfWorkState",
    "UnitOfWorkStateError",
    "current_unit_of_work",
]
