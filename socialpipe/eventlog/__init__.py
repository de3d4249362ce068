"""Durable, partitioned event log."""

from socialpipe.eventlog.format import LogRecord
from socialpipe.eventlog.log import (
    EventLog,
    LogUnavailableError,
    PartitionLog,
    RecordMetadata,
    UnknownTopicError,
)

__all__ = [
    "EventLog",
    "LogRecord",
    "LogUnavailableError",
    "PartitionLog",
    "RecordMetadata",
    "UnknownTopicError",
]
