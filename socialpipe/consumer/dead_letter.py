"""
Dead-letter stream.

Events that exhausted their retries, or failed with a non-retryable error,
are written to the dead-letter topic together with the last error. Nothing
replays them automatically; they are kept for inspection.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from socialpipe.eventlog.log import EventLog, RecordMetadata
from socialpipe.events import topics
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class DeadLetterRecord:
    """
    A failed event and why it failed.
    
    Attributes:
        original_topic: Topic the event was consumed from
        original_partition: Partition it was consumed from
        original_offset: Offset it was consumed at
        subscription: Subscription whose handler failed
        key: Partition key of the event
        payload: Raw event payload (decoded as UTF-8, replacement on error)
        last_error: Last error message
        error_type: Exception class name of the last error
        attempts: Handler invocations made
        first_failed_at: Time of the first failed attempt in milliseconds
    """
    original_topic: str
    original_partition: int
    original_offset: int
    subscription: str
    key: str
    payload: str
    last_error: str
    error_type: str
    attempts: int
    first_failed_at: int
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "originalTopic": self.original_topic,
            "originalPartition": self.original_partition,
            "originalOffset": self.original_offset,
            "subscription": self.subscription,
            "key": self.key,
            "payload": self.payload,
            "lastError": self.last_error,
            "errorType": self.error_type,
            "attempts": self.attempts,
            "firstFailedAt": self.first_failed_at,
        }
    
    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "DeadLetterRecord":
        return DeadLetterRecord(
            original_topic=data["originalTopic"],
            original_partition=int(data["originalPartition"]),
            original_offset=int(data["originalOffset"]),
            subscription=data["subscription"],
            key=data["key"],
            payload=data["payload"],
            last_error=data["lastError"],
            error_type=data["errorType"],
            attempts=int(data["attempts"]),
            first_failed_at=int(data["firstFailedAt"]),
        )


class DeadLetterSink:
    """Writes and lists dead-lettered events."""
    
    def __init__(self, event_log: EventLog, topic: str = topics.DEAD_LETTER):
        """
        Initialize dead-letter sink.
        
        Args:
            event_log: Log holding the dead-letter topic
            topic: Dead-letter topic name
        """
        self.event_log = event_log
        self.topic = topic
    
    def write(self, record: DeadLetterRecord) -> RecordMetadata:
        """
        Append a dead-letter record under the failed event's partition key.
        
        Raises:
            LogUnavailableError: If the log cannot accept the record
        """
        metadata = self.event_log.publish(
            self.topic,
            record.key,
            json.dumps(record.to_dict(), separators=(",", ":")).encode("utf-8"),
        )
        
        logger.error(
            "Event dead-lettered",
            original_topic=record.original_topic,
            original_partition=record.original_partition,
            original_offset=record.original_offset,
            subscription=record.subscription,
            attempts=record.attempts,
            error=record.last_error,
        )
        
        return metadata
    
    def read_all(self, original_topic: Optional[str] = None) -> List[DeadLetterRecord]:
        """
        List retained dead-letter records.
        
        Args:
            original_topic: Only records that failed on this topic
        
        Returns:
            Records oldest first
        """
        records = []
        
        for partition in self.event_log.partitions_for(self.topic):
            offset = self.event_log.earliest_offset(self.topic, partition)
            end = self.event_log.end_offset(self.topic, partition)
            
            while offset < end:
                batch = self.event_log.read(self.topic, partition, offset, max_records=500)
                if not batch:
                    break
                for log_record in batch:
                    record = DeadLetterRecord.from_dict(json.loads(log_record.value))
                    if original_topic is None or record.original_topic == original_topic:
                        records.append(record)
                offset = batch[-1].offset + 1
        
        return sorted(records, key=lambda r: r.first_failed_at)
