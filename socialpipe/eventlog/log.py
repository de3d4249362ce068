"""
Durable event log.

An append-only, partitioned log of typed events. Events with the same
partition key are stored in one partition and read back in publish order;
events with different keys carry no ordering guarantee relative to each
other.

Without a data directory the log is kept in memory only (used by tests and
single-process deployments); with one, every partition persists to a
checksummed segment file and is recovered on restart.
"""

import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from socialpipe.events.payloads import EventPayload, encode_payload
from socialpipe.events.topics import TopicConfig, TopicRegistry
from socialpipe.eventlog.format import LogRecord
from socialpipe.eventlog.partitioner import KeyHashPartitioner
from socialpipe.eventlog.segment import SegmentFile
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class LogUnavailableError(Exception):
    """Raised when the log cannot accept or serve records."""
    pass


class UnknownTopicError(Exception):
    """Raised when publishing to or reading from an undeclared topic."""
    pass


@dataclass
class RecordMetadata:
    """
    Where a published event landed.
    
    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Offset within the partition
        timestamp: Produce time in milliseconds
    """
    topic: str
    partition: int
    offset: int
    timestamp: int


class PartitionLog:
    """
    Ordered records of a single topic-partition.
    
    Offsets are dense and start at zero. Retention removes records from the
    head only; the offsets of the remaining records never change.
    """
    
    def __init__(
        self,
        topic: str,
        partition: int,
        directory: Optional[Path] = None,
        fsync_on_append: bool = False,
    ):
        """
        Initialize a partition log.
        
        Args:
            topic: Topic name
            partition: Partition number
            directory: Partition directory (None = memory only)
            fsync_on_append: Whether to fsync after each append
        """
        self.topic = topic
        self.partition = partition
        self.directory = Path(directory) if directory is not None else None
        self.fsync_on_append = fsync_on_append
        
        self._records: List[LogRecord] = []
        self._base_offset = 0
        self._segment: Optional[SegmentFile] = None
        
        self._lock = threading.RLock()
        self._appended = threading.Condition(self._lock)
        self._closed = False
        
        if self.directory is not None:
            self._recover()
    
    def _recover(self) -> None:
        """Load records from the newest segment file in the directory."""
        existing = SegmentFile.find_existing(self.directory)
        base_offset = int(existing.stem) if existing is not None else 0
        
        self._segment = SegmentFile(
            self.directory,
            base_offset=base_offset,
            fsync_on_append=self.fsync_on_append,
        )
        self._records = self._segment.recover()
        self._base_offset = base_offset
    
    def append(self, key: str, value: bytes, timestamp: int) -> int:
        """
        Append a record.
        
        Args:
            key: Partition key
            value: Encoded payload
            timestamp: Produce time in milliseconds
        
        Returns:
            Offset assigned to the record
        
        Raises:
            LogUnavailableError: If the partition is closed or the write fails
        """
        with self._lock:
            if self._closed:
                raise LogUnavailableError(f"Partition {self.topic}-{self.partition} is closed")
            
            record = LogRecord(
                offset=self.end_offset(),
                timestamp=timestamp,
                key=key,
                value=value,
            )
            
            if self._segment is not None:
                try:
                    self._segment.append(record)
                except OSError as e:
                    raise LogUnavailableError(
                        f"Write to {self.topic}-{self.partition} failed: {e}"
                    ) from e
            
            self._records.append(record)
            self._appended.notify_all()
            
            return record.offset
    
    def read(self, start_offset: int, max_records: int = 100) -> List[LogRecord]:
        """
        Read records starting at start_offset.
        
        Offsets below the earliest retained offset resume at the earliest one.
        
        Args:
            start_offset: First offset to read
            max_records: Maximum records to return
        
        Returns:
            Records in offset order
        """
        with self._lock:
            start = max(start_offset, self._base_offset) - self._base_offset
            return list(self._records[start:start + max_records])
    
    def wait_for_records(self, offset: int, timeout_ms: int) -> bool:
        """
        Block until a record at offset exists or the timeout passes.
        
        Args:
            offset: Offset to wait for
            timeout_ms: Maximum wait in milliseconds
        
        Returns:
            True if the record is available
        """
        with self._appended:
            return self._appended.wait_for(
                lambda: self._closed or self.end_offset() > offset,
                timeout=timeout_ms / 1000.0,
            ) and not self._closed
    
    def earliest_offset(self) -> int:
        """Offset of the oldest retained record."""
        with self._lock:
            return self._base_offset
    
    def end_offset(self) -> int:
        """Offset the next appended record will receive."""
        with self._lock:
            return self._base_offset + len(self._records)
    
    def apply_retention(self, now_ms: int, retention_ms: int) -> int:
        """
        Drop records older than the retention window from the head.
        
        Args:
            now_ms: Current time in milliseconds
            retention_ms: Retention window (-1 = unlimited)
        
        Returns:
            Number of records removed
        """
        if retention_ms < 0:
            return 0
        
        with self._lock:
            cutoff = now_ms - retention_ms
            expired = 0
            for record in self._records:
                if record.timestamp >= cutoff:
                    break
                expired += 1
            
            if expired == 0:
                return 0
            
            self._records = self._records[expired:]
            self._base_offset += expired
            
            if self._segment is not None:
                self._rewrite_segment()
            
            logger.info(
                "Applied retention",
                topic=self.topic,
                partition=self.partition,
                removed=expired,
                earliest_offset=self._base_offset,
            )
            
            return expired
    
    def _rewrite_segment(self) -> None:
        """Replace the segment file with one holding only retained records."""
        old_segment = self._segment
        new_segment = SegmentFile(
            self.directory,
            base_offset=self._base_offset,
            fsync_on_append=self.fsync_on_append,
        )
        
        if new_segment.path != old_segment.path:
            for record in self._records:
                new_segment.append(record)
            new_segment.flush()
            old_segment.close()
            old_segment.path.unlink(missing_ok=True)
            self._segment = new_segment
    
    def close(self) -> None:
        """Close the partition and wake any waiting readers."""
        with self._appended:
            self._closed = True
            if self._segment is not None:
                self._segment.close()
            self._appended.notify_all()


class EventLog:
    """
    Partitioned log of typed events.
    
    Example:
        registry = TopicRegistry()
        log = EventLog(registry)
        
        metadata = log.publish_event(MessageSent(...))
        records = log.read("message.sent", metadata.partition, 0)
    """
    
    def __init__(
        self,
        registry: TopicRegistry,
        data_dir: Optional[Path] = None,
        fsync_on_append: bool = False,
        partitioner: Optional[KeyHashPartitioner] = None,
    ):
        """
        Initialize the event log.
        
        Args:
            registry: Declared topics
            data_dir: Directory for segment files (None = memory only)
            fsync_on_append: Whether to fsync after each append
            partitioner: Partitioner (default: key hash)
        """
        self.registry = registry
        self.data_dir = Path(data_dir) if data_dir is not None else None
        self.fsync_on_append = fsync_on_append
        self.partitioner = partitioner or KeyHashPartitioner()
        
        self._partitions: Dict[Tuple[str, int], PartitionLog] = {}
        self._lock = threading.RLock()
        self._closed = False
        
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        
        logger.info(
            "Initialized event log",
            data_dir=str(self.data_dir) if self.data_dir else None,
            topics=len(registry.list_topics()),
        )
    
    def _topic(self, topic: str) -> TopicConfig:
        config = self.registry.get(topic)
        if config is None:
            raise UnknownTopicError(f"Topic not declared: {topic}")
        return config
    
    def _partition(self, topic: str, partition: int) -> PartitionLog:
        config = self._topic(topic)
        if not 0 <= partition < config.num_partitions:
            raise ValueError(
                f"Partition {partition} out of range for {topic} ({config.num_partitions} partitions)"
            )
        
        with self._lock:
            key = (topic, partition)
            log = self._partitions.get(key)
            
            if log is None:
                directory = (
                    self.data_dir / topic / f"partition-{partition}"
                    if self.data_dir is not None
                    else None
                )
                log = PartitionLog(
                    topic,
                    partition,
                    directory=directory,
                    fsync_on_append=self.fsync_on_append,
                )
                self._partitions[key] = log
            
            return log
    
    def partition_for(self, topic: str, partition_key: str) -> int:
        """Partition a key maps to in topic."""
        config = self._topic(topic)
        return self.partitioner.partition(topic, partition_key, config.num_partitions)
    
    def partitions_for(self, topic: str) -> List[int]:
        """All partition numbers of topic."""
        return list(range(self._topic(topic).num_partitions))
    
    def publish(
        self,
        topic: str,
        partition_key: str,
        value: bytes,
        timestamp: Optional[int] = None,
    ) -> RecordMetadata:
        """
        Append an encoded event.
        
        Args:
            topic: Declared topic name
            partition_key: Key that scopes ordering
            value: Encoded payload
            timestamp: Produce time in ms (default: now)
        
        Returns:
            Record metadata
        
        Raises:
            UnknownTopicError: If topic is not declared
            LogUnavailableError: If the log is closed or the write fails
        """
        if self._closed:
            raise LogUnavailableError("Event log is closed")
        
        partition = self.partition_for(topic, partition_key)
        produced_at = timestamp if timestamp is not None else int(time.time() * 1000)
        
        offset = self._partition(topic, partition).append(partition_key, value, produced_at)
        
        logger.debug(
            "Published event",
            topic=topic,
            partition=partition,
            offset=offset,
            key=partition_key,
        )
        
        return RecordMetadata(
            topic=topic,
            partition=partition,
            offset=offset,
            timestamp=produced_at,
        )
    
    def publish_event(self, payload: EventPayload) -> RecordMetadata:
        """
        Encode and publish a payload variant to its topic.
        
        Args:
            payload: Event payload
        
        Returns:
            Record metadata
        """
        return self.publish(
            payload.TOPIC,
            payload.partition_key(),
            encode_payload(payload),
        )
    
    def read(
        self,
        topic: str,
        partition: int,
        start_offset: int,
        max_records: int = 100,
    ) -> List[LogRecord]:
        """
        Read records from a topic-partition.
        
        Args:
            topic: Topic name
            partition: Partition number
            start_offset: First offset to read
            max_records: Maximum records to return
        
        Returns:
            Records in publish order
        """
        if self._closed:
            raise LogUnavailableError("Event log is closed")
        
        return self._partition(topic, partition).read(start_offset, max_records)
    
    def wait_for_records(
        self,
        topic: str,
        partition: int,
        offset: int,
        timeout_ms: int,
    ) -> bool:
        """Block until offset is readable in topic-partition or timeout passes."""
        if self._closed:
            return False
        return self._partition(topic, partition).wait_for_records(offset, timeout_ms)
    
    def earliest_offset(self, topic: str, partition: int) -> int:
        """Oldest retained offset of a topic-partition."""
        return self._partition(topic, partition).earliest_offset()
    
    def end_offset(self, topic: str, partition: int) -> int:
        """Next offset to be assigned in a topic-partition."""
        return self._partition(topic, partition).end_offset()
    
    def apply_retention(self, now_ms: Optional[int] = None) -> int:
        """
        Apply each topic's retention window to its partitions.
        
        Args:
            now_ms: Current time in ms (default: now)
        
        Returns:
            Total records removed
        """
        now = now_ms if now_ms is not None else int(time.time() * 1000)
        removed = 0
        
        for topic in self.registry.list_topics():
            config = self._topic(topic)
            for partition in range(config.num_partitions):
                removed += self._partition(topic, partition).apply_retention(
                    now,
                    config.retention_ms,
                )
        
        return removed
    
    def close(self) -> None:
        """Close all partitions."""
        with self._lock:
            self._closed = True
            for log in self._partitions.values():
                log.close()
        
        logger.info("Closed event log", partitions=len(self._partitions))
    
    @property
    def closed(self) -> bool:
        return self._closed
    
    def __enter__(self) -> "EventLog":
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
