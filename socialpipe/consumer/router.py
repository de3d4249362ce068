"""
Consumer router.

Delivers events from the log to registered handlers. Each (subscription,
partition) pair is consumed by exactly one worker, so events sharing a
partition key reach a handler one at a time and in publish order.

Message lifecycle:
RECEIVED → PROCESSING → ACKED
                      ↘ RETRY_SCHEDULED → PROCESSING
                      ↘ DEAD_LETTERED

An event is retried with a fixed backoff until it succeeds or runs out of
attempts, and is then written to the dead-letter stream. Offsets are
committed only once an event reached a terminal state, so a crash replays
the event (handlers must be idempotent).
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from socialpipe.consumer.dead_letter import DeadLetterRecord, DeadLetterSink
from socialpipe.consumer.offsets import OffsetStore, TopicPartition
from socialpipe.consumer.retry import FailureAction, RetryPolicy
from socialpipe.eventlog.format import LogRecord
from socialpipe.eventlog.log import EventLog
from socialpipe.events.payloads import EventPayload, MalformedEventError, decode_payload, now_ms
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class MessageState(Enum):
    """Delivery states of a consumed event."""
    
    RECEIVED = "RECEIVED"
    PROCESSING = "PROCESSING"
    ACKED = "ACKED"
    RETRY_SCHEDULED = "RETRY_SCHEDULED"
    DEAD_LETTERED = "DEAD_LETTERED"
    
    def is_terminal(self) -> bool:
        return self in (MessageState.ACKED, MessageState.DEAD_LETTERED)


@dataclass
class ConsumedEvent:
    """
    An event handed to a handler.
    
    Attributes:
        topic: Topic name
        partition: Partition number
        offset: Offset within the partition
        timestamp: Produce time in milliseconds
        key: Partition key
        payload: Decoded payload variant
        attempt: 1-based attempt number
    """
    topic: str
    partition: int
    offset: int
    timestamp: int
    key: str
    payload: EventPayload
    attempt: int = 1


Handler = Callable[[ConsumedEvent], None]


@dataclass
class Subscription:
    """
    A handler bound to a topic.
    
    Attributes:
        name: Unique subscription name (offsets are tracked per name)
        topic: Topic consumed
        handler: Callable invoked per event
    """
    name: str
    topic: str
    handler: Handler


@dataclass
class RouterConfig:
    """
    Router configuration.
    
    Attributes:
        max_attempts: Handler invocations before dead-lettering
        backoff_ms: Fixed delay between attempts
        poll_interval_ms: Idle wait for new records
        max_poll_records: Records read per poll
    """
    max_attempts: int = 3
    backoff_ms: int = 2000
    poll_interval_ms: int = 100
    max_poll_records: int = 100
    
    @classmethod
    def from_config(cls, settings: Optional[Dict]) -> "RouterConfig":
        settings = settings or {}
        return cls(
            max_attempts=int(settings.get("max_attempts", 3)),
            backoff_ms=int(settings.get("backoff_ms", 2000)),
            poll_interval_ms=int(settings.get("poll_interval_ms", 100)),
            max_poll_records=int(settings.get("max_poll_records", 100)),
        )


class ConsumerRouter:
    """
    Routes events from topics to handlers with retry and dead-lettering.
    
    Example:
        >>> router = ConsumerRouter(event_log, DeadLetterSink(event_log))
        >>> router.register("notification.send", materializer.handle)
        >>> router.start()
    """
    
    def __init__(
        self,
        event_log: EventLog,
        dead_letters: DeadLetterSink,
        offsets: Optional[OffsetStore] = None,
        config: Optional[RouterConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize router.
        
        Args:
            event_log: Log to consume from
            dead_letters: Destination of failed events
            offsets: Committed offsets (default: in memory)
            config: Router configuration
            sleep: Backoff sleep, in seconds (default: interruptible by stop())
        """
        self.event_log = event_log
        self.dead_letters = dead_letters
        self.offsets = offsets or OffsetStore()
        self.config = config or RouterConfig()
        self.retry_policy = RetryPolicy(
            max_attempts=self.config.max_attempts,
            backoff_ms=self.config.backoff_ms,
        )
        
        self._stopping = threading.Event()
        self._sleep = sleep or self._stopping.wait
        
        self._subscriptions: Dict[str, Subscription] = {}
        self._workers: List[threading.Thread] = []
        self._running = False
        self._lock = threading.Lock()
        
        self._metrics = {
            "acked": 0,
            "skipped": 0,
            "retries": 0,
            "dead_lettered": 0,
            "dead_letter_failures": 0,
        }
    
    def register(
        self,
        topic: str,
        handler: Handler,
        name: Optional[str] = None,
    ) -> Subscription:
        """
        Bind a handler to a topic.
        
        Args:
            topic: Declared topic name
            handler: Callable invoked once per event
            name: Subscription name (default: "<topic>:<handler name>")
        
        Returns:
            The subscription
        
        Raises:
            ValueError: If the name is taken or the router is running
        """
        if self._running:
            raise ValueError("Cannot register subscriptions while running")
        
        # Validates the topic
        self.event_log.partitions_for(topic)
        
        subscription_name = name or f"{topic}:{getattr(handler, '__name__', 'handler')}"
        if subscription_name in self._subscriptions:
            raise ValueError(f"Subscription {subscription_name} already registered")
        
        subscription = Subscription(subscription_name, topic, handler)
        self._subscriptions[subscription_name] = subscription
        
        logger.info("Registered subscription", subscription=subscription_name, topic=topic)
        
        return subscription
    
    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions.values())
    
    def _count(self, name: str) -> None:
        with self._lock:
            self._metrics[name] += 1
    
    def process_record(
        self,
        subscription: Subscription,
        partition: int,
        record: LogRecord,
    ) -> MessageState:
        """
        Drive one record through its lifecycle.
        
        Returns:
            Final state. RETRY_SCHEDULED is returned only when the router is
            stopping mid-backoff; the record is then left uncommitted.
        
        Raises:
            LogUnavailableError: If the dead-letter write fails
        """
        state = MessageState.RECEIVED
        log = logger.bind(
            subscription=subscription.name,
            topic=subscription.topic,
            partition=partition,
            offset=record.offset,
        )
        
        try:
            payload = decode_payload(subscription.topic, record.value)
        except MalformedEventError as e:
            log.error("Malformed event", error=str(e))
            self._dead_letter(subscription, partition, record, e, 0, now_ms())
            return MessageState.DEAD_LETTERED
        
        attempts = 0
        first_failed_at = None
        
        while True:
            attempts += 1
            state = MessageState.PROCESSING
            
            event = ConsumedEvent(
                topic=subscription.topic,
                partition=partition,
                offset=record.offset,
                timestamp=record.timestamp,
                key=record.key,
                payload=payload,
                attempt=attempts,
            )
            
            try:
                subscription.handler(event)
                state = MessageState.ACKED
                self._count("acked")
                return state
            
            except Exception as e:
                if first_failed_at is None:
                    first_failed_at = now_ms()
                
                action = self.retry_policy.classify(e, attempts)
                
                if action is FailureAction.SKIP:
                    log.info("Referenced entity missing, skipping event", error=str(e))
                    self._count("skipped")
                    return MessageState.ACKED
                
                if action is FailureAction.DEAD_LETTER:
                    self._dead_letter(subscription, partition, record, e, attempts, first_failed_at)
                    return MessageState.DEAD_LETTERED
                
                state = MessageState.RETRY_SCHEDULED
                self._count("retries")
                log.warning(
                    "Handler failed, retrying",
                    attempt=attempts,
                    backoff_ms=self.retry_policy.backoff_ms,
                    error=str(e),
                )
                
                self._sleep(self.retry_policy.backoff_ms / 1000.0)
                
                if self._stopping.is_set():
                    return state
    
    def _dead_letter(
        self,
        subscription: Subscription,
        partition: int,
        record: LogRecord,
        error: BaseException,
        attempts: int,
        first_failed_at: int,
    ) -> None:
        dead_letter = DeadLetterRecord(
            original_topic=subscription.topic,
            original_partition=partition,
            original_offset=record.offset,
            subscription=subscription.name,
            key=record.key,
            payload=record.value.decode("utf-8", errors="replace"),
            last_error=str(error),
            error_type=type(error).__name__,
            attempts=attempts,
            first_failed_at=first_failed_at,
        )
        
        try:
            self.dead_letters.write(dead_letter)
        except Exception:
            self._count("dead_letter_failures")
            raise
        
        self._count("dead_lettered")
    
    def _next_offset(self, subscription: Subscription, tp: TopicPartition) -> int:
        committed = self.offsets.committed(subscription.name, tp)
        earliest = self.event_log.earliest_offset(tp.topic, tp.partition)
        if committed is None:
            return earliest
        return max(committed, earliest)
    
    def poll_once(self, subscription: Subscription, partition: int) -> int:
        """
        Read and process one batch of a subscription's partition.
        
        Returns:
            Number of records that reached a terminal state
        """
        tp = TopicPartition(subscription.topic, partition)
        offset = self._next_offset(subscription, tp)
        records = self.event_log.read(
            tp.topic,
            tp.partition,
            offset,
            max_records=self.config.max_poll_records,
        )
        
        processed = 0
        
        for record in records:
            try:
                state = self.process_record(subscription, partition, record)
            except Exception as e:
                logger.error(
                    "Dead-letter write failed, leaving offset uncommitted",
                    subscription=subscription.name,
                    topic=tp.topic,
                    partition=partition,
                    offset=record.offset,
                    error=str(e),
                )
                break
            
            if not state.is_terminal():
                break
            
            self.offsets.commit(subscription.name, tp, record.offset + 1)
            processed += 1
        
        return processed
    
    def drain(self) -> int:
        """
        Process every available record of every subscription, synchronously.
        
        Returns:
            Number of records processed
        """
        total = 0
        
        while True:
            progressed = 0
            for subscription in self.subscriptions:
                for partition in self.event_log.partitions_for(subscription.topic):
                    progressed += self.poll_once(subscription, partition)
            total += progressed
            if progressed == 0:
                return total
    
    def _worker_loop(self, subscription: Subscription, partition: int) -> None:
        tp = TopicPartition(subscription.topic, partition)
        
        while not self._stopping.is_set():
            try:
                if self.poll_once(subscription, partition) == 0:
                    self.event_log.wait_for_records(
                        tp.topic,
                        tp.partition,
                        self._next_offset(subscription, tp),
                        self.config.poll_interval_ms,
                    )
            except Exception as e:
                logger.error(
                    "Consumer worker error",
                    subscription=subscription.name,
                    partition=partition,
                    error=str(e),
                    exc_info=True,
                )
                self._stopping.wait(self.config.poll_interval_ms / 1000.0)
    
    def start(self) -> None:
        """Start one worker thread per (subscription, partition)."""
        if self._running:
            return
        
        self._stopping.clear()
        self._running = True
        
        for subscription in self.subscriptions:
            for partition in self.event_log.partitions_for(subscription.topic):
                worker = threading.Thread(
                    target=self._worker_loop,
                    args=(subscription, partition),
                    name=f"consumer-{subscription.name}-{partition}",
                    daemon=True,
                )
                worker.start()
                self._workers.append(worker)
        
        logger.info("Started consumer router", workers=len(self._workers))
    
    def stop(self, timeout: float = 5.0) -> None:
        """Stop workers; an event mid-retry is left uncommitted."""
        if not self._running:
            return
        
        self._stopping.set()
        for worker in self._workers:
            worker.join(timeout=timeout)
        
        self._workers = []
        self._running = False
        
        logger.info("Stopped consumer router", **self.metrics())
    
    def lag(self) -> Dict[str, int]:
        """Uncommitted records per "subscription/topic-partition"."""
        result = {}
        for subscription in self.subscriptions:
            for partition in self.event_log.partitions_for(subscription.topic):
                tp = TopicPartition(subscription.topic, partition)
                end = self.event_log.end_offset(tp.topic, partition)
                result[f"{subscription.name}/{tp}"] = end - self._next_offset(subscription, tp)
        return result
    
    def metrics(self) -> dict:
        with self._lock:
            return dict(self._metrics)
    
    def __enter__(self) -> "ConsumerRouter":
        self.start()
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
