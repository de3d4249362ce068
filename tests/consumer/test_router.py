"""Tests for the consumer router."""

import json
import threading
import time
from unittest.mock import MagicMock

import pytest

from socialpipe.consumer.dead_letter import DeadLetterSink
from socialpipe.consumer.offsets import TopicPartition
from socialpipe.consumer.retry import (
    MissingEntityError,
    NonRetryableError,
    RetryableError,
)
from socialpipe.consumer.router import ConsumerRouter, MessageState, RouterConfig
from socialpipe.eventlog.log import EventLog, LogUnavailableError, UnknownTopicError
from socialpipe.events import topics
from socialpipe.events.payloads import PostLiked
from socialpipe.events.topics import TopicRegistry


def liked(post_id=5, user_id=1, timestamp=1000):
    return PostLiked(post_id=post_id, user_id=user_id, timestamp=timestamp)


@pytest.fixture
def event_log():
    log = EventLog(TopicRegistry())
    yield log
    log.close()


@pytest.fixture
def sleeps():
    """Recorded backoff sleeps."""
    return []


@pytest.fixture
def router(event_log, sleeps):
    """Router whose backoff sleeps return immediately."""
    return ConsumerRouter(
        event_log,
        DeadLetterSink(event_log),
        config=RouterConfig(max_attempts=3, backoff_ms=2000),
        sleep=sleeps.append,
    )


def committed(router, name, event_log, key="5"):
    partition = event_log.partition_for(topics.POST_LIKED, key)
    return router.offsets.committed(name, TopicPartition(topics.POST_LIKED, partition))


class TestDelivery:
    """Test ordered delivery and acknowledgement."""
    
    def test_same_key_delivered_in_order(self, router, event_log):
        """Test events sharing a key reach the handler in publish order."""
        seen = []
        router.register(topics.POST_LIKED, lambda e: seen.append(e.payload.user_id), name="h")
        for user_id in (1, 2, 3):
            event_log.publish_event(liked(user_id=user_id))
        
        assert router.drain() == 3
        
        assert seen == [1, 2, 3]
        assert committed(router, "h", event_log) == 3
        assert router.metrics()["acked"] == 3
    
    def test_event_identity(self, router, event_log):
        """Test handlers see topic, partition and offset."""
        seen = []
        router.register(topics.POST_LIKED, seen.append, name="h")
        metadata = event_log.publish_event(liked())
        
        router.drain()
        
        event = seen[0]
        assert (event.topic, event.partition, event.offset) == (
            topics.POST_LIKED,
            metadata.partition,
            metadata.offset,
        )
        assert event.key == "5"
        assert event.attempt == 1
    
    def test_subscriptions_are_independent(self, router, event_log):
        """Test each subscription receives every event."""
        first, second = [], []
        router.register(topics.POST_LIKED, first.append, name="first")
        router.register(topics.POST_LIKED, second.append, name="second")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert len(first) == len(second) == 1
    
    def test_drain_resumes_from_committed_offset(self, router, event_log):
        """Test already committed events are not redelivered."""
        seen = []
        router.register(topics.POST_LIKED, seen.append, name="h")
        event_log.publish_event(liked(user_id=1))
        router.drain()
        event_log.publish_event(liked(user_id=2))
        
        router.drain()
        
        assert [e.payload.user_id for e in seen] == [1, 2]


class TestFailureHandling:
    """Test retry, skip and dead-letter."""
    
    def test_always_failing_handler_dead_letters_after_three_attempts(
        self, router, event_log, sleeps
    ):
        """Test exactly max_attempts invocations then one dead-letter record."""
        handler = MagicMock(side_effect=RuntimeError("store down"))
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert handler.call_count == 3
        assert sleeps == [2.0, 2.0]
        
        records = router.dead_letters.read_all()
        assert len(records) == 1
        assert records[0].attempts == 3
        assert records[0].original_topic == topics.POST_LIKED
        assert records[0].subscription == "h"
        assert records[0].error_type == "RuntimeError"
        assert records[0].first_failed_at > 0
        assert json.loads(records[0].payload)["postId"] == 5
        
        assert committed(router, "h", event_log) == 1
    
    def test_dead_letter_keyed_by_partition_key(self, router, event_log):
        """Test the dead-letter log record carries the failed event's partition key."""
        router.register(topics.POST_LIKED, MagicMock(side_effect=ValueError("bad")), name="h")
        event_log.publish_event(liked(post_id=42))
        
        router.drain()
        
        partition = event_log.partition_for(topics.DEAD_LETTER, "42")
        log_records = event_log.read(topics.DEAD_LETTER, partition, 0)
        assert [record.key for record in log_records] == ["42"]
        assert router.dead_letters.read_all()[0].key == "42"
    
    def test_retry_then_success(self, router, event_log):
        """Test a transient failure succeeds on a later attempt."""
        attempts = []
        
        def flaky(event):
            attempts.append(event.attempt)
            if event.attempt < 2:
                raise RetryableError("timeout")
        
        router.register(topics.POST_LIKED, flaky, name="h")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert attempts == [1, 2]
        assert router.dead_letters.read_all() == []
        assert router.metrics()["retries"] == 1
    
    def test_non_retryable_dead_letters_immediately(self, router, event_log, sleeps):
        """Test invalid-argument failures are not retried."""
        handler = MagicMock(side_effect=NonRetryableError("bad type"))
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert handler.call_count == 1
        assert sleeps == []
        assert router.dead_letters.read_all()[0].attempts == 1
    
    def test_value_error_dead_letters_immediately(self, router, event_log):
        """Test ValueError counts as an invalid argument."""
        handler = MagicMock(side_effect=ValueError("unknown notification type"))
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert handler.call_count == 1
        assert len(router.dead_letters.read_all()) == 1
    
    def test_missing_entity_is_skipped(self, router, event_log):
        """Test a missing referenced entity acks without retry or dead-letter."""
        handler = MagicMock(side_effect=MissingEntityError("post 5 gone"))
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish_event(liked())
        
        router.drain()
        
        assert handler.call_count == 1
        assert router.dead_letters.read_all() == []
        assert router.metrics()["skipped"] == 1
        assert committed(router, "h", event_log) == 1
    
    def test_malformed_payload_dead_letters_without_handler(self, router, event_log):
        """Test undecodable events never reach the handler."""
        handler = MagicMock()
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish(topics.POST_LIKED, "5", b'{"postId": "five"}')
        
        router.drain()
        
        handler.assert_not_called()
        records = router.dead_letters.read_all()
        assert records[0].attempts == 0
        assert records[0].error_type == "MalformedEventError"
    
    def test_failure_does_not_block_later_events(self, router, event_log):
        """Test a dead-lettered event is followed by the next one."""
        seen = []
        
        def handler(event):
            if event.payload.user_id == 1:
                raise TypeError("broken")
            seen.append(event.payload.user_id)
        
        router.register(topics.POST_LIKED, handler, name="h")
        event_log.publish_event(liked(user_id=1))
        event_log.publish_event(liked(user_id=2))
        
        router.drain()
        
        assert seen == [2]
    
    def test_dead_letter_write_failure_leaves_offset_uncommitted(self, event_log):
        """Test an event is not acknowledged unless its dead-letter record was written."""
        sink = MagicMock()
        sink.write.side_effect = LogUnavailableError("disk full")
        router = ConsumerRouter(event_log, sink, sleep=lambda seconds: None)
        router.register(topics.POST_LIKED, MagicMock(side_effect=TypeError("bad")), name="h")
        event_log.publish_event(liked())
        
        assert router.drain() == 0
        
        assert committed(router, "h", event_log) is None
        assert router.metrics()["dead_letter_failures"] == 1
        
        sink.write.side_effect = None
        assert router.drain() == 1
        assert committed(router, "h", event_log) == 1


class TestProcessRecord:
    """Test the per-record state machine."""
    
    def test_stopping_mid_backoff_is_not_terminal(self, event_log):
        """Test an event interrupted during backoff is left for redelivery."""
        router = ConsumerRouter(event_log, DeadLetterSink(event_log))
        subscription = router.register(
            topics.POST_LIKED,
            MagicMock(side_effect=RuntimeError("down")),
            name="h",
        )
        metadata = event_log.publish_event(liked())
        record = event_log.read(topics.POST_LIKED, metadata.partition, 0)[0]
        router._stopping.set()
        
        state = router.process_record(subscription, metadata.partition, record)
        
        assert state == MessageState.RETRY_SCHEDULED
        assert not state.is_terminal()


class TestRegistration:
    """Test subscription registration."""
    
    def test_duplicate_name_rejected(self, router):
        """Test subscription names are unique."""
        router.register(topics.POST_LIKED, lambda e: None, name="h")
        
        with pytest.raises(ValueError):
            router.register(topics.POST_CREATED, lambda e: None, name="h")
    
    def test_unknown_topic_rejected(self, router):
        """Test subscribing to an undeclared topic fails."""
        with pytest.raises(UnknownTopicError):
            router.register("no.such.topic", lambda e: None, name="h")


class TestWorkers:
    """Test threaded consumption."""
    
    def test_started_router_consumes(self, event_log):
        """Test worker threads deliver published events."""
        delivered = threading.Event()
        router = ConsumerRouter(
            event_log,
            DeadLetterSink(event_log),
            config=RouterConfig(poll_interval_ms=20),
        )
        router.register(topics.POST_LIKED, lambda e: delivered.set(), name="h")
        
        with router:
            event_log.publish_event(liked())
            assert delivered.wait(5)
            
            deadline = time.monotonic() + 5
            while committed(router, "h", event_log) != 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        
        assert committed(router, "h", event_log) == 1
        assert sum(router.lag().values()) == 0
