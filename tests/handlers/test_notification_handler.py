"""Tests for notification materialization."""

import json

import pytest

from socialpipe.cache import keys
from socialpipe.cache.store import InMemoryCacheStore
from socialpipe.consumer.retry import MissingEntityError
from socialpipe.consumer.router import ConsumedEvent
from socialpipe.eventlog.log import EventLog
from socialpipe.events import topics
from socialpipe.events.payloads import NotificationSend
from socialpipe.events.topics import TopicRegistry
from socialpipe.handlers.notifications import NotificationMaterializer
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher
from socialpipe.realtime.channel import NOTIFICATIONS_DESTINATION, PushChannel
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import User


def add_user(db, username):
    tx = db.begin()
    user = tx.insert(User(username=username, created_at=1))
    tx.commit()
    return user


def consumed(payload, offset=0):
    return ConsumedEvent(
        topic=topics.NOTIFICATION_SEND,
        partition=0,
        offset=offset,
        timestamp=payload.timestamp,
        key=payload.partition_key(),
        payload=payload,
    )


@pytest.fixture
def env():
    """Database, cache, push channel and materializer."""
    db = InMemoryDatabase()
    cache = InMemoryCacheStore()
    channel = PushChannel()
    event_log = EventLog(TopicRegistry())
    publisher = CommitSynchronizedPublisher(event_log, cache, channel)
    alice = add_user(db, "alice")
    bob = add_user(db, "bob")
    
    yield {
        "db": db,
        "cache": cache,
        "channel": channel,
        "materializer": NotificationMaterializer(db, publisher),
        "alice": alice,
        "bob": bob,
    }
    
    publisher.close()
    event_log.close()


def like_notification(receiver, sender, entity_id=10, timestamp=5000):
    return NotificationSend(
        user_id=receiver.id,
        title="New like",
        message=f"{sender.username} liked your post",
        type="LIKE",
        timestamp=timestamp,
        sender_id=sender.id,
        entity_id=entity_id,
    )


class TestNotificationMaterializer:
    """Test NotificationMaterializer."""
    
    def test_materializes_row_and_effects(self, env):
        """Test a new notification is stored, counted, listed and pushed."""
        pushed = []
        env["channel"].connect(env["bob"].id, lambda dest, payload: pushed.append((dest, payload)))
        
        env["materializer"].handle(consumed(like_notification(env["bob"], env["alice"])))
        
        rows = env["db"].notifications_for(env["bob"].id)
        assert len(rows) == 1
        assert rows[0].sender_id == env["alice"].id
        assert not rows[0].is_read
        
        assert env["cache"].get(keys.notification_unread_count(env["bob"].id)) == "1"
        recent = env["cache"].list_range(keys.notifications_recent(env["bob"].id))
        assert json.loads(recent[0])["id"] == rows[0].id
        
        assert len(pushed) == 1
        destination, payload = pushed[0]
        assert destination == NOTIFICATIONS_DESTINATION
        assert payload["senderUsername"] == "alice"
        assert payload["type"] == "LIKE"
    
    def test_redelivery_is_idempotent(self, env):
        """Test replaying the same event leaves exactly one notification."""
        pushed = []
        env["channel"].connect(env["bob"].id, lambda dest, payload: pushed.append(payload))
        event = consumed(like_notification(env["bob"], env["alice"]))
        
        env["materializer"].handle(event)
        env["materializer"].handle(event)
        
        assert len(env["db"].notifications_for(env["bob"].id)) == 1
        assert env["cache"].get(keys.notification_unread_count(env["bob"].id)) == "1"
        assert len(env["cache"].list_range(keys.notifications_recent(env["bob"].id))) == 1
        assert len(pushed) == 1
    
    def test_self_notification_dropped(self, env):
        """Test a user is never notified about their own action."""
        env["materializer"].handle(consumed(like_notification(env["alice"], env["alice"])))
        
        assert env["db"].notifications_for(env["alice"].id) == []
    
    def test_missing_receiver(self, env):
        """Test a deleted receiver skips the event."""
        ghost = User(id=999, username="ghost")
        
        with pytest.raises(MissingEntityError):
            env["materializer"].handle(consumed(like_notification(ghost, env["alice"])))
    
    def test_unknown_type_is_invalid(self, env):
        """Test an unknown notification type is an invalid argument."""
        payload = NotificationSend(
            user_id=env["bob"].id,
            title="?",
            message=None,
            type="POKE",
            timestamp=1,
            sender_id=env["alice"].id,
        )
        
        with pytest.raises(ValueError):
            env["materializer"].handle(consumed(payload))
    
    def test_system_notification(self, env):
        """Test notifications without a sender are materialized once."""
        payload = NotificationSend(
            user_id=env["bob"].id,
            title="Maintenance tonight",
            message="Back at 02:00",
            type="SYSTEM",
            timestamp=7000,
        )
        
        env["materializer"].handle(consumed(payload))
        env["materializer"].handle(consumed(payload))
        
        rows = env["db"].notifications_for(env["bob"].id)
        assert len(rows) == 1
        assert rows[0].sender_id is None
