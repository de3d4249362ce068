"""Tests for the notification read side."""

import pytest

from socialpipe.app import Application
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import PermissionDeniedError
from socialpipe.services.notifications import NotificationService
from socialpipe.store.models import NotificationType
from socialpipe.utils.config import Config

DAY_MS = 24 * 3600 * 1000


@pytest.fixture
def app():
    config = Config.from_dict({
        "eventlog": {"data_dir": None},
        "cache": {"backend": "memory"},
        "consumer": {"backoff_ms": 0},
    })
    application = Application(config)
    yield application
    application.stop()


@pytest.fixture
def pair(app):
    return app.users.register_user("alice"), app.users.register_user("bob")


def notify(app, receiver, sender, entity_id):
    app.notifications.send_notification(
        receiver.id,
        NotificationType.LIKE,
        title="New like",
        message=f"{sender.username} liked your post",
        sender_id=sender.id,
        entity_id=entity_id,
    )


class TestNotificationService:
    """Test NotificationService."""
    
    def test_send_outside_transaction_runs_inline(self, app, pair):
        """Test scheduling without a unit of work publishes immediately."""
        alice, bob = pair
        
        notify(app, bob, alice, 1)
        app.router.drain()
        
        assert app.publisher.metrics()["inline_fallbacks"] == 1
        assert app.notifications.count_unread(RequestContext(bob.id)) == 1
    
    def test_self_notification_not_sent(self, app, pair):
        """Test a self-notification never reaches the log."""
        alice, _ = pair
        batches = app.publisher.metrics()["batches"]
        
        notify(app, alice, alice, 1)
        
        assert app.publisher.metrics()["batches"] == batches
    
    def test_list_and_recent(self, app, pair):
        """Test the list read and the recent summaries agree."""
        alice, bob = pair
        for entity_id in (1, 2, 3):
            notify(app, bob, alice, entity_id)
        app.router.drain()
        
        page = app.notifications.list_notifications(RequestContext(bob.id), page=0, page_size=2)
        recent = app.notifications.recent(RequestContext(bob.id))
        
        assert page["totalItems"] == 3
        assert [item["entityId"] for item in page["items"]] == [3, 2]
        assert page["items"][0]["senderUsername"] == "alice"
        assert [item["entityId"] for item in recent] == [3, 2, 1]
    
    def test_mark_as_read(self, app, pair):
        """Test reading one notification lowers the unread count."""
        alice, bob = pair
        notify(app, bob, alice, 1)
        notify(app, bob, alice, 2)
        app.router.drain()
        assert app.notifications.count_unread(RequestContext(bob.id)) == 2
        
        newest = app.db.notifications_for(bob.id)[0]
        app.notifications.mark_as_read(RequestContext(bob.id), newest.id)
        
        assert app.notifications.count_unread(RequestContext(bob.id)) == 1
        assert app.notifications.mark_all_as_read(RequestContext(bob.id)) == 1
        assert app.notifications.count_unread(RequestContext(bob.id)) == 0
    
    def test_cannot_touch_others_notifications(self, app, pair):
        """Test notifications belong to their receiver."""
        alice, bob = pair
        notify(app, bob, alice, 1)
        app.router.drain()
        notification = app.db.notifications_for(bob.id)[0]
        
        with pytest.raises(PermissionDeniedError):
            app.notifications.delete_notification(RequestContext(alice.id), notification.id)
        
        app.notifications.delete_notification(RequestContext(bob.id), notification.id)
        assert app.notifications.count_unread(RequestContext(bob.id)) == 0
    
    def test_purge_older_than(self, app, pair):
        """Test notifications past the retention window are deleted."""
        alice, bob = pair
        now = {"ms": 100 * DAY_MS}
        service = NotificationService(
            app.db, app.publisher, app.cache_store, clock=lambda: now["ms"]
        )
        
        service.send_notification(bob.id, NotificationType.LIKE, "old", sender_id=alice.id, entity_id=1)
        now["ms"] += 31 * DAY_MS
        service.send_notification(bob.id, NotificationType.LIKE, "new", sender_id=alice.id, entity_id=2)
        app.router.drain()
        
        assert service.purge_older_than(days=30) == 1
        assert [n.title for n in app.db.notifications_for(bob.id)] == ["new"]
        assert service.count_unread(RequestContext(bob.id)) == 1
