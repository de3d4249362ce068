"""Tests for comments and replies through the pipeline."""

import pytest

from socialpipe.app import Application
from socialpipe.cache import keys
from socialpipe.events import topics
from socialpipe.events.payloads import PostCommented, decode_payload
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import InvalidRequestError, NotFoundError, PermissionDeniedError
from socialpipe.store.models import NotificationType, Visibility
from socialpipe.utils.config import Config


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
def users(app):
    return [app.users.register_user(name) for name in ("alice", "bob", "carol")]


@pytest.fixture
def post(app, users):
    return app.posts.create_post(RequestContext(users[0].id), "hello")


def befriend(app, user_a, user_b):
    request = app.friends.send_request(RequestContext(user_a.id), user_b.id)
    app.friends.accept_request(RequestContext(user_b.id), request["id"])


def notifications_of(app, user, notification_type):
    return [n for n in app.db.notifications_for(user.id) if n.type == notification_type]


def commented_events(app, post_id):
    partition = app.event_log.partition_for(topics.POST_COMMENTED, str(post_id))
    return [
        decode_payload(topics.POST_COMMENTED, record.value)
        for record in app.event_log.read(topics.POST_COMMENTED, partition, 0)
    ]


class TestAddComment:
    """Test CommentService.add_comment."""
    
    def test_friend_comment_notifies_owner(self, app, users, post):
        """Test a friend's comment publishes post.commented and notifies the post owner."""
        alice, bob, _ = users
        befriend(app, alice, bob)
        
        comment = app.comments.add_comment(RequestContext(bob.id), post["id"], " nice ")
        app.router.drain()
        
        assert comment["content"] == "nice"
        assert comment["parentCommentId"] is None
        assert commented_events(app, post["id"]) == [
            PostCommented(
                post_id=post["id"],
                comment_id=comment["id"],
                user_id=bob.id,
                content="nice",
                timestamp=comment["createdAt"],
            )
        ]
        
        received = notifications_of(app, alice, NotificationType.COMMENT)
        assert [(n.sender_id, n.entity_id) for n in received] == [(bob.id, comment["id"])]
    
    def test_stranger_comment_not_notified(self, app, users, post):
        """Test comments from non-friends are published but notify nobody."""
        alice, _, carol = users
        
        app.comments.add_comment(RequestContext(carol.id), post["id"], "hi")
        app.router.drain()
        
        assert len(commented_events(app, post["id"])) == 1
        assert notifications_of(app, alice, NotificationType.COMMENT) == []
    
    def test_following_is_not_enough(self, app, users, post):
        """Test mutual follows without a friendship do not notify."""
        alice, bob, _ = users
        app.follows.follow(RequestContext(alice.id), bob.id)
        app.follows.follow(RequestContext(bob.id), alice.id)
        
        app.comments.add_comment(RequestContext(bob.id), post["id"], "hi")
        app.router.drain()
        
        assert notifications_of(app, alice, NotificationType.COMMENT) == []
    
    def test_each_comment_notifies_separately(self, app, users, post):
        """Test two comments by the same friend are two notifications."""
        alice, bob, _ = users
        befriend(app, alice, bob)
        
        app.comments.add_comment(RequestContext(bob.id), post["id"], "one")
        app.comments.add_comment(RequestContext(bob.id), post["id"], "two")
        app.router.drain()
        
        assert len(notifications_of(app, alice, NotificationType.COMMENT)) == 2
    
    def test_reply_notifies_parent_author(self, app, users, post):
        """Test a reply notifies the answered comment's author, not the post owner."""
        alice, bob, carol = users
        befriend(app, alice, carol)
        befriend(app, bob, carol)
        parent = app.comments.add_comment(RequestContext(bob.id), post["id"], "first")
        
        reply = app.comments.add_comment(
            RequestContext(carol.id), post["id"], "agreed", parent_comment_id=parent["id"]
        )
        app.router.drain()
        
        assert reply["parentCommentId"] == parent["id"]
        replies = notifications_of(app, bob, NotificationType.REPLY)
        assert [(n.sender_id, n.entity_id) for n in replies] == [(carol.id, reply["id"])]
        assert notifications_of(app, alice, NotificationType.COMMENT) == []
        assert commented_events(app, post["id"])[-1].parent_comment_id == parent["id"]
    
    def test_own_post_not_notified(self, app, users, post):
        """Test commenting on your own post notifies nobody."""
        alice = users[0]
        
        app.comments.add_comment(RequestContext(alice.id), post["id"], "bump")
        app.router.drain()
        
        assert app.db.notifications_for(alice.id) == []
    
    def test_blank_content_rejected(self, app, users, post):
        """Test empty comments are rejected before anything is written."""
        with pytest.raises(InvalidRequestError):
            app.comments.add_comment(RequestContext(users[1].id), post["id"], "  ")
        
        assert commented_events(app, post["id"]) == []
    
    def test_parent_from_other_post_rejected(self, app, users, post):
        """Test a reply must answer a comment on the same post."""
        alice, bob, _ = users
        other = app.posts.create_post(RequestContext(alice.id), "other")
        parent = app.comments.add_comment(RequestContext(bob.id), other["id"], "elsewhere")
        
        with pytest.raises(InvalidRequestError):
            app.comments.add_comment(
                RequestContext(bob.id), post["id"], "reply", parent_comment_id=parent["id"]
            )
        with pytest.raises(NotFoundError):
            app.comments.add_comment(
                RequestContext(bob.id), post["id"], "reply", parent_comment_id=999
            )
    
    def test_private_post_denied(self, app, users):
        """Test only the owner may comment on a private post."""
        alice, bob, _ = users
        private = app.posts.create_post(RequestContext(alice.id), "secret", Visibility.PRIVATE)
        
        with pytest.raises(PermissionDeniedError):
            app.comments.add_comment(RequestContext(bob.id), private["id"], "peek")
        with pytest.raises(NotFoundError):
            app.comments.add_comment(RequestContext(bob.id), 999, "nothing")


class TestCommentReads:
    """Test listing and counting comments."""
    
    def test_counts_cached_until_next_comment(self, app, users, post):
        """Test comment and reply counts are cached and dropped by new comments."""
        _, bob, carol = users
        parent = app.comments.add_comment(RequestContext(bob.id), post["id"], "first")
        
        assert app.comments.comment_count(post["id"]) == 1
        assert app.comments.replies_count(parent["id"]) == 0
        assert app.cache_store.get(keys.post_comment_count(post["id"])) == "1"
        
        app.comments.add_comment(
            RequestContext(carol.id), post["id"], "second", parent_comment_id=parent["id"]
        )
        
        assert app.cache_store.get(keys.post_comment_count(post["id"])) is None
        assert app.cache_store.get(keys.comment_replies_count(parent["id"])) is None
        assert app.comments.comment_count(post["id"]) == 2
        assert app.comments.replies_count(parent["id"]) == 1
    
    def test_listing_order(self, app, users, post):
        """Test top-level comments are newest first and replies oldest first."""
        _, bob, carol = users
        first = app.comments.add_comment(RequestContext(bob.id), post["id"], "first")
        second = app.comments.add_comment(RequestContext(carol.id), post["id"], "second")
        for text in ("r1", "r2"):
            app.comments.add_comment(
                RequestContext(carol.id), post["id"], text, parent_comment_id=first["id"]
            )
        
        page = app.comments.get_post_comments(RequestContext(bob.id), post["id"])
        replies = app.comments.get_replies(RequestContext(bob.id), first["id"])
        
        assert [c["id"] for c in page["items"]] == [second["id"], first["id"]]
        assert [c["repliesCount"] for c in page["items"]] == [0, 2]
        assert page["totalItems"] == 2
        assert [r["content"] for r in replies] == ["r1", "r2"]
        assert replies[0]["username"] == "carol"


class TestDeleteComment:
    """Test CommentService.delete_comment."""
    
    def test_delete_own_comment_with_replies(self, app, users, post):
        """Test only the author deletes, and replies go with the comment."""
        _, bob, carol = users
        parent = app.comments.add_comment(RequestContext(bob.id), post["id"], "first")
        reply = app.comments.add_comment(
            RequestContext(carol.id), post["id"], "reply", parent_comment_id=parent["id"]
        )
        app.comments.add_comment(
            RequestContext(bob.id), post["id"], "nested", parent_comment_id=reply["id"]
        )
        assert app.comments.comment_count(post["id"]) == 3
        
        with pytest.raises(PermissionDeniedError):
            app.comments.delete_comment(RequestContext(carol.id), parent["id"])
        
        app.comments.delete_comment(RequestContext(bob.id), parent["id"])
        
        assert app.db.get_comment(reply["id"]) is None
        assert app.comments.comment_count(post["id"]) == 0
    
    def test_delete_missing(self, app, users):
        """Test deleting an unknown comment fails."""
        with pytest.raises(NotFoundError):
            app.comments.delete_comment(RequestContext(users[0].id), 999)
    
    def test_deleting_post_removes_comments(self, app, users, post):
        """Test a deleted post takes its comments along."""
        alice, bob, _ = users
        comment = app.comments.add_comment(RequestContext(bob.id), post["id"], "first")
        
        app.posts.delete_post(RequestContext(alice.id), post["id"])
        
        assert app.db.get_comment(comment["id"]) is None
        assert app.comments.comment_count(post["id"]) == 0
