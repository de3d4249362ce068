#!/usr/bin/env python3
"""
Simple demo of the socialpipe interaction pipeline.

Sends a message, publishes posts and likes, lets the consumers materialize
notifications and prints a composed feed. Everything runs in memory.
"""

import threading

from socialpipe.app import Application
from socialpipe.services.context import RequestContext
from socialpipe.store.models import Visibility
from socialpipe.utils.config import Config
from socialpipe.utils.logging import configure_logging


def main():
    configure_logging(log_level="WARNING", log_format="console", log_output="stderr")
    
    print("=" * 60)
    print("socialpipe - Interaction Pipeline Demo")
    print("=" * 60)
    
    config = Config.from_dict({
        "eventlog": {"data_dir": None},
        "cache": {"backend": "memory"},
        "consumer": {"poll_interval_ms": 20},
    })
    
    with Application(config) as app:
        # Users
        print("\n[1] Registering users...")
        alice = app.users.register_user("alice")
        bob = app.users.register_user("bob")
        brand = app.users.register_user("brand")
        print(f"✅ alice={alice.id} bob={bob.id} brand={brand.id}")
        
        # Live connection for bob
        received = threading.Event()
        
        def bob_sink(destination, payload):
            print(f"  📨 bob <- {destination}: {payload.get('title') or payload.get('content')}")
            if destination == "/queue/notifications":
                received.set()
        
        app.push_channel.connect(bob.id, bob_sink)
        
        print("\n[2] Starting consumers...")
        app.start()
        print(f"✅ {len(app.router.subscriptions)} subscriptions running")
        
        print("\n[3] alice messages bob...")
        app.messages.send_message(RequestContext(alice.id), bob.id, "hi bob!")
        print(f"  unread for bob: {app.messages.count_total_unread(RequestContext(bob.id))}")
        
        print("\n[4] bob follows alice, alice posts, brand promotes...")
        app.follows.follow(RequestContext(bob.id), alice.id)
        post = app.posts.create_post(RequestContext(alice.id), "first post")
        app.posts.create_post(RequestContext(brand.id), "buy things", Visibility.ADVERTISE)
        app.posts.like_post(RequestContext(bob.id), post["id"])
        
        if received.wait(5):
            print("✅ bob received a live notification")
        else:
            print("⚠️  No live notification within 5s")
        
        print("\n[5] bob's feed:")
        for entry in app.feed.compose_feed(bob.id).items:
            tag = "promoted" if entry.promoted else "organic"
            print(f"  #{entry.rank} [{tag}] {entry.post['username']}: {entry.post['caption']}")
        
        print("\n[6] alice and bob become friends, bob comments...")
        request = app.friends.send_request(RequestContext(bob.id), alice.id)
        app.friends.accept_request(RequestContext(alice.id), request["id"])
        app.comments.add_comment(RequestContext(bob.id), post["id"], "nice post!")
        print(f"  friends: {app.friends.are_friends(alice.id, bob.id)}")
        print(f"  comments on alice's post: {app.comments.comment_count(post['id'])}")
        
        print("\n[7] Metrics:")
        for component, values in app.metrics().items():
            print(f"  {component}: {values}")
    
    print("\n" + "=" * 60)
    print("Demo completed successfully!")
    print("=" * 60)


if __name__ == '__main__':
    try:
        main()
    except KeyboardInterrupt:
        print("\n\nDemo interrupted by user")
