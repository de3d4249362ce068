"""Tests for feed composition."""

import pytest

from socialpipe.feed.composer import FeedComposer, rank_posts
from socialpipe.services.errors import InvalidRequestError
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import FollowEdge, Post, User, Visibility


class World:
    """A small social graph in an in-memory database."""
    
    def __init__(self):
        self.db = InMemoryDatabase()
    
    def user(self, username):
        tx = self.db.begin()
        user = tx.insert(User(username=username, created_at=1))
        tx.commit()
        return user
    
    def follow(self, follower, followed):
        tx = self.db.begin()
        tx.insert(FollowEdge(follower.id, followed.id, created_at=1))
        tx.commit()
    
    def post(self, author, created_at, visibility=Visibility.PUBLIC, promoted=False):
        tx = self.db.begin()
        post = tx.insert(
            Post(
                user_id=author.id,
                caption=f"post at {created_at}",
                visibility=visibility,
                promoted=promoted,
                created_at=created_at,
            )
        )
        tx.commit()
        return post


@pytest.fixture
def world():
    return World()


def feed_ids(page):
    return [entry.post_id for entry in page.items]


class TestRanking:
    """Test two-tier ranking."""
    
    def test_promoted_tier_first(self, world):
        """Test promoted posts precede organic ones, each newest first."""
        viewer = world.user("viewer")
        friend = world.user("friend")
        brand = world.user("brand")
        world.follow(viewer, friend)
        
        o2 = world.post(friend, created_at=100)
        p1 = world.post(brand, created_at=200, promoted=True)
        o1 = world.post(friend, created_at=300)
        p2 = world.post(brand, created_at=250, visibility=Visibility.ADVERTISE)
        
        page = FeedComposer(world.db).compose_feed(viewer.id)
        
        assert feed_ids(page) == [p2.id, p1.id, o1.id, o2.id]
        assert [entry.rank for entry in page.items] == [1, 2, 3, 4]
        assert [entry.promoted for entry in page.items] == [True, True, False, False]
    
    def test_old_promoted_beats_new_organic(self, world):
        """Test promotion outranks recency."""
        viewer = world.user("viewer")
        brand = world.user("brand")
        
        promoted = world.post(brand, created_at=1, promoted=True)
        own = world.post(viewer, created_at=10_000)
        
        assert feed_ids(FeedComposer(world.db).compose_feed(viewer.id)) == [promoted.id, own.id]
    
    def test_ties_broken_by_id(self):
        """Test equal creation times order by descending id."""
        posts = [Post(id=1, created_at=5), Post(id=3, created_at=5), Post(id=2, created_at=5)]
        
        assert [p.id for p in rank_posts(posts)] == [3, 2, 1]


class TestCandidates:
    """Test feed membership and visibility."""
    
    def test_membership(self, world):
        """Test only followed authors, the viewer and promoted posts appear."""
        viewer = world.user("viewer")
        friend = world.user("friend")
        stranger = world.user("stranger")
        world.follow(viewer, friend)
        
        mine = world.post(viewer, 1)
        friends = world.post(friend, 2)
        world.post(stranger, 3)
        
        assert feed_ids(FeedComposer(world.db).compose_feed(viewer.id)) == [friends.id, mine.id]
    
    def test_private_posts_hidden_from_followers(self, world):
        """Test a follower never sees another user's private post."""
        viewer = world.user("viewer")
        friend = world.user("friend")
        world.follow(viewer, friend)
        world.post(friend, 1, visibility=Visibility.PRIVATE)
        
        assert FeedComposer(world.db).compose_feed(viewer.id).total_items == 0
    
    def test_private_promoted_post_excluded(self, world):
        """Test visibility filtering happens before promotion ranking."""
        viewer = world.user("viewer")
        brand = world.user("brand")
        hidden = world.post(brand, 10, visibility=Visibility.PRIVATE, promoted=True)
        
        assert FeedComposer(world.db).compose_feed(viewer.id).items == []
        assert feed_ids(FeedComposer(world.db).compose_feed(brand.id)) == [hidden.id]
    
    def test_own_private_posts_visible(self, world):
        """Test the owner sees their own private posts."""
        viewer = world.user("viewer")
        private = world.post(viewer, 1, visibility=Visibility.PRIVATE)
        
        assert feed_ids(FeedComposer(world.db).compose_feed(viewer.id)) == [private.id]


class TestPagination:
    """Test feed pages."""
    
    def test_pages_partition_the_ranking(self, world):
        """Test consecutive pages continue the ranking."""
        viewer = world.user("viewer")
        posts = [world.post(viewer, created_at=t) for t in range(1, 6)]
        composer = FeedComposer(world.db)
        
        first = composer.compose_feed(viewer.id, page=0, page_size=2)
        last = composer.compose_feed(viewer.id, page=2, page_size=2)
        
        assert feed_ids(first) == [posts[4].id, posts[3].id]
        assert feed_ids(last) == [posts[0].id]
        assert last.items[0].rank == 5
        assert first.total_pages == 3
        assert first.total_items == 5
    
    def test_page_beyond_end_is_empty(self, world):
        """Test a page past the end returns no items."""
        viewer = world.user("viewer")
        world.post(viewer, 1)
        
        page = FeedComposer(world.db).compose_feed(viewer.id, page=5)
        
        assert page.items == []
        assert page.total_items == 1
    
    @pytest.mark.parametrize("page,page_size", [(-1, 20), (0, 0), (0, 101)])
    def test_invalid_page_arguments(self, world, page, page_size):
        """Test out-of-range page arguments are rejected."""
        with pytest.raises(InvalidRequestError):
            FeedComposer(world.db).compose_feed(1, page=page, page_size=page_size)
    
    def test_to_dict(self, world):
        """Test the response shape."""
        viewer = world.user("viewer")
        world.post(viewer, 1)
        
        data = FeedComposer(world.db).compose_feed(viewer.id).to_dict()
        
        assert set(data) == {"items", "page", "totalPages", "totalItems"}
        assert data["items"][0]["rank"] == 1
        assert data["items"][0]["username"] == "viewer"
