"""
Feed composition.

A viewer's feed holds the posts of the users they follow, their own posts and
every promoted post. Posts the viewer may not see are removed before ranking.
Ranking is two-tier: all promoted posts come first, newest first, then all
organic posts strictly newest first. Ties on creation time go to the higher
post id.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from socialpipe.services.pagination import validate_page
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.store.models import Post, post_to_dict
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class FeedEntry:
    """
    A ranked post.
    
    Attributes:
        post_id: Post id
        author_id: Author id
        rank: 1-based position in the whole feed
        created_at: Creation time in ms
        promoted: Whether the post ranked in the promoted tier
        post: Post DTO
    """
    post_id: int
    author_id: int
    rank: int
    created_at: int
    promoted: bool
    post: Dict[str, Any] = field(default_factory=dict)
    
    def to_dict(self) -> Dict[str, Any]:
        return dict(self.post, rank=self.rank)


@dataclass
class FeedPage:
    items: List[FeedEntry]
    page: int
    total_pages: int
    total_items: int
    
    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [entry.to_dict() for entry in self.items],
            "page": self.page,
            "totalPages": self.total_pages,
            "totalItems": self.total_items,
        }


def _newest_first(post: Post) -> tuple:
    return (-post.created_at, -post.id)


def rank_posts(posts: List[Post]) -> List[Post]:
    """Promoted tier first, then organic; each tier newest first."""
    promoted = sorted((p for p in posts if p.is_promoted), key=_newest_first)
    organic = sorted((p for p in posts if not p.is_promoted), key=_newest_first)
    return promoted + organic


class FeedComposer:
    """Read-only feed builder over the store of record."""
    
    def __init__(self, db: InMemoryDatabase):
        self.db = db
    
    def candidates(self, viewer_id: int) -> List[Post]:
        """Visible candidate posts for viewer_id, unranked."""
        authors = set(self.db.following_ids(viewer_id))
        authors.add(viewer_id)
        return [
            post
            for post in self.db.feed_candidates(authors)
            if post.is_visible_to(viewer_id)
        ]
    
    def compose_feed(self, viewer_id: int, page: int = 0, page_size: int = 20) -> FeedPage:
        """
        Build one page of viewer_id's feed.
        
        Args:
            viewer_id: User whose feed is composed
            page: Zero-based page number
            page_size: Posts per page (1..100)
        
        Returns:
            The requested page
        
        Raises:
            InvalidRequestError: If page or page_size is out of range
        """
        validate_page(page, page_size)
        
        ranked = rank_posts(self.candidates(viewer_id))
        start = page * page_size
        window = ranked[start:start + page_size]
        authors = self.db.users_by_id(post.user_id for post in window)
        
        items = [
            FeedEntry(
                post_id=post.id,
                author_id=post.user_id,
                rank=start + index + 1,
                created_at=post.created_at,
                promoted=post.is_promoted,
                post=post_to_dict(post, authors.get(post.user_id)),
            )
            for index, post in enumerate(window)
        ]
        
        logger.debug(
            "Composed feed",
            viewer_id=viewer_id,
            page=page,
            total_items=len(ranked),
        )
        
        return FeedPage(
            items=items,
            page=page,
            total_pages=math.ceil(len(ranked) / page_size),
            total_items=len(ranked),
        )
