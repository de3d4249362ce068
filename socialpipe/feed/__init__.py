"""Feed composition."""

from socialpipe.feed.composer import FeedComposer, FeedEntry, FeedPage, rank_posts

__all__ = ["FeedComposer", "FeedEntry", "FeedPage", "rank_posts"]
