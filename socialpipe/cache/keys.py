"""
Cache key conventions.

These key shapes are a stable contract read by other services; change them
only together with every reader.
"""

SEARCH_PREVIEW_PATTERN = "search:all:preview:*"
TRENDING_POSTS = "trending:posts"


def unread_messages(receiver_id: int, sender_id: int) -> str:
    """Unread messages from sender_id waiting for receiver_id."""
    return f"unread:messages:{receiver_id}:{sender_id}"


def unread_total(receiver_id: int) -> str:
    """All unread messages waiting for receiver_id."""
    return f"unread:total:{receiver_id}"


def chat_history(user_a: int, user_b: int) -> str:
    """Bounded recent-message list shared by both participants."""
    low, high = sorted((user_a, user_b))
    return f"chat:history:{low}:{high}"


def conversation_list(user_id: int) -> str:
    return f"conversation:{user_id}"


def notification_unread_count(user_id: int) -> str:
    return f"notification:unread:count:{user_id}"


def notifications_recent(user_id: int) -> str:
    """Bounded list of recent notification summaries."""
    return f"notifications:recent:{user_id}"


def user_cache(user_id: int) -> str:
    return f"user:cache:{user_id}"


def user_post_count(user_id: int) -> str:
    return f"user:{user_id}:postCount"


def post_comment_count(post_id: int) -> str:
    return f"post:{post_id}:commentCount"


def comment_replies_count(comment_id: int) -> str:
    return f"comment:{comment_id}:repliesCount"


def user_stats(user_id: int) -> str:
    return f"user:{user_id}:stats"


def processed_marker(scope: str, natural_key: str) -> str:
    """
    Marker recording that an occurrence was already applied.
    
    Args:
        scope: What was applied (e.g. "trending")
        natural_key: Identity of the logical occurrence
    """
    return f"processed:{scope}:{natural_key}"
