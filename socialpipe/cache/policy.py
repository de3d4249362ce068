"""
TTLs and bounds for cached values.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class CachePolicy:
    """
    Cache lifetimes and list bounds.
    
    Attributes:
        recent_list_max_len: Length recent lists are trimmed to
        unread_ttl_seconds: TTL of unread message counters
        recent_list_ttl_seconds: TTL of recent lists
        notification_count_ttl_seconds: TTL of unread notification counters
        marker_ttl_seconds: TTL of processed-occurrence markers
        comment_count_ttl_seconds: TTL of comment and reply counters
    """
    recent_list_max_len: int = 200
    unread_ttl_seconds: int = 60
    recent_list_ttl_seconds: int = 7 * 24 * 3600
    notification_count_ttl_seconds: int = 300
    marker_ttl_seconds: int = 48 * 3600
    comment_count_ttl_seconds: int = 600
    
    def __post_init__(self) -> None:
        if self.recent_list_max_len <= 0:
            raise ValueError("recent_list_max_len must be positive")
    
    @classmethod
    def from_config(cls, settings: Optional[Dict[str, Any]]) -> "CachePolicy":
        settings = settings or {}
        ttl = settings.get("ttl") or {}
        defaults = cls()
        return cls(
            recent_list_max_len=int(settings.get("recent_list_max_len", defaults.recent_list_max_len)),
            unread_ttl_seconds=int(ttl.get("unread_seconds", defaults.unread_ttl_seconds)),
            recent_list_ttl_seconds=int(
                ttl.get("recent_list_seconds", defaults.recent_list_ttl_seconds)
            ),
            notification_count_ttl_seconds=int(
                ttl.get("notification_count_seconds", defaults.notification_count_ttl_seconds)
            ),
            marker_ttl_seconds=int(ttl.get("marker_seconds", defaults.marker_ttl_seconds)),
            comment_count_ttl_seconds=int(
                ttl.get("comment_count_seconds", defaults.comment_count_ttl_seconds)
            ),
        )
