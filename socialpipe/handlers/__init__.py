"""Event handlers run by the consumer router."""

from socialpipe.handlers.notifications import NotificationMaterializer
from socialpipe.handlers.search import SearchCacheHandler
from socialpipe.handlers.user_cache import UserCacheHandler

__all__ = [
    "NotificationMaterializer",
    "SearchCacheHandler",
    "UserCacheHandler",
]
