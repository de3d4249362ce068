"""
Application wiring.

Builds every component from a Config and connects the consumer handlers to
their topics.
"""

import importlib
from pathlib import Path
from typing import Optional

from socialpipe.cache.policy import CachePolicy
from socialpipe.cache.redis_store import RedisCacheStore
from socialpipe.cache.store import CacheStore, InMemoryCacheStore
from socialpipe.consumer.dead_letter import DeadLetterSink
from socialpipe.consumer.offsets import OffsetStore
from socialpipe.consumer.router import ConsumerRouter, RouterConfig
from socialpipe.eventlog.log import EventLog
from socialpipe.events import topics
from socialpipe.events.topics import TopicRegistry
from socialpipe.feed.composer import FeedComposer
from socialpipe.handlers.notifications import NotificationMaterializer
from socialpipe.handlers.search import SearchCacheHandler
from socialpipe.handlers.user_cache import UserCacheHandler
from socialpipe.pipeline.publisher import CommitSynchronizedPublisher, PublisherConfig
from socialpipe.realtime.channel import PushChannel
from socialpipe.services.comments import CommentService
from socialpipe.services.follows import FollowService
from socialpipe.services.friends import FriendService
from socialpipe.services.messages import MessageService
from socialpipe.services.notifications import NotificationService
from socialpipe.services.posts import PostService
from socialpipe.services.users import UserService
from socialpipe.store.memory import InMemoryDatabase
from socialpipe.utils.config import Config, get_config
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

OFFSETS_FILE = "consumer-offsets.json"


def build_cache_store(config: Config) -> CacheStore:
    """
    Create the configured cache backend.
    
    Raises:
        ValueError: If cache.backend is unknown
    """
    backend = config.get("cache.backend", "memory")
    
    if backend == "memory":
        return InMemoryCacheStore()
    if backend == "redis":
        return RedisCacheStore(redis_url=config.get("cache.redis_url"))
    
    raise ValueError(f"Unknown cache backend: {backend}")


def build_database(config: Config) -> InMemoryDatabase:
    """
    Create the store of record.
    
    store.factory names a "module:callable" returning the database the
    writers use. Without it the application gets a private in-memory
    database that no other process can see.
    
    Raises:
        ValueError: If store.factory cannot be resolved
    """
    factory_path = config.get("store.factory")
    if not factory_path:
        return InMemoryDatabase()
    
    module_name, _, attribute = factory_path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"store.factory must be 'module:callable', got {factory_path!r}")
    
    try:
        factory = getattr(importlib.import_module(module_name), attribute)
    except (ImportError, AttributeError) as e:
        raise ValueError(f"Cannot load store factory {factory_path!r}: {e}") from e
    
    logger.info("Loading store of record", factory=factory_path)
    return factory()


class Application:
    """
    All pipeline components, wired together.
    
    Example:
        >>> with Application(Config.from_dict({})) as app:
        ...     user = app.users.register_user("alice")
    """
    
    def __init__(
        self,
        config: Optional[Config] = None,
        cache_store: Optional[CacheStore] = None,
        db: Optional[InMemoryDatabase] = None,
    ):
        """
        Initialize application.
        
        Args:
            config: Configuration (default: process-wide config)
            cache_store: Cache backend (default: built from config)
            db: Store of record shared with the writers (default: built
                from store.factory)
        """
        self.config = config or get_config()
        
        data_dir = self.config.get("eventlog.data_dir")
        self.data_dir = Path(data_dir) if data_dir else None
        
        self.registry = TopicRegistry.from_config(self.config.get("topics"))
        self.event_log = EventLog(
            self.registry,
            data_dir=self.data_dir,
            fsync_on_append=bool(self.config.get("eventlog.fsync_on_append", False)),
        )
        self.cache_store = cache_store or build_cache_store(self.config)
        self.cache_policy = CachePolicy.from_config(self.config.get("cache"))
        self.push_channel = PushChannel()
        self.shared_store = db is not None or bool(self.config.get("store.factory"))
        self.db = db if db is not None else build_database(self.config)
        
        self.publisher = CommitSynchronizedPublisher(
            self.event_log,
            self.cache_store,
            self.push_channel,
            PublisherConfig.from_config(self.config.get("publisher")),
        )
        
        self.dead_letters = DeadLetterSink(self.event_log)
        self.router = ConsumerRouter(
            self.event_log,
            self.dead_letters,
            OffsetStore(self.data_dir / OFFSETS_FILE if self.data_dir else None),
            RouterConfig.from_config(self.config.get("consumer")),
        )
        
        self.users = UserService(self.db, self.publisher, self.cache_store)
        self.notifications = NotificationService(
            self.db, self.publisher, self.cache_store, self.cache_policy
        )
        self.messages = MessageService(
            self.db, self.publisher, self.cache_store, self.cache_policy
        )
        self.posts = PostService(self.db, self.publisher, self.notifications)
        self.follows = FollowService(self.db, self.publisher, self.notifications)
        self.friends = FriendService(self.db, self.notifications)
        self.comments = CommentService(
            self.db, self.publisher, self.notifications, self.cache_store, self.cache_policy
        )
        self.feed = FeedComposer(self.db)
        
        self.notification_materializer = NotificationMaterializer(
            self.db, self.publisher, self.cache_policy
        )
        self.search_handler = SearchCacheHandler(self.cache_store, self.cache_policy)
        self.user_cache_handler = UserCacheHandler(self.cache_store)
        
        self._register_handlers()
        
        logger.info(
            "Application initialized",
            data_dir=str(self.data_dir) if self.data_dir else None,
            cache_backend=type(self.cache_store).__name__,
            shared_store=self.shared_store,
            subscriptions=len(self.router.subscriptions),
        )
    
    def _register_handlers(self) -> None:
        register = self.router.register
        
        register(topics.NOTIFICATION_SEND, self.notification_materializer.handle, "notification-materializer")
        
        register(topics.POST_CREATED, self.search_handler.on_post_created, "search-post-created")
        register(topics.POST_LIKED, self.search_handler.on_post_liked, "search-post-liked")
        register(topics.POST_COMMENTED, self.search_handler.on_post_commented, "search-post-commented")
        register(topics.POST_DELETED, self.search_handler.on_post_deleted, "search-post-deleted")
        
        register(topics.POST_CREATED, self.user_cache_handler.on_post_changed, "user-cache-post-created")
        register(topics.POST_DELETED, self.user_cache_handler.on_post_changed, "user-cache-post-deleted")
        register(topics.USER_FOLLOWED, self.user_cache_handler.on_follow_changed, "user-cache-followed")
        register(topics.USER_UNFOLLOWED, self.user_cache_handler.on_follow_changed, "user-cache-unfollowed")
    
    def start(self) -> None:
        """Start consumer workers."""
        self.router.start()
    
    def stop(self) -> None:
        """Stop consumers, flush pending effects and close the log."""
        self.router.stop()
        self.publisher.close()
        self.event_log.close()
        logger.info("Application stopped")
    
    def metrics(self) -> dict:
        return {
            "publisher": self.publisher.metrics(),
            "consumer": self.router.metrics(),
            "realtime": self.push_channel.metrics(),
        }
    
    def __enter__(self) -> "Application":
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
