"""
Topic catalogue.

Every topic is declared up front with a partition count and a retention
window sized to its volume: high-volume interaction topics get wide
partitioning and short retention, the dead-letter stream gets a single
partition and unlimited retention.
"""

import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

POST_CREATED = "post.created"
POST_LIKED = "post.liked"
POST_DELETED = "post.deleted"
POST_COMMENTED = "post.commented"
MESSAGE_SENT = "message.sent"
MESSAGE_DELETED = "message.deleted"
NOTIFICATION_SEND = "notification.send"
USER_REGISTERED = "user.registered"
USER_FOLLOWED = "user.followed"
USER_UNFOLLOWED = "user.unfollowed"
DEAD_LETTER = "dead-letter"


@dataclass
class TopicConfig:
    """
    Configuration for a topic.
    
    Attributes:
        name: Topic name
        num_partitions: Number of partitions
        retention_hours: Retention period in hours (-1 = unlimited)
    """
    name: str
    num_partitions: int = 1
    retention_hours: int = -1
    
    def __post_init__(self) -> None:
        if self.num_partitions <= 0:
            raise ValueError(
                f"Topic {self.name} needs at least one partition, got {self.num_partitions}"
            )
    
    @property
    def retention_ms(self) -> int:
        """Retention window in milliseconds (-1 = unlimited)."""
        if self.retention_hours < 0:
            return -1
        return self.retention_hours * 3600 * 1000
    
    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            'name': self.name,
            'num_partitions': self.num_partitions,
            'retention_hours': self.retention_hours,
        }
    
    @staticmethod
    def from_dict(data: dict) -> 'TopicConfig':
        """Create from dictionary."""
        return TopicConfig(
            name=data['name'],
            num_partitions=data.get('num_partitions', 1),
            retention_hours=data.get('retention_hours', -1),
        )


DEFAULT_TOPICS: List[TopicConfig] = [
    TopicConfig(POST_CREATED, num_partitions=3, retention_hours=168),
    TopicConfig(POST_LIKED, num_partitions=6, retention_hours=24),
    TopicConfig(POST_DELETED, num_partitions=3, retention_hours=168),
    TopicConfig(POST_COMMENTED, num_partitions=3, retention_hours=168),
    TopicConfig(MESSAGE_SENT, num_partitions=3, retention_hours=168),
    TopicConfig(MESSAGE_DELETED, num_partitions=3, retention_hours=168),
    TopicConfig(NOTIFICATION_SEND, num_partitions=3, retention_hours=72),
    TopicConfig(USER_REGISTERED, num_partitions=2, retention_hours=720),
    TopicConfig(USER_FOLLOWED, num_partitions=2, retention_hours=168),
    TopicConfig(USER_UNFOLLOWED, num_partitions=2, retention_hours=168),
    TopicConfig(DEAD_LETTER, num_partitions=1, retention_hours=-1),
]


class TopicRegistry:
    """
    Registry of declared topics.
    
    Publishing to a topic that was never declared is an error, so partition
    counts cannot drift between producers.
    """
    
    def __init__(self, topics: Optional[List[TopicConfig]] = None):
        """
        Initialize topic registry.
        
        Args:
            topics: Topics to declare (None = DEFAULT_TOPICS)
        """
        self._topics: Dict[str, TopicConfig] = {}
        self._lock = threading.RLock()
        
        for config in topics if topics is not None else DEFAULT_TOPICS:
            self.declare(config)
        
        logger.info("Initialized topic registry", topics=len(self._topics))
    
    @classmethod
    def from_config(cls, topic_settings: Optional[Dict[str, Any]]) -> "TopicRegistry":
        """
        Build a registry from the `topics` configuration section.
        
        Settings override the defaults per topic; unknown names declare new topics.
        
        Args:
            topic_settings: Mapping of topic name to settings
        
        Returns:
            Topic registry
        """
        merged = {config.name: config.to_dict() for config in DEFAULT_TOPICS}
        for name, settings in (topic_settings or {}).items():
            merged.setdefault(name, {'name': name}).update(settings or {})
        
        return cls([TopicConfig.from_dict(data) for data in merged.values()])
    
    def declare(self, config: TopicConfig) -> None:
        """
        Declare a topic, replacing any previous declaration.
        
        Args:
            config: Topic configuration
        """
        with self._lock:
            self._topics[config.name] = config
        
        logger.debug(
            "Declared topic",
            topic=config.name,
            num_partitions=config.num_partitions,
            retention_hours=config.retention_hours,
        )
    
    def get(self, name: str) -> Optional[TopicConfig]:
        """Get topic config by name."""
        with self._lock:
            return self._topics.get(name)
    
    def list_topics(self) -> List[str]:
        """List all declared topic names."""
        with self._lock:
            return sorted(self._topics.keys())
    
    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._topics
