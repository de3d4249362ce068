"""
Partitioner for choosing the partition of each event.

Events with the same partition key always land in the same partition, which
is what gives per-key ordering. The hash is stable across processes (md5,
not Python's salted hash()).
"""

import hashlib

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class KeyHashPartitioner:
    """Hash the partition key to a partition number."""
    
    def partition(self, topic: str, key: str, num_partitions: int) -> int:
        """
        Choose partition for an event.
        
        Args:
            topic: Topic name
            key: Partition key
            num_partitions: Number of partitions in the topic
        
        Returns:
            Partition number (0 to num_partitions-1)
        
        Raises:
            ValueError: If num_partitions is not positive
        """
        if num_partitions <= 0:
            raise ValueError(f"Invalid num_partitions: {num_partitions}")
        
        hash_value = int(hashlib.md5(key.encode("utf-8")).hexdigest(), 16)
        partition = hash_value % num_partitions
        
        logger.debug(
            "Hashed key to partition",
            topic=topic,
            partition=partition,
        )
        
        return partition
