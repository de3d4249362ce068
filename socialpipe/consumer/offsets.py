"""
Committed consumer offsets.

An offset is committed per (subscription, topic, partition) once the event at
that offset reached a terminal state (acked, skipped or dead-lettered). The
committed value is the next offset to read. With a path configured, offsets
are written to a JSON file so a restarted consumer resumes where it stopped.
"""

import json
import os
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TopicPartition:
    """
    Represents a topic-partition pair.
    
    Attributes:
        topic: Topic name
        partition: Partition number
    """
    topic: str
    partition: int
    
    def __str__(self) -> str:
        return f"{self.topic}-{self.partition}"


class OffsetStore:
    """Committed offsets per subscription and topic-partition."""
    
    def __init__(self, path: Optional[Path] = None):
        """
        Initialize offset store.
        
        Args:
            path: JSON file to persist offsets to (None = memory only)
        """
        self.path = Path(path) if path is not None else None
        self._committed: Dict[Tuple[str, TopicPartition], int] = {}
        self._lock = threading.RLock()
        
        if self.path is not None and self.path.exists():
            self._load()
    
    def _load(self) -> None:
        with open(self.path, "r") as f:
            data = json.load(f)
        
        for entry in data.get("offsets", []):
            tp = TopicPartition(entry["topic"], int(entry["partition"]))
            self._committed[(entry["subscription"], tp)] = int(entry["offset"])
        
        logger.info("Loaded committed offsets", path=str(self.path), count=len(self._committed))
    
    def _save(self) -> None:
        entries = [
            {
                "subscription": subscription,
                "topic": tp.topic,
                "partition": tp.partition,
                "offset": offset,
            }
            for (subscription, tp), offset in sorted(
                self._committed.items(),
                key=lambda item: (item[0][0], item[0][1].topic, item[0][1].partition),
            )
        ]
        
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump({"offsets": entries}, f, indent=2)
        os.replace(tmp_path, self.path)
    
    def committed(self, subscription: str, tp: TopicPartition) -> Optional[int]:
        """
        Get committed offset.
        
        Returns:
            Next offset to read, or None if nothing was committed
        """
        with self._lock:
            return self._committed.get((subscription, tp))
    
    def commit(self, subscription: str, tp: TopicPartition, offset: int) -> None:
        """
        Commit the next offset to read.
        
        Commits never move backwards.
        """
        with self._lock:
            current = self._committed.get((subscription, tp))
            if current is not None and offset <= current:
                return
            
            self._committed[(subscription, tp)] = offset
            
            if self.path is not None:
                self._save()
        
        logger.debug(
            "Committed offset",
            subscription=subscription,
            topic=tp.topic,
            partition=tp.partition,
            offset=offset,
        )
    
    def snapshot(self) -> Dict[str, int]:
        """Committed offsets keyed by "subscription/topic-partition"."""
        with self._lock:
            return {
                f"{subscription}/{tp}": offset
                for (subscription, tp), offset in self._committed.items()
            }
