"""Tests for committed offsets."""

import shutil
import tempfile
from pathlib import Path

import pytest

from socialpipe.consumer.offsets import OffsetStore, TopicPartition


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


class TestOffsetStore:
    """Test OffsetStore."""
    
    def test_nothing_committed(self):
        """Test an unknown subscription has no offset."""
        assert OffsetStore().committed("s", TopicPartition("t", 0)) is None
    
    def test_commit_never_moves_backwards(self):
        """Test lower commits are ignored."""
        store = OffsetStore()
        tp = TopicPartition("t", 0)
        
        store.commit("s", tp, 5)
        store.commit("s", tp, 3)
        
        assert store.committed("s", tp) == 5
    
    def test_subscriptions_tracked_separately(self):
        """Test offsets are per subscription."""
        store = OffsetStore()
        tp = TopicPartition("t", 0)
        
        store.commit("a", tp, 5)
        
        assert store.committed("b", tp) is None
        assert store.snapshot() == {"a/t-0": 5}
    
    def test_persisted_across_instances(self, temp_dir):
        """Test committed offsets survive a restart."""
        path = temp_dir / "offsets.json"
        tp = TopicPartition("post.liked", 2)
        
        OffsetStore(path).commit("search", tp, 17)
        
        assert OffsetStore(path).committed("search", tp) == 17
        assert not path.with_suffix(".tmp").exists()
