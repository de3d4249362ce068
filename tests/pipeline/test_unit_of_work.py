"""Tests for the unit of work."""

from unittest.mock import MagicMock

import pytest

from socialpipe.pipeline.unit_of_work import (
    UnitOfWork,
    UnitOfWorkState,
    UnitOfWorkStateError,
    current_unit_of_work,
)


class TestUnitOfWorkState:
    """Test state transitions."""
    
    def test_valid_transitions(self):
        """Test ACTIVE can only move to terminal states."""
        assert UnitOfWorkState.ACTIVE.can_transition_to(UnitOfWorkState.COMMITTED)
        assert UnitOfWorkState.ACTIVE.can_transition_to(UnitOfWorkState.ROLLED_BACK)
        assert not UnitOfWorkState.COMMITTED.can_transition_to(UnitOfWorkState.ROLLED_BACK)
    
    def test_terminal(self):
        """Test terminal states."""
        assert not UnitOfWorkState.ACTIVE.is_terminal()
        assert UnitOfWorkState.COMMITTED.is_terminal()
        assert UnitOfWorkState.ROLLED_BACK.is_terminal()


class TestUnitOfWork:
    """Test UnitOfWork."""
    
    def test_callbacks_run_after_commit_in_order(self):
        """Test callbacks run once the transaction committed, in order."""
        transaction = MagicMock()
        calls = []
        uow = UnitOfWork(transaction)
        
        uow.on_commit(lambda: calls.append(("first", transaction.commit.called)))
        uow.on_commit(lambda: calls.append(("second", transaction.commit.called)))
        
        assert calls == []
        uow.commit()
        
        assert calls == [("first", True), ("second", True)]
        assert uow.state == UnitOfWorkState.COMMITTED
    
    def test_rollback_discards_callbacks(self):
        """Test callbacks never run for a rolled-back unit."""
        callback = MagicMock()
        uow = UnitOfWork(MagicMock())
        uow.on_commit(callback)
        
        uow.rollback()
        
        callback.assert_not_called()
        assert uow.state == UnitOfWorkState.ROLLED_BACK
    
    def test_failed_commit_rolls_back(self):
        """Test a commit failure discards callbacks and propagates."""
        transaction = MagicMock()
        transaction.commit.side_effect = RuntimeError("constraint violated")
        callback = MagicMock()
        uow = UnitOfWork(transaction)
        uow.on_commit(callback)
        
        with pytest.raises(RuntimeError):
            uow.commit()
        
        callback.assert_not_called()
        transaction.rollback.assert_called_once()
        assert uow.state == UnitOfWorkState.ROLLED_BACK
    
    def test_failing_callback_does_not_stop_others(self):
        """Test callbacks are isolated from each other."""
        after = MagicMock()
        uow = UnitOfWork()
        uow.on_commit(MagicMock(side_effect=RuntimeError("boom")))
        uow.on_commit(after)
        
        uow.commit()
        
        after.assert_called_once()
    
    def test_on_commit_after_finish_raises(self):
        """Test registering on a finished unit is an error."""
        uow = UnitOfWork()
        uow.commit()
        
        with pytest.raises(UnitOfWorkStateError):
            uow.on_commit(lambda: None)
    
    def test_context_manager_commits(self):
        """Test a clean exit commits."""
        transaction = MagicMock()
        
        with UnitOfWork(transaction) as uow:
            assert current_unit_of_work() is uow
        
        transaction.commit.assert_called_once()
        assert current_unit_of_work() is None
    
    def test_context_manager_rolls_back_on_error(self):
        """Test an exception inside the block rolls back."""
        transaction = MagicMock()
        callback = MagicMock()
        
        with pytest.raises(ValueError):
            with UnitOfWork(transaction) as uow:
                uow.on_commit(callback)
                raise ValueError("bad request")
        
        transaction.rollback.assert_called_once()
        transaction.commit.assert_not_called()
        callback.assert_not_called()
        assert current_unit_of_work() is None
