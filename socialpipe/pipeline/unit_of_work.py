"""
Unit of work with after-commit hooks.

A unit of work wraps one store-of-record transaction. Callbacks registered
with on_commit run only after the transaction has committed, in registration
order; on rollback they are discarded.
"""

import contextvars
from enum import Enum
from typing import Any, Callable, List, Optional

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

_current: contextvars.ContextVar[Optional["UnitOfWork"]] = contextvars.ContextVar(
    "socialpipe_unit_of_work", default=None
)


class UnitOfWorkState(Enum):
    """
    Unit of work lifecycle states.
    
    State transitions:
    ACTIVE → COMMITTED
           ↘ ROLLED_BACK
    """
    
    ACTIVE = "ACTIVE"
    COMMITTED = "COMMITTED"
    ROLLED_BACK = "ROLLED_BACK"
    
    def is_terminal(self) -> bool:
        """Check if state is terminal (done)."""
        return self in (UnitOfWorkState.COMMITTED, UnitOfWorkState.ROLLED_BACK)
    
    def can_transition_to(self, new_state: "UnitOfWorkState") -> bool:
        valid_transitions = {
            UnitOfWorkState.ACTIVE: {
                UnitOfWorkState.COMMITTED,
                UnitOfWorkState.ROLLED_BACK,
            },
            UnitOfWorkState.COMMITTED: set(),
            UnitOfWorkState.ROLLED_BACK: set(),
        }
        return new_state in valid_transitions.get(self, set())


class UnitOfWorkStateError(Exception):
    """Raised on an operation the current state does not allow."""
    pass


class UnitOfWork:
    """
    One transaction plus the callbacks to run once it commits.
    
    Example:
        >>> with UnitOfWork(db.begin()) as uow:
        ...     uow.transaction.insert(...)
        ...     uow.on_commit(lambda: print("committed"))
    """
    
    def __init__(self, transaction: Any = None):
        """
        Initialize unit of work.
        
        Args:
            transaction: Object with commit() and rollback(), or None for a
                unit with no backing transaction
        """
        self.transaction = transaction
        self.state = UnitOfWorkState.ACTIVE
        self._callbacks: List[Callable[[], None]] = []
        self._token: Optional[contextvars.Token] = None
    
    @property
    def is_active(self) -> bool:
        return self.state == UnitOfWorkState.ACTIVE
    
    def on_commit(self, callback: Callable[[], None]) -> None:
        """
        Register a callback to run after a successful commit.
        
        Raises:
            UnitOfWorkStateError: If the unit is no longer active
        """
        if not self.is_active:
            raise UnitOfWorkStateError(
                f"Cannot register after-commit callback in state {self.state.value}"
            )
        self._callbacks.append(callback)
    
    def _transition(self, new_state: UnitOfWorkState) -> None:
        if not self.state.can_transition_to(new_state):
            raise UnitOfWorkStateError(
                f"Invalid transition: {self.state.value} → {new_state.value}"
            )
        self.state = new_state
    
    def commit(self) -> None:
        """
        Commit the transaction, then run after-commit callbacks in order.
        
        A failing callback is logged and does not stop the ones after it.
        
        Raises:
            UnitOfWorkStateError: If the unit is not active
        """
        if not self.is_active:
            raise UnitOfWorkStateError(f"Cannot commit in state {self.state.value}")
        
        if self.transaction is not None:
            try:
                self.transaction.commit()
            except Exception:
                self.rollback()
                raise
        
        self._transition(UnitOfWorkState.COMMITTED)
        
        callbacks, self._callbacks = self._callbacks, []
        
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(
                    "After-commit callback failed",
                    callback=getattr(callback, "__name__", repr(callback)),
                    error=str(e),
                    exc_info=True,
                )
    
    def rollback(self) -> None:
        """Roll the transaction back and discard callbacks."""
        if self.state.is_terminal():
            return
        
        discarded = len(self._callbacks)
        self._callbacks = []
        
        try:
            if self.transaction is not None:
                self.transaction.rollback()
        finally:
            self._transition(UnitOfWorkState.ROLLED_BACK)
        
        if discarded:
            logger.debug("Discarded after-commit callbacks", count=discarded)
    
    def __enter__(self) -> "UnitOfWork":
        self._token = _current.set(self)
        return self
    
    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if exc_type is not None:
                self.rollback()
            elif self.is_active:
                self.commit()
        finally:
            if self._token is not None:
                _current.reset(self._token)
                self._token = None


def current_unit_of_work() -> Optional[UnitOfWork]:
    """The unit of work active in this context, if any."""
    uow = _current.get()
    if uow is not None and uow.is_active:
        return uow
    return None
