"""
Retry policy and failure classification for event handlers.
"""

from dataclasses import dataclass
from enum import Enum

from socialpipe.events.payloads import MalformedEventError


class RetryableError(Exception):
    """Exception that should trigger retry."""
    pass


class NonRetryableError(Exception):
    """Exception that should not be retried."""
    pass


class MissingEntityError(Exception):
    """
    Raised when an event references an entity that no longer exists.
    
    The event is acknowledged and skipped, never retried.
    """
    pass


class FailureAction(Enum):
    """What the router does with a failed event."""
    
    RETRY = "RETRY"
    DEAD_LETTER = "DEAD_LETTER"
    SKIP = "SKIP"


NON_RETRYABLE_ERRORS = (
    MalformedEventError,
    NonRetryableError,
    ValueError,
    TypeError,
    KeyError,
)


@dataclass
class RetryPolicy:
    """
    Fixed-backoff retry policy.
    
    Attributes:
        max_attempts: Total handler invocations before dead-lettering
        backoff_ms: Delay between attempts
    """
    max_attempts: int = 3
    backoff_ms: int = 2000
    
    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_ms < 0:
            raise ValueError("backoff_ms must be non-negative")
    
    def classify(self, error: BaseException, attempts: int) -> FailureAction:
        """
        Decide what to do after a failed attempt.
        
        Args:
            error: Exception raised by the handler
            attempts: Attempts made so far, including the failed one
        
        Returns:
            Action for the router
        """
        if isinstance(error, MissingEntityError):
            return FailureAction.SKIP
        
        if isinstance(error, RetryableError):
            return FailureAction.RETRY if attempts < self.max_attempts else FailureAction.DEAD_LETTER
        
        if isinstance(error, NON_RETRYABLE_ERRORS):
            return FailureAction.DEAD_LETTER
        
        if attempts < self.max_attempts:
            return FailureAction.RETRY
        
        return FailureAction.DEAD_LETTER
