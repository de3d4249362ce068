"""
Bounded calls for slow downstreams.

A call that exceeds its timeout keeps running in its worker thread but the
caller stops waiting for it.
"""

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, TypeVar

T = TypeVar('T')


class OperationTimeoutError(Exception):
    """Raised when a bounded call does not finish in time."""
    pass


def call_with_timeout(
    executor: ThreadPoolExecutor,
    operation: Callable[[], T],
    timeout_ms: int,
    operation_name: str = "operation",
) -> T:
    """
    Run operation on executor and wait at most timeout_ms for its result.
    
    Args:
        executor: Executor that runs the operation
        operation: Callable to execute
        timeout_ms: Maximum wait in milliseconds (<= 0 runs inline)
        operation_name: Name used in the timeout message
    
    Returns:
        Result from operation
    
    Raises:
        OperationTimeoutError: If the operation did not finish in time
    """
    if timeout_ms <= 0:
        return operation()
    
    future = executor.submit(operation)
    try:
        return future.result(timeout=timeout_ms / 1000.0)
    except FutureTimeoutError:
        future.cancel()
        raise OperationTimeoutError(
            f"{operation_name} timed out after {timeout_ms}ms"
        )
