"""
Request-scoped context.

Services receive the authenticated caller explicitly instead of looking it up
in global state.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RequestContext:
    """
    The authenticated caller of a request.
    
    Attributes:
        user_id: Authenticated user id
    """
    user_id: int
    
    def __post_init__(self) -> None:
        if self.user_id <= 0:
            raise ValueError(f"Invalid user id: {self.user_id}")
