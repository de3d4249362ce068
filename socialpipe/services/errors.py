"""
Request-level errors raised by services.
"""


class ServiceError(Exception):
    """Base class for service errors."""
    pass


class NotFoundError(ServiceError):
    """Raised when a requested entity does not exist."""
    pass


class PermissionDeniedError(ServiceError):
    """Raised when the caller may not access or change an entity."""
    pass


class InvalidRequestError(ServiceError, ValueError):
    """Raised when request arguments are invalid."""
    pass
