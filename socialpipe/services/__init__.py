"""Write and read paths that drive the pipeline."""

from socialpipe.services.context import RequestContext
from socialpipe.services.errors import (
    InvalidRequestError,
    NotFoundError,
    PermissionDeniedError,
    ServiceError,
)
from socialpipe.services.follows import FollowService
from socialpipe.services.messages import MessageService
from socialpipe.services.notifications import NotificationService
from socialpipe.services.posts import PostService
from socialpipe.services.users import UserService

__all__ = [
    "FollowService",
    "InvalidRequestError",
    "MessageService",
    "NotFoundError",
    "NotificationService",
    "PermissionDeniedError",
    "PostService",
    "RequestContext",
    "ServiceError",
    "UserService",
]
