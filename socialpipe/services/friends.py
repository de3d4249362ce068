"""
Friend requests and friendships.

Friendship is its own relation, independent of the follow graph: an accepted
request writes one Friendship edge in each direction, keyed by
(user_id, friend_id). Requests and acceptances notify the other user through
notification.send after the writing transaction commits.
"""

from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

from socialpipe.events.payloads import now_ms
from socialpipe.pipeline.unit_of_work import UnitOfWork
from socialpipe.services.context import RequestContext
from socialpipe.services.errors import InvalidRequestError, NotFoundError, PermissionDeniedError
from socialpipe.services.notifications import NotificationService
from socialpipe.store.memory import InMemoryDatabase, IntegrityError
from socialpipe.store.models import (
    FriendRequest,
    FriendRequestStatus,
    Friendship,
    NotificationType,
    User,
    friend_request_to_dict,
)
from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)


class FriendService:
    """Send, answer and withdraw friend requests; read the friendship relation."""
    
    def __init__(
        self,
        db: InMemoryDatabase,
        notifications: NotificationService,
        clock: Callable[[], int] = now_ms,
    ):
        self.db = db
        self.notifications = notifications
        self.clock = clock
    
    def _user(self, user_id: int) -> User:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
    
    def _pending(self, request_id: int) -> FriendRequest:
        request = self.db.get_friend_request(request_id)
        if request is None:
            raise NotFoundError(f"Friend request {request_id} not found")
        if request.status is not FriendRequestStatus.PENDING:
            raise InvalidRequestError(
                f"Friend request {request_id} is already {request.status.value}"
            )
        return request
    
    def _to_dict(self, request: FriendRequest) -> Dict[str, Any]:
        users = self.db.users_by_id((request.sender_id, request.receiver_id))
        return friend_request_to_dict(
            request, users.get(request.sender_id), users.get(request.receiver_id)
        )
    
    def send_request(self, ctx: RequestContext, receiver_id: int) -> Dict[str, Any]:
        """
        Ask receiver_id to become friends.
        
        Raises:
            InvalidRequestError: On a self-request, when already friends, or
                when a request between the two users is already pending
            NotFoundError: If either user does not exist
        """
        if receiver_id == ctx.user_id:
            raise InvalidRequestError("Cannot send a friend request to yourself")
        
        sender = self._user(ctx.user_id)
        self._user(receiver_id)
        
        if self.are_friends(ctx.user_id, receiver_id):
            raise InvalidRequestError("Already friends")
        if self.db.pending_request_between(ctx.user_id, receiver_id) is not None:
            raise InvalidRequestError("Friend request already pending")
        
        try:
            with UnitOfWork(self.db.begin()) as uow:
                request = uow.transaction.insert(
                    FriendRequest(
                        sender_id=ctx.user_id,
                        receiver_id=receiver_id,
                        created_at=self.clock(),
                    )
                )
                self.notifications.send_notification(
                    receiver_id,
                    NotificationType.FRIEND_REQUEST,
                    title="New friend request",
                    message=f"{sender.username} sent you a friend request",
                    sender_id=ctx.user_id,
                    entity_id=request.id,
                    unit_of_work=uow,
                )
        except IntegrityError as e:
            raise InvalidRequestError("Friend request already pending") from e
        
        logger.info(
            "Friend request sent",
            request_id=request.id,
            sender_id=ctx.user_id,
            receiver_id=receiver_id,
        )
        
        return self._to_dict(request)
    
    def accept_request(self, ctx: RequestContext, request_id: int) -> Dict[str, Any]:
        """
        Accept a pending request addressed to the caller.
        
        Writes both friendship edges and notifies the sender with
        FRIEND_ACCEPT.
        
        Raises:
            NotFoundError: If the request does not exist
            PermissionDeniedError: If the caller is not the receiver
            InvalidRequestError: If the request is no longer pending
        """
        request = self._pending(request_id)
        if request.receiver_id != ctx.user_id:
            raise PermissionDeniedError("Only the receiver can accept a friend request")
        
        receiver = self._user(ctx.user_id)
        now = self.clock()
        accepted = replace(request, status=FriendRequestStatus.ACCEPTED, responded_at=now)
        
        try:
            with UnitOfWork(self.db.begin()) as uow:
                uow.transaction.update(accepted)
                uow.transaction.insert(Friendship(request.sender_id, request.receiver_id, now))
                uow.transaction.insert(Friendship(request.receiver_id, request.sender_id, now))
                self.notifications.send_notification(
                    request.sender_id,
                    NotificationType.FRIEND_ACCEPT,
                    title="Friend request accepted",
                    message=f"{receiver.username} accepted your friend request",
                    sender_id=ctx.user_id,
                    entity_id=request.id,
                    unit_of_work=uow,
                )
        except IntegrityError as e:
            raise InvalidRequestError("Already friends") from e
        
        logger.info(
            "Friend request accepted",
            request_id=request_id,
            sender_id=request.sender_id,
            receiver_id=request.receiver_id,
        )
        
        return self._to_dict(accepted)
    
    def reject_request(self, ctx: RequestContext, request_id: int) -> None:
        """
        Raises:
            PermissionDeniedError: If the caller is not the receiver
        """
        request = self._pending(request_id)
        if request.receiver_id != ctx.user_id:
            raise PermissionDeniedError("Only the receiver can reject a friend request")
        
        self._close(request, FriendRequestStatus.REJECTED)
    
    def cancel_request(self, ctx: RequestContext, request_id: int) -> None:
        """
        Raises:
            PermissionDeniedError: If the caller is not the sender
        """
        request = self._pending(request_id)
        if request.sender_id != ctx.user_id:
            raise PermissionDeniedError("Only the sender can cancel a friend request")
        
        self._close(request, FriendRequestStatus.CANCELLED)
    
    def _close(self, request: FriendRequest, status: FriendRequestStatus) -> None:
        with UnitOfWork(self.db.begin()) as uow:
            uow.transaction.update(
                replace(request, status=status, responded_at=self.clock())
            )
        
        logger.info("Friend request closed", request_id=request.id, status=status.value)
    
    def unfriend(self, ctx: RequestContext, friend_id: int) -> bool:
        """
        Remove both friendship edges.
        
        Returns:
            False if the two users were not friends
        """
        edges = [
            edge
            for edge in (
                self.db.get_friendship(ctx.user_id, friend_id),
                self.db.get_friendship(friend_id, ctx.user_id),
            )
            if edge is not None
        ]
        if not edges:
            return False
        
        with UnitOfWork(self.db.begin()) as uow:
            for edge in edges:
                uow.transaction.delete(edge)
        
        logger.info("Users unfriended", user_id=ctx.user_id, friend_id=friend_id)
        
        return True
    
    def are_friends(self, user_a: int, user_b: int) -> bool:
        return self.db.get_friendship(user_a, user_b) is not None
    
    def friends(self, user_id: int) -> List[int]:
        return self.db.friend_ids(user_id)
    
    def friend_count(self, user_id: int) -> int:
        return len(self.db.friend_ids(user_id))
    
    def mutual_friends(self, user_a: int, user_b: int) -> List[int]:
        return sorted(set(self.db.friend_ids(user_a)) & set(self.db.friend_ids(user_b)))
    
    def pending_received(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        return [self._to_dict(r) for r in self.db.friend_requests_received(ctx.user_id)]
    
    def pending_sent(self, ctx: RequestContext) -> List[Dict[str, Any]]:
        return [self._to_dict(r) for r in self.db.friend_requests_sent(ctx.user_id)]
    
    def pending_count(self, ctx: RequestContext) -> int:
        return len(self.db.friend_requests_received(ctx.user_id))
    
    def friendship_status(self, ctx: RequestContext, other_id: int) -> Dict[str, Any]:
        """Friendship and pending-request state between the caller and other_id."""
        pending: Optional[FriendRequest] = self.db.pending_request_between(ctx.user_id, other_id)
        return {
            "isFriend": self.are_friends(ctx.user_id, other_id),
            "hasPendingRequest": pending is not None,
            "pendingRequestSentByMe": pending is not None and pending.sender_id == ctx.user_id,
            "friendRequestId": pending.id if pending is not None else None,
        }
