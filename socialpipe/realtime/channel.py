"""
Real-time push channel.

Delivers an update to every live connection of a user. Delivery is "now or
never": a user without a live connection is a silent no-op, nothing is queued
or retried. Clients fetch history through the ordinary read APIs on
reconnect.
"""

import itertools
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List

from socialpipe.utils.logging import get_logger

logger = get_logger(__name__)

MESSAGES_DESTINATION = "/queue/messages"
NOTIFICATIONS_DESTINATION = "/queue/notifications"

Sink = Callable[[str, Dict[str, Any]], None]


@dataclass(frozen=True)
class ConnectionHandle:
    """
    A registered live connection.
    
    Attributes:
        user_id: Connected user
        connection_id: Process-unique connection number
    """
    user_id: int
    connection_id: int


class PushChannel:
    """
    Per-user addressable push channel.
    
    Transports (WebSocket sessions, SSE streams) register a sink per live
    connection; the sink receives (destination, payload).
    """
    
    def __init__(self):
        """Initialize push channel."""
        self._sinks: Dict[int, Dict[int, Sink]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        
        self._delivered = 0
        self._dropped_offline = 0
        self._failed = 0
    
    def connect(self, user_id: int, sink: Sink) -> ConnectionHandle:
        """
        Register a live connection for user_id.
        
        Args:
            user_id: Authenticated user of the connection
            sink: Callable receiving (destination, payload)
        
        Returns:
            Handle used to disconnect
        """
        with self._lock:
            handle = ConnectionHandle(user_id, next(self._ids))
            self._sinks.setdefault(user_id, {})[handle.connection_id] = sink
        
        logger.info("User connected", user_id=user_id, connection_id=handle.connection_id)
        
        return handle
    
    def disconnect(self, handle: ConnectionHandle) -> None:
        """Remove a live connection."""
        with self._lock:
            sinks = self._sinks.get(handle.user_id)
            if sinks is not None:
                sinks.pop(handle.connection_id, None)
                if not sinks:
                    del self._sinks[handle.user_id]
        
        logger.info(
            "User disconnected",
            user_id=handle.user_id,
            connection_id=handle.connection_id,
        )
    
    def is_connected(self, user_id: int) -> bool:
        with self._lock:
            return bool(self._sinks.get(user_id))
    
    def push_to_user(self, user_id: int, destination: str, payload: Dict[str, Any]) -> int:
        """
        Deliver payload to every live connection of user_id.
        
        Args:
            user_id: Recipient
            destination: Logical queue (e.g. /queue/messages)
            payload: DTO in the same shape as the matching read endpoint
        
        Returns:
            Number of connections the payload was delivered to (0 = offline)
        
        Raises:
            ConnectionError: If every live connection failed
        """
        with self._lock:
            sinks: List[Sink] = list(self._sinks.get(user_id, {}).values())
        
        if not sinks:
            with self._lock:
                self._dropped_offline += 1
            logger.debug("No live connection, dropping push", user_id=user_id, destination=destination)
            return 0
        
        delivered = 0
        last_error = None
        
        for sink in sinks:
            try:
                sink(destination, payload)
                delivered += 1
            except Exception as e:
                last_error = e
                logger.warning(
                    "Push to connection failed",
                    user_id=user_id,
                    destination=destination,
                    error=str(e),
                )
        
        with self._lock:
            self._delivered += delivered
            if delivered == 0:
                self._failed += 1
        
        if delivered == 0:
            raise ConnectionError(f"Push to user {user_id} failed: {last_error}")
        
        return delivered
    
    def metrics(self) -> dict:
        """Push counters."""
        with self._lock:
            return {
                "connected_users": len(self._sinks),
                "delivered": self._delivered,
                "dropped_offline": self._dropped_offline,
                "failed": self._failed,
            }
