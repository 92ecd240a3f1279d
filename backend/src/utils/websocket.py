"""
Realtime hub for instant in-app notification push.

Tracks live WebSocket connections per user and broadcasts events to them.
Delivery through the hub is best-effort and never persisted: the durable
notification queue remains the source of truth for eventual delivery.

The in-process ConnectionManager only knows the connections of its own
process. Deployments running several API instances can provide another
RealtimeHub implementation (e.g. backed by a pub/sub broker) without changing
callers.

Usage:
    from backend.src.utils.websocket import ConnectionManager

    # Created once in the application lifespan
    hub = ConnectionManager()

    # In the WebSocket endpoint
    await hub.connect(user_id, websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        hub.disconnect(user_id, websocket)

    # From the notification service
    delivered = await hub.emit_to_user(user_id, "notification:created", {...})
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from backend.src.utils.logging_config import get_logger

logger = get_logger("websocket")


class RealtimeHub(ABC):
    """
    Interface for pushing events to a user's live connections.

    The WebSocket endpoint only talks to this interface, so a broker-backed
    implementation can replace ConnectionManager on app.state.
    """

    @abstractmethod
    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """Accept a WebSocket and start routing the user's events to it."""

    @abstractmethod
    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """Stop routing events to a WebSocket. Must not raise for unknown sockets."""

    @abstractmethod
    async def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Push an event to every live connection of a user.

        Args:
            user_id: Recipient user identifier
            event: Event name (e.g. "notification:created")
            payload: JSON-serializable event data

        Returns:
            True if at least one connection received the event
        """

    @abstractmethod
    def get_connection_count(self, user_id: Optional[str] = None) -> int:
        """Live connections held by this process, for one user or in total."""

    async def close_all(self) -> None:
        """Release every connection (called on application shutdown)."""


class ConnectionManager(RealtimeHub):
    """
    Process-local registry of WebSocket connections keyed by user.

    One user may hold many connections (several tabs or devices). Each
    message is sent as {"event": <name>, "data": <payload>}.
    """

    def __init__(self):
        """Initialize the connection manager with empty connection registry."""
        self._connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, websocket: WebSocket) -> None:
        """
        Accept and register a WebSocket connection for a user.

        Args:
            user_id: Identity supplied by the connecting layer
            websocket: WebSocket connection to register
        """
        await websocket.accept()
        await self.register_accepted(user_id, websocket)

    async def register_accepted(self, user_id: str, websocket: WebSocket) -> None:
        """
        Register an already-accepted WebSocket connection for a user.

        Args:
            user_id: Identity supplied by the connecting layer
            websocket: Already-accepted WebSocket connection
        """
        user_id = str(user_id)
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
            logger.debug(
                f"WebSocket registered for user {user_id}. "
                f"Total connections: {len(self._connections[user_id])}"
            )

    def disconnect(self, user_id: str, websocket: WebSocket) -> None:
        """
        Unregister a WebSocket connection.

        Synchronous so it can be called from exception handlers.

        Args:
            user_id: User the connection belonged to
            websocket: WebSocket connection to remove
        """
        user_id = str(user_id)
        if user_id not in self._connections:
            return

        self._connections[user_id].discard(websocket)
        logger.debug(
            f"WebSocket disconnected for user {user_id}. "
            f"Remaining connections: {len(self._connections[user_id])}"
        )
        if not self._connections[user_id]:
            del self._connections[user_id]

    async def emit_to_user(self, user_id: str, event: str, payload: Dict[str, Any]) -> bool:
        """
        Broadcast an event to all live connections of a user.

        Connections that fail to receive the message are dropped; the
        broadcast continues to the remaining ones.

        Returns:
            True if at least one connection received the event
        """
        user_id = str(user_id)
        connections = self._connections.get(user_id)
        if not connections:
            return False

        message = {"event": event, "data": payload}
        delivered = False
        disconnected: Set[WebSocket] = set()

        # Copy set to avoid modification during iteration
        for connection in connections.copy():
            try:
                await connection.send_json(message)
                delivered = True
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.add(connection)

        for conn in disconnected:
            self.disconnect(user_id, conn)

        return delivered

    def get_connection_count(self, user_id: Optional[str] = None) -> int:
        """
        Get the number of live connections.

        Args:
            user_id: Optional user to count connections for.
                     If None, returns total connections across all users.
        """
        if user_id is not None:
            return len(self._connections.get(str(user_id), set()))
        return sum(len(conns) for conns in self._connections.values())

    async def close_all(self) -> None:
        """Close every registered connection and clear the registry."""
        async with self._lock:
            connections = [
                (user_id, ws)
                for user_id, sockets in self._connections.items()
                for ws in sockets
            ]
            self._connections.clear()

        for user_id, websocket in connections:
            try:
                await websocket.close()
            except Exception as e:
                # Connection may already be closed
                logger.debug(f"Error closing WebSocket for user {user_id}: {e}")
        logger.debug(f"Closed {len(connections)} WebSocket connections")
