import asyncio
import uuid
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from tempchat.logging_config import get_logger
from tempchat.models.user import User
from tempchat.presence import PresenceTracker

logger = get_logger(__name__)


class Connection:
    """One live WebSocket link. Its channel subscriptions are managed by ConnectionManager."""

    def __init__(self, websocket: WebSocket, user: Optional[User] = None):
        self.id = uuid.uuid4().hex
        self.websocket = websocket
        self.user = user
        self.channels: Set[str] = set()

    def __repr__(self):
        username = self.user.username if self.user is not None else None
        return f"<Connection {self.id} user={username!r}>"


class ConnectionManager:
    def __init__(self, presence: Optional[PresenceTracker] = None):
        self.active_connections: Dict[str, Connection] = {}
        self.channels: Dict[str, Set[str]] = {}
        self.presence = presence or PresenceTracker()

    async def connect(self, websocket: WebSocket, user: Optional[User] = None) -> Connection:
        await websocket.accept()
        connection = Connection(websocket, user)
        self.active_connections[connection.id] = connection
        logger.info("Connection opened: %r", connection)
        return connection

    async def disconnect(self, connection: Connection):
        """Tear a connection down; runs to completion even if presence cleanup fails."""
        username = None
        try:
            username = self.presence.unregister_by_connection(connection.id)
        except Exception:
            logger.exception("Presence cleanup failed for %r", connection)
        finally:
            self._drop(connection)
            logger.info("Connection closed: %r", connection)

        if username is not None:
            logger.info("User %s went offline", username)
            await self.broadcast("left", {
                "status": True,
                "user": username,
                "onlineUsers": self.presence.list_online(),
            })

    def _drop(self, connection: Connection):
        for channel in list(connection.channels):
            self.unsubscribe(connection, channel)
        self.active_connections.pop(connection.id, None)

    def subscribe(self, connection: Connection, channel: str):
        self.channels.setdefault(channel, set()).add(connection.id)
        connection.channels.add(channel)

    def unsubscribe(self, connection: Connection, channel: str):
        members = self.channels.get(channel)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self.channels[channel]
        connection.channels.discard(channel)

    def channel_connections(self, channel: str) -> List[Connection]:
        return [
            self.active_connections[connection_id]
            for connection_id in sorted(self.channels.get(channel, ()))
            if connection_id in self.active_connections
        ]

    async def send(self, connection: Connection, event: str, data: Any):
        await self._deliver([connection], event, data)

    async def emit_to_channel(self, channel: str, event: str, data: Any, exclude: Optional[Connection] = None):
        targets = [
            connection for connection in self.channel_connections(channel)
            if exclude is None or connection.id != exclude.id
        ]
        await self._deliver(targets, event, data)

    async def broadcast(self, event: str, data: Any):
        await self._deliver(list(self.active_connections.values()), event, data)

    async def _deliver(self, targets: List[Connection], event: str, data: Any):
        if not targets:
            return

        message = {"type": event, "data": jsonable_encoder(data)}
        results = await asyncio.gather(
            *(connection.websocket.send_json(message) for connection in targets),
            return_exceptions=True,
        )
        for connection, result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("Dropping %r after failed send of %s: %s", connection, event, result)
                self._drop(connection)

    def get_online_users(self) -> List[str]:
        return self.presence.list_online()

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.active_connections

manager = ConnectionManager()
