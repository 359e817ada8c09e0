import json
from typing import Any, Awaitable, Callable, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, HTTPException
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tempchat.auth import get_user_from_token
from tempchat.database import get_db
from tempchat.exceptions import (
    AlreadyExistsError,
    ChatError,
    NotFoundError,
    UnauthorizedError,
    UnknownIdentityError,
)
from tempchat.logging_config import get_logger
from tempchat.repositories.message_repository import MessageRepository
from tempchat.repositories.room_repository import RoomRepository
from tempchat.schemas.events import (
    CreateRoomEvent,
    JoinExistingRoomEvent,
    JoinRoomEvent,
    RoomAnnouncementEvent,
    SendMessageEvent,
)
from tempchat.websocket_manager import Connection, ConnectionManager, manager

logger = get_logger(__name__)

router = APIRouter()

EventHandler = Callable[[Connection, dict, AsyncSession, ConnectionManager], Awaitable[None]]


async def handle_create_room(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    event = CreateRoomEvent(**payload)
    try:
        room_id = await RoomRepository(db).create(event.room_name, event.password, event.user_id)
    except AlreadyExistsError:
        await manager.send(connection, "roomCreated", {"status": False, "error": "Room already exists"})
        return
    except ChatError:
        logger.exception("create_room failed for %r", event.room_name)
        await manager.send(connection, "roomCreated", {"status": False, "error": "Server error"})
        return

    manager.subscribe(connection, event.room_name)
    await manager.send(connection, "roomCreated", {"status": True, "roomId": room_id})


async def handle_join_room(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    event = JoinRoomEvent(**payload)
    try:
        room = await RoomRepository(db).join(event.room_name, event.password, event.user_id)
    except NotFoundError:
        await manager.send(connection, "err", {"message": "Room is not available"})
        return
    except UnauthorizedError:
        await manager.send(connection, "err", {"message": "Incorrect credentials"})
        return
    except UnknownIdentityError:
        await manager.send(connection, "err", {"message": "User not found"})
        return
    except ChatError:
        logger.exception("join_room failed for %r", event.room_name)
        await manager.send(connection, "err", {"message": "Server error during join"})
        return

    manager.subscribe(connection, room.room_name)
    await manager.send(connection, "members", room)
    await manager.send(connection, "roomjoined", {"status": True, "roomId": room.id})


async def handle_join_existing_room(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    # Re-entry trusts the already established session, the room password is not asked again
    event = JoinExistingRoomEvent(**payload)
    try:
        room = await RoomRepository(db).get_members_view(event.room_id)
    except NotFoundError:
        await manager.send(connection, "err", {"message": "Room not found"})
        return
    except ChatError:
        logger.exception("join_existing_room failed for room %s", event.room_id)
        await manager.send(connection, "err", {"message": "Server error during re-entry"})
        return

    manager.subscribe(connection, room.room_name)
    await manager.send(connection, "members", room)

    if manager.presence.register(event.username, connection.id):
        logger.info("User %s is online", event.username)
    await manager.broadcast("joined", {
        "status": True,
        "user": event.username,
        "onlineUsers": manager.presence.list_online(),
    })


async def handle_send_message(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    event = SendMessageEvent(**payload)
    try:
        message = await MessageRepository(db).send(event.content, event.room_id, event.sender_id)
    except ChatError as e:
        logger.warning("send_message to room %s rejected: %s", event.room_id, e.message)
        await manager.send(connection, "err", {"message": "Message could not be sent"})
        return

    await manager.emit_to_channel(message.room.room_name, "get_message", message)


async def handle_user_joined(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    event = RoomAnnouncementEvent(**payload)
    manager.subscribe(connection, event.channel)
    await manager.emit_to_channel(
        event.channel, "user-joined-announcement", {"userId": event.user_id}, exclude=connection
    )


async def handle_user_left(connection: Connection, payload: dict, db: AsyncSession, manager: ConnectionManager):
    event = RoomAnnouncementEvent(**payload)
    manager.unsubscribe(connection, event.channel)
    await manager.emit_to_channel(
        event.channel, "user-left-announcement", {"userId": event.user_id}, exclude=connection
    )


EVENT_HANDLERS: Dict[str, EventHandler] = {
    "create_room": handle_create_room,
    "join_room": handle_join_room,
    "join_existing_room": handle_join_existing_room,
    "send_message": handle_send_message,
    "user-joined": handle_user_joined,
    "user-left": handle_user_left,
}


async def dispatch_event(
    action: Any,
    payload: Any,
    connection: Connection,
    db: AsyncSession,
    manager: ConnectionManager = manager,
):
    handler = EVENT_HANDLERS.get(action) if isinstance(action, str) else None
    if handler is None:
        await manager.send(connection, "err", {"message": f"Unknown event: {action}"})
        return

    if not isinstance(payload, dict):
        await manager.send(connection, "err", {"message": "Invalid payload"})
        return

    try:
        await handler(connection, payload, db, manager)
    except ValidationError as e:
        logger.debug("Invalid %s payload from %r: %s", action, connection, e)
        await manager.send(connection, "err", {"message": "Invalid payload"})
    except Exception:
        logger.exception("Unhandled error in %s handler for %r", action, connection)
        await manager.send(connection, "err", {"message": "Server error"})


@router.websocket("/chat")
async def websocket_chat(websocket: WebSocket, token: str = None):
    if not token:
        await websocket.close(code=1008, reason="Token required")
        return

    async for db in get_db():
        try:
            user = await get_user_from_token(token, db)
        except (HTTPException, ChatError):
            await websocket.close(code=1008, reason="Invalid token")
            return
        break

    connection = await manager.connect(websocket, user)

    try:
        while True:
            data = await websocket.receive_text()

            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                await manager.send(connection, "err", {"message": "Invalid JSON format"})
                continue

            if not isinstance(message_data, dict):
                await manager.send(connection, "err", {"message": "Invalid JSON format"})
                continue

            async for db in get_db():
                await dispatch_event(
                    message_data.get("action"),
                    message_data.get("data", {}),
                    connection,
                    db,
                )
                break

    except WebSocketDisconnect:
        logger.debug("Client closed %r", connection)
    finally:
        await manager.disconnect(connection)

@router.get("/online-users")
async def get_online_users():
    online_users = manager.get_online_users()
    return {"online_users": online_users, "count": len(online_users)}
