from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from tempchat.database import storage_call
from tempchat.exceptions import NotFoundError, UnknownIdentityError
from tempchat.models.message import Message
from tempchat.models.room import Room
from tempchat.models.user import User
from tempchat.schemas.message import MessageView
from tempchat.schemas.room import RoomSummary
from tempchat.schemas.user import UserResponse

class MessageRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    @storage_call
    async def send(
        self,
        content: str,
        room_id: int,
        sender_id: int,
        timestamp: Optional[datetime] = None,
    ) -> MessageView:
        """Persist a message and return it resolved for broadcasting.

        Nothing is returned unless the insert committed, so callers only fan
        out messages that are stored.
        """
        room = await self.db.get(Room, room_id)
        if room is None:
            raise NotFoundError("Room not found")

        sender = await self.db.get(User, sender_id)
        if sender is None:
            raise UnknownIdentityError("User not found")

        message = Message(room_id=room_id, sender_id=sender_id, content=content)
        if timestamp is not None:
            message.timestamp = timestamp
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)

        return self._to_view(message, room, sender)

    @storage_call
    async def get_room_messages(
        self,
        room_id: int,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[MessageView]:
        """Messages of a room, oldest first."""
        query = (
            select(Message).options(
                joinedload(Message.sender),
                joinedload(Message.room),
            ).where(Message.room_id == room_id)
            .order_by(Message.timestamp.asc(), Message.id.asc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return [
            self._to_view(message, message.room, message.sender)
            for message in result.scalars().all()
        ]

    @staticmethod
    def _to_view(message: Message, room: Room, sender: User) -> MessageView:
        return MessageView(
            id=message.id,
            content=message.content,
            timestamp=message.timestamp,
            room=RoomSummary(id=room.id, room_name=room.name),
            sender=UserResponse.model_validate(sender),
        )
