from typing import Optional, List

from sqlalchemy import select, delete, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tempchat.auth import get_password_hash, verify_password
from tempchat.database import storage_call
from tempchat.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    UnknownIdentityError,
)
from tempchat.logging_config import get_logger
from tempchat.models.message import Message
from tempchat.models.room import Room
from tempchat.models.room_member import RoomMember, RoomAdmin
from tempchat.repositories.user_repository import UserRepository
from tempchat.schemas.room import RoomMembersView
from tempchat.schemas.user import UserResponse

logger = get_logger(__name__)

class RoomRepository:
    """Room directory: creation, lookup and membership changes."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, name: str, raw_password: str, owner_id: int) -> int:
        """Create a room owned by ``owner_id`` and return its id.

        The lookup is only a fast path; the unique constraint on the room name
        decides between two concurrent creates. Hashing happens between the
        timed storage calls.
        """
        if await self.get_by_name(name) is not None:
            raise AlreadyExistsError("Room already exists")

        hashed_password = await get_password_hash(raw_password)
        room_id = await self._insert(name, hashed_password, owner_id)

        logger.info("Room %r created by user %s (id=%s)", name, owner_id, room_id)
        return room_id

    @storage_call
    async def _insert(self, name: str, hashed_password: str, owner_id: int) -> int:
        room = Room(name=name, hashed_password=hashed_password)
        self.db.add(room)
        try:
            await self.db.flush()
            room_id = room.id
            self.db.add(RoomMember(room_id=room_id, user_id=owner_id))
            self.db.add(RoomAdmin(room_id=room_id, user_id=owner_id))
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if await self.get_by_name(name) is not None:
                raise AlreadyExistsError("Room already exists")
            raise PersistenceError("Room could not be created")
        return room_id

    async def join(self, name: str, raw_password: str, user_id: int) -> RoomMembersView:
        """Add ``user_id`` to the room after checking its password; idempotent."""
        room = await self.get_by_name(name)
        if room is None:
            raise NotFoundError("Room is not available")
        room_id = room.id

        if not await verify_password(raw_password, room.hashed_password):
            raise UnauthorizedError("Incorrect credentials")

        if not await UserRepository(self.db).exists(user_id):
            raise UnknownIdentityError("User not found")

        if await self._add_member(room_id, user_id):
            logger.info("User %s joined room %r", user_id, name)
        return await self.get_members_view(room_id)

    @storage_call
    async def _add_member(self, room_id: int, user_id: int) -> bool:
        if await self.is_member(room_id, user_id):
            return False

        self.db.add(RoomMember(room_id=room_id, user_id=user_id))
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent join inserted the same membership first
            await self.db.rollback()
            return False
        return True

    @storage_call
    async def leave(self, room_id: int, user_id: int) -> bool:
        """Remove a membership. Returns False when the user was not a member."""
        if not await self.exists(room_id):
            raise NotFoundError("Room not Found")

        result = await self.db.execute(
            delete(RoomMember).where(
                and_(RoomMember.room_id == room_id, RoomMember.user_id == user_id)
            )
        )
        await self.db.commit()
        return result.rowcount > 0

    @storage_call
    async def delete(self, room_id: int) -> int:
        """Delete a room together with its messages; returns the number of messages removed."""
        if not await self.exists(room_id):
            raise NotFoundError("Room not Found")

        deleted_messages = await self.db.execute(delete(Message).where(Message.room_id == room_id))
        await self.db.execute(delete(RoomMember).where(RoomMember.room_id == room_id))
        await self.db.execute(delete(RoomAdmin).where(RoomAdmin.room_id == room_id))
        await self.db.execute(delete(Room).where(Room.id == room_id))
        await self.db.commit()

        logger.info("Room %s deleted with %s messages", room_id, deleted_messages.rowcount)
        return deleted_messages.rowcount

    @storage_call
    async def list_for_user(self, user_id: int) -> List[Room]:
        result = await self.db.execute(
            select(Room).join(RoomMember).options(
                selectinload(Room.members),
                selectinload(Room.admins),
            ).where(RoomMember.user_id == user_id)
            .order_by(Room.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().unique().all())

    @storage_call
    async def get_members_view(self, room_id: int) -> RoomMembersView:
        result = await self.db.execute(
            select(Room).options(
                selectinload(Room.members).selectinload(RoomMember.user)
            ).where(Room.id == room_id)
            .execution_options(populate_existing=True)
        )
        room = result.scalar_one_or_none()
        if room is None:
            raise NotFoundError("Room not found")

        return RoomMembersView(
            id=room.id,
            room_name=room.name,
            members=[UserResponse.model_validate(member.user) for member in room.members],
        )

    @storage_call
    async def get_by_name(self, name: str) -> Optional[Room]:
        result = await self.db.execute(select(Room).where(Room.name == name))
        return result.scalar_one_or_none()

    @storage_call
    async def exists(self, room_id: int) -> bool:
        result = await self.db.execute(select(Room.id).where(Room.id == room_id))
        return result.scalar_one_or_none() is not None

    @storage_call
    async def is_member(self, room_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            select(RoomMember.id).where(
                and_(RoomMember.room_id == room_id, RoomMember.user_id == user_id)
            )
        )
        return result.scalar_one_or_none() is not None

    @storage_call
    async def is_admin(self, room_id: int, user_id: int) -> bool:
        result = await self.db.execute(
            select(RoomAdmin.id).where(
                and_(RoomAdmin.room_id == room_id, RoomAdmin.user_id == user_id)
            )
        )
        return result.scalar_one_or_none() is not None
