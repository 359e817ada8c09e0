from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from tempchat.database import get_db
from tempchat.exceptions import MalformedIdentifierError, NotFoundError, PersistenceError, parse_identifier
from tempchat.repositories.room_repository import RoomRepository
from tempchat.schemas.room import RoomResponse, StatusResponse
from tempchat.auth import get_current_active_user
from tempchat.models.room import Room
from tempchat.models.user import User

router = APIRouter()

def _parse(value: str, label: str) -> int:
    try:
        return parse_identifier(value)
    except MalformedIdentifierError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid {label} ID format")

def _to_response(room: Room) -> dict:
    return {
        "id": room.id,
        "room_name": room.name,
        "member_ids": [member.user_id for member in room.members],
        "admin_ids": [admin.user_id for admin in room.admins],
        "created_at": room.created_at,
    }

@router.get("/user/{user_id}", response_model=List[RoomResponse])
async def get_user_rooms(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Rooms the given user is a member of."""
    user_id = _parse(user_id, "User")
    try:
        rooms = await RoomRepository(db).list_for_user(user_id)
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")
    return [_to_response(room) for room in rooms]

@router.delete("/{room_id}", response_model=StatusResponse)
async def delete_room(
    room_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Delete a room and all of its messages (room admins only)."""
    room_id = _parse(room_id, "Room")
    room_repo = RoomRepository(db)

    try:
        if not await room_repo.exists(room_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not Found")

        if not await room_repo.is_admin(room_id, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only room admins can delete the room"
            )

        await room_repo.delete(room_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not Found")
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")

    return {"status": True, "message": "Room deleted successfully"}

@router.delete("/{room_id}/members/{user_id}", response_model=StatusResponse)
async def remove_member_from_room(
    room_id: str,
    user_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Remove a member from a room (admins may remove anyone, members only themselves)."""
    room_id = _parse(room_id, "Room")
    user_id = _parse(user_id, "User")
    room_repo = RoomRepository(db)

    try:
        if not await room_repo.exists(room_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not Found")

        if user_id != current_user.id and not await room_repo.is_admin(room_id, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not allowed to remove this member"
            )

        await room_repo.leave(room_id, user_id)
    except NotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not Found")
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")

    return {"status": True, "message": "Left the room successfully"}
