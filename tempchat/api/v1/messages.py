from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tempchat.database import get_db
from tempchat.exceptions import MalformedIdentifierError, PersistenceError, parse_identifier
from tempchat.repositories.message_repository import MessageRepository
from tempchat.schemas.message import MessageView
from tempchat.auth import get_current_active_user
from tempchat.models.user import User

router = APIRouter()

@router.get("", response_model=List[MessageView])
async def get_room_messages(
    room_id: str = Query(..., alias="roomId"),
    limit: Optional[int] = Query(None, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Room history, oldest message first."""
    try:
        room_id = parse_identifier(room_id)
    except MalformedIdentifierError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Room ID format")

    try:
        return await MessageRepository(db).get_room_messages(room_id, limit, offset)
    except PersistenceError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal Server Error")
