from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

from tempchat.schemas.user import UserResponse

class RoomSummary(BaseModel):
    id: int
    room_name: str = Field(serialization_alias="roomName")

class RoomResponse(BaseModel):
    id: int
    room_name: str = Field(serialization_alias="roomName")
    member_ids: List[int]
    admin_ids: List[int]
    created_at: datetime

class RoomMembersView(RoomSummary):
    """Room with its members resolved to identity records, in join order."""
    members: List[UserResponse]

class StatusResponse(BaseModel):
    status: bool
    message: str
