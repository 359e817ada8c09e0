from pydantic import BaseModel
from datetime import datetime

from tempchat.schemas.room import RoomSummary
from tempchat.schemas.user import UserResponse

class MessageView(BaseModel):
    """Stored message resolved for display and fan-out.

    ``room.room_name`` is the channel the message is broadcast on.
    """
    id: int
    content: str
    timestamp: datetime
    room: RoomSummary
    sender: UserResponse
