"""Payloads of the inbound WebSocket events.

Field aliases are the names clients put on the wire.
"""
from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRoomEvent(EventPayload):
    room_name: str = Field(..., alias="roomname", min_length=1, max_length=100)
    password: str = Field(..., min_length=1)
    user_id: int = Field(..., alias="userid", gt=0)


class JoinRoomEvent(EventPayload):
    room_name: str = Field(..., alias="roomname", min_length=1)
    password: str
    user_id: int = Field(..., alias="userid", gt=0)


class JoinExistingRoomEvent(EventPayload):
    room_id: int = Field(..., alias="roomId", gt=0)
    username: str = Field(..., min_length=1)


class SendMessageEvent(EventPayload):
    content: str = Field(..., alias="message", min_length=1)
    room_id: int = Field(..., alias="roomid", gt=0)
    sender_id: int = Field(..., alias="id", gt=0)


class RoomAnnouncementEvent(EventPayload):
    """``user-joined`` / ``user-left``: the channel is any client chosen name."""
    channel: str = Field(..., alias="roomId", min_length=1)
    user_id: Union[int, str] = Field(..., alias="userId")

    @field_validator("channel", mode="before")
    @classmethod
    def _channel_as_str(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
