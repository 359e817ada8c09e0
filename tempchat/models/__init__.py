from .base import Base
from .user import User
from .room import Room
from .room_member import RoomMember, RoomAdmin
from .message import Message

__all__ = [
    "Base",
    "User", 
    "Room",
    "RoomMember",
    "RoomAdmin",
    "Message"
]
