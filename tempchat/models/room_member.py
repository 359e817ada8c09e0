from datetime import datetime

from sqlalchemy import Column, Integer, ForeignKey, DateTime, UniqueConstraint
from sqlalchemy.orm import relationship
from .base import BaseModel

class RoomMember(BaseModel):
    __tablename__ = "room_members"
    
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    joined_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    
    room = relationship("Room", back_populates="members")
    user = relationship("User", back_populates="room_memberships")
    
    # One membership row per user and room, joins stay idempotent under races
    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="unique_room_member"),
    )


class RoomAdmin(BaseModel):
    __tablename__ = "room_admins"

    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    room = relationship("Room", back_populates="admins")
    user = relationship("User")

    __table_args__ = (
        UniqueConstraint("room_id", "user_id", name="unique_room_admin"),
    )
