from sqlalchemy import Column, String
from sqlalchemy.orm import relationship
from .base import BaseModel

class Room(BaseModel):
    __tablename__ = "rooms"
    # Deleted room ids are never reused
    __table_args__ = {"sqlite_autoincrement": True}

    # Unique constraint is what makes concurrent creates of one name safe
    name = Column(String(100), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    
    members = relationship("RoomMember", back_populates="room", order_by="RoomMember.id")
    admins = relationship("RoomAdmin", back_populates="room")
    messages = relationship("Message", back_populates="room")
