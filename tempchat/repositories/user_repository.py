from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tempchat.database import storage_call
from tempchat.exceptions import AlreadyExistsError
from tempchat.models.user import User

class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    @storage_call
    async def create(self, username: str, hashed_password: str) -> User:
        """Insert a new identity; the username must be free."""
        db_user = User(username=username, hashed_password=hashed_password)
        self.db.add(db_user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise AlreadyExistsError("User already exists")
        await self.db.refresh(db_user)
        return db_user

    @storage_call
    async def get_by_username(self, username: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.username == username))
        return result.scalar_one_or_none()

    @storage_call
    async def exists(self, user_id: int) -> bool:
        result = await self.db.execute(select(User.id).where(User.id == user_id))
        return result.scalar_one_or_none() is not None
