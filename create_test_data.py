#!/usr/bin/env python3

import asyncio
import sys
import os

sys.path.append(os.path.dirname(os.path.abspath(__file__)))

from tempchat.auth import get_password_hash
from tempchat.database import create_tables, AsyncSessionLocal
from tempchat.exceptions import AlreadyExistsError
from tempchat.logging_config import setup_logging, get_logger
from tempchat.repositories.user_repository import UserRepository
from tempchat.repositories.room_repository import RoomRepository
from tempchat.repositories.message_repository import MessageRepository

logger = get_logger("create_test_data")

USERS = ["alice", "bob", "charlie", "diana"]
PASSWORD = "password123"
ROOM_NAME = "alpha"
ROOM_PASSWORD = "pw1"

async def create_test_users():
    async with AsyncSessionLocal() as db:
        user_repo = UserRepository(db)
        
        users = []
        for username in USERS:
            existing_user = await user_repo.get_by_username(username)
            if existing_user:
                users.append(existing_user)
                logger.info("User %s exists (ID: %s)", username, existing_user.id)
                continue

            user = await user_repo.create(username, await get_password_hash(PASSWORD))
            users.append(user)
            logger.info("Created user: %s (ID: %s)", user.username, user.id)
        
        return users

async def create_test_room(users):
    async with AsyncSessionLocal() as db:
        room_repo = RoomRepository(db)

        try:
            room_id = await room_repo.create(ROOM_NAME, ROOM_PASSWORD, users[0].id)
            logger.info("Created room %r (ID: %s)", ROOM_NAME, room_id)
        except AlreadyExistsError:
            logger.info("Room %r already exists", ROOM_NAME)

        for user in users[1:]:
            view = await room_repo.join(ROOM_NAME, ROOM_PASSWORD, user.id)
        logger.info("Room %r members: %s", ROOM_NAME, [member.username for member in view.members])
        return view

async def create_test_messages(users, room):
    async with AsyncSessionLocal() as db:
        message_repo = MessageRepository(db)
        
        messages_data = [
            (users[0], "Welcome to alpha!"),
            (users[1], "Thanks for the invite"),
            (users[2], "Hey everyone! Glad to be here"),
            (users[3], "Let's discuss the work plan"),
            (users[0], "Great idea! Let's start with defining tasks"),
        ]
        
        created_messages = []
        for sender, text in messages_data:
            message = await message_repo.send(text, room.id, sender.id)
            created_messages.append(message)
            logger.info("Created message from %s in %r: %r", sender.username, room.room_name, text[:30])
        
        return created_messages

async def main():
    setup_logging()
    logger.info("Creating test data for TempChat")
    
    try:
        await create_tables()
        users = await create_test_users()
        room = await create_test_room(users)
        messages = await create_test_messages(users, room)
    except Exception:
        logger.exception("Error creating test data")
        sys.exit(1)

    logger.info("Created/found %s users, room %r (ID: %s), %s messages", len(users), room.room_name, room.id, len(messages))
    logger.info("Users log in with password %r, room password is %r", PASSWORD, ROOM_PASSWORD)

if __name__ == "__main__":
    asyncio.run(main())
