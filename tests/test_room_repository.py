import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

import bcrypt
import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tempchat.config import settings
from tempchat.exceptions import (
    AlreadyExistsError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    UnknownIdentityError,
)
from tempchat.models.message import Message
from tempchat.models.room import Room
from tempchat.repositories.message_repository import MessageRepository
from tempchat.repositories.room_repository import RoomRepository


def member_names(view):
    return [member.username for member in view.members]


class TestCreateRoom:

    async def test_create_makes_owner_member_and_admin(self, db, make_user):
        owner = await make_user("owner")
        repo = RoomRepository(db)

        room_id = await repo.create("alpha", "pw1", owner.id)

        view = await repo.get_members_view(room_id)
        assert view.room_name == "alpha"
        assert member_names(view) == ["owner"]
        assert await repo.is_admin(room_id, owner.id)

    async def test_password_is_stored_hashed(self, db, make_user):
        owner = await make_user("owner")
        repo = RoomRepository(db)

        await repo.create("alpha", "pw1", owner.id)

        room = await repo.get_by_name("alpha")
        assert room.hashed_password != "pw1"

    async def test_duplicate_name_is_rejected(self, db, make_user):
        owner = await make_user("owner")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)

        with pytest.raises(AlreadyExistsError):
            await repo.create("alpha", "other", owner.id)

        count = await db.scalar(select(func.count(Room.id)).where(Room.name == "alpha"))
        assert count == 1

    async def test_concurrent_creates_yield_one_room(self, session_factory, make_user):
        owner = await make_user("owner")

        async def create(password):
            async with session_factory() as session:
                return await RoomRepository(session).create("race", password, owner.id)

        results = await asyncio.gather(create("pw-a"), create("pw-b"), return_exceptions=True)

        created = [r for r in results if isinstance(r, int)]
        rejected = [r for r in results if isinstance(r, AlreadyExistsError)]
        assert len(created) == 1
        assert len(rejected) == 1

        async with session_factory() as session:
            count = await session.scalar(select(func.count(Room.id)).where(Room.name == "race"))
        assert count == 1


class TestJoinRoom:

    async def test_join_adds_member_in_join_order(self, db, make_user):
        owner = await make_user("u1")
        guest = await make_user("u2")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)

        view = await repo.join("alpha", "pw1", guest.id)

        assert member_names(view) == ["u1", "u2"]

    async def test_join_is_idempotent(self, db, make_user):
        owner = await make_user("u1")
        guest = await make_user("u2")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)

        await repo.join("alpha", "pw1", guest.id)
        view = await repo.join("alpha", "pw1", guest.id)

        assert member_names(view) == ["u1", "u2"]

    async def test_unknown_room(self, db, make_user):
        user = await make_user("u1")

        with pytest.raises(NotFoundError):
            await RoomRepository(db).join("nope", "pw1", user.id)

    async def test_wrong_password_leaves_members_unchanged(self, db, make_user):
        owner = await make_user("u1")
        guest = await make_user("u2")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", owner.id)

        with pytest.raises(UnauthorizedError):
            await repo.join("alpha", "wrong", guest.id)

        assert member_names(await repo.get_members_view(room_id)) == ["u1"]

    async def test_unknown_identity(self, db, make_user):
        owner = await make_user("u1")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)

        with pytest.raises(UnknownIdentityError):
            await repo.join("alpha", "pw1", 9999)

    async def test_password_checked_before_identity(self, db, make_user):
        owner = await make_user("u1")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)

        with pytest.raises(UnauthorizedError):
            await repo.join("alpha", "wrong", 9999)

    async def test_concurrent_joins_keep_single_membership(self, session_factory, make_user):
        owner = await make_user("u1")
        guest = await make_user("u2")
        async with session_factory() as session:
            room_id = await RoomRepository(session).create("alpha", "pw1", owner.id)

        async def join():
            async with session_factory() as session:
                return await RoomRepository(session).join("alpha", "pw1", guest.id)

        await asyncio.gather(join(), join(), join())

        async with session_factory() as session:
            view = await RoomRepository(session).get_members_view(room_id)
        assert member_names(view) == ["u1", "u2"]


class TestLeaveRoom:

    async def test_leave_then_join_restores_membership(self, db, make_user):
        owner = await make_user("u1")
        guest = await make_user("u2")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", owner.id)
        await repo.join("alpha", "pw1", guest.id)

        assert await repo.leave(room_id, guest.id) is True
        assert member_names(await repo.get_members_view(room_id)) == ["u1"]

        view = await repo.join("alpha", "pw1", guest.id)
        assert member_names(view) == ["u1", "u2"]

    async def test_leave_non_member_is_noop(self, db, make_user):
        owner = await make_user("u1")
        stranger = await make_user("u2")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", owner.id)

        assert await repo.leave(room_id, stranger.id) is False
        assert member_names(await repo.get_members_view(room_id)) == ["u1"]

    async def test_last_member_leaving_keeps_room(self, db, make_user):
        owner = await make_user("u1")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", owner.id)

        await repo.leave(room_id, owner.id)

        assert await repo.exists(room_id)
        assert (await repo.get_members_view(room_id)).members == []

    async def test_leave_unknown_room(self, db, make_user):
        user = await make_user("u1")

        with pytest.raises(NotFoundError):
            await RoomRepository(db).leave(4242, user.id)


class TestDeleteRoom:

    async def test_delete_cascades_only_its_messages(self, db, make_user):
        owner = await make_user("u1")
        rooms = RoomRepository(db)
        messages = MessageRepository(db)
        alpha = await rooms.create("alpha", "pw1", owner.id)
        beta = await rooms.create("beta", "pw2", owner.id)
        for text in ("one", "two", "three"):
            await messages.send(text, alpha, owner.id)
        await messages.send("kept", beta, owner.id)

        removed = await rooms.delete(alpha)

        assert removed == 3
        assert not await rooms.exists(alpha)
        remaining = [tuple(row) for row in (await db.execute(select(Message.content, Message.room_id))).all()]
        assert remaining == [("kept", beta)]

    async def test_delete_unknown_room(self, db):
        with pytest.raises(NotFoundError):
            await RoomRepository(db).delete(4242)

    async def test_deleted_name_can_be_reused(self, db, make_user):
        owner = await make_user("u1")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", owner.id)
        await repo.delete(room_id)

        new_id = await repo.create("alpha", "pw1", owner.id)

        assert (await repo.get_by_name("alpha")).id == new_id
        assert new_id != room_id
        assert not await repo.exists(room_id)


class TestListForUser:

    async def test_lists_rooms_containing_user(self, db, make_user):
        u1 = await make_user("u1")
        u2 = await make_user("u2")
        repo = RoomRepository(db)
        alpha = await repo.create("alpha", "pw", u1.id)
        beta = await repo.create("beta", "pw", u2.id)
        await repo.create("gamma", "pw", u2.id)
        await repo.join("beta", "pw", u1.id)

        rooms = await repo.list_for_user(u1.id)

        assert [room.id for room in rooms] == [alpha, beta]

    async def test_user_without_rooms(self, db, make_user):
        user = await make_user("u1")

        assert await RoomRepository(db).list_for_user(user.id) == []


class TestAlphaScenario:

    async def test_membership_grows_only_on_successful_joins(self, db, make_user):
        u1 = await make_user("U1")
        u2 = await make_user("U2")
        repo = RoomRepository(db)
        room_id = await repo.create("alpha", "pw1", u1.id)

        view = await repo.join("alpha", "pw1", u1.id)
        assert member_names(view) == ["U1"]

        with pytest.raises(UnauthorizedError):
            await repo.join("alpha", "bad", u2.id)
        assert member_names(await repo.get_members_view(room_id)) == ["U1"]

        view = await repo.join("alpha", "pw1", u2.id)
        assert member_names(view) == ["U1", "U2"]


class TestStorageFailures:

    async def test_slow_storage_call_times_out(self, monkeypatch):
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.05)

        async def hang(*args, **kwargs):
            await asyncio.sleep(1)

        session = MagicMock()
        session.execute = hang
        session.rollback = AsyncMock()

        with pytest.raises(PersistenceError):
            await RoomRepository(session).get_by_name("alpha")
        session.rollback.assert_awaited()

    async def test_driver_error_becomes_persistence_error(self):
        session = MagicMock()
        session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("db down")))
        session.rollback = AsyncMock()

        with pytest.raises(PersistenceError):
            await RoomRepository(session).exists(1)


class TestPasswordHashing:

    @staticmethod
    async def _max_loop_stall(work):
        """Run ``work`` next to a 10ms ticker and return its result and the longest tick gap."""
        loop = asyncio.get_running_loop()
        gaps = []
        done = asyncio.Event()

        async def tick():
            last = loop.time()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        ticker = asyncio.create_task(tick())
        try:
            result = await work
        finally:
            done.set()
            await ticker
        return result, max(gaps, default=0)

    async def test_slow_hash_does_not_stall_loop_or_hit_storage_timeout(self, db, make_user, monkeypatch):
        owner = await make_user("owner")
        real_hashpw = bcrypt.hashpw

        def slow_hashpw(password, salt):
            time.sleep(0.5)
            return real_hashpw(password, salt)

        monkeypatch.setattr(bcrypt, "hashpw", slow_hashpw)
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.2)

        room_id, stall = await self._max_loop_stall(RoomRepository(db).create("alpha", "pw1", owner.id))

        assert await RoomRepository(db).exists(room_id)
        assert stall < 0.2

    async def test_slow_password_check_does_not_stall_loop(self, db, make_user, monkeypatch):
        owner = await make_user("u1")
        guest = await make_user("u2")
        repo = RoomRepository(db)
        await repo.create("alpha", "pw1", owner.id)
        real_checkpw = bcrypt.checkpw

        def slow_checkpw(password, hashed):
            time.sleep(0.5)
            return real_checkpw(password, hashed)

        monkeypatch.setattr(bcrypt, "checkpw", slow_checkpw)
        monkeypatch.setattr(settings, "STORAGE_TIMEOUT_SECONDS", 0.2)

        view, stall = await self._max_loop_stall(repo.join("alpha", "pw1", guest.id))

        assert member_names(view) == ["u1", "u2"]
        assert stall < 0.2
