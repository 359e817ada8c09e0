"""
Shared fixtures: a throwaway SQLite database per test, identity factories and
in-memory stand-ins for WebSocket links.
"""
import os
import tempfile
from unittest.mock import AsyncMock

# Must be set before anything imports tempchat.config
_TEST_DIR = tempfile.mkdtemp(prefix="tempchat-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'app.db')}")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("COOKIE_SECURE", "False")
os.environ.setdefault("STORAGE_TIMEOUT_SECONDS", "10")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest
import pytest_asyncio

from tempchat.auth import get_password_hash
from tempchat.database import build_engine, build_sessionmaker, create_tables
from tempchat.repositories.user_repository import UserRepository
from tempchat.websocket_manager import ConnectionManager


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db):
    """Factory creating an identity with password ``secret``."""
    async def _make(username: str, password: str = "secret"):
        return await UserRepository(db).create(username, await get_password_hash(password))

    return _make


class FakeWebSocket:
    """Records every frame sent to it; ``fail=True`` makes sends raise like a dead socket."""

    def __init__(self, fail: bool = False):
        self.accept = AsyncMock()
        self.fail = fail
        self.sent = []

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(message)

    def events(self, event_type: str = None):
        return [message for message in self.sent if event_type is None or message["type"] == event_type]

    def last(self, event_type: str):
        matching = self.events(event_type)
        assert matching, f"no {event_type!r} frame was sent"
        return matching[-1]["data"]


@pytest.fixture
def connection_manager():
    return ConnectionManager()


@pytest.fixture
def open_connection(connection_manager):
    """Factory opening a connection on ``connection_manager`` backed by a FakeWebSocket."""
    async def _open(fail: bool = False):
        websocket = FakeWebSocket(fail=fail)
        connection = await connection_manager.connect(websocket)
        return connection, websocket

    return _open
