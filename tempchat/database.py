import asyncio
import functools

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from tempchat.config import settings
from tempchat.exceptions import PersistenceError
from tempchat.logging_config import get_logger

logger = get_logger(__name__)


def build_engine(url: str):
    # aiosqlite connections are bound to the loop that opened them
    poolclass = NullPool if url.startswith("sqlite") else None
    return create_async_engine(url, echo=settings.DEBUG, poolclass=poolclass)


def build_sessionmaker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async_engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = build_sessionmaker(async_engine)

async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()

async def create_tables(engine=None):
    from tempchat.models.base import Base
    from tempchat.models import user, room, room_member, message

    async with (engine or async_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def storage_call(func):
    """Bound a repository coroutine by STORAGE_TIMEOUT_SECONDS.

    Timeouts and SQLAlchemy errors surface as PersistenceError; domain errors
    raised by the repository pass through untouched. The session is rolled
    back on failure so it stays usable for the next event.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await asyncio.wait_for(
                func(self, *args, **kwargs),
                timeout=settings.STORAGE_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as exc:
            logger.error("Storage call %s timed out", func.__qualname__)
            await _safe_rollback(self.db)
            raise PersistenceError("Storage call timed out") from exc
        except SQLAlchemyError as exc:
            logger.error("Storage call %s failed: %s", func.__qualname__, exc)
            await _safe_rollback(self.db)
            raise PersistenceError("Storage call failed") from exc

    return wrapper


async def _safe_rollback(db: AsyncSession):
    try:
        await db.rollback()
    except SQLAlchemyError:
        logger.exception("Rollback after failed storage call also failed")
