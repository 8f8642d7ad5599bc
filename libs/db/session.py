from contextlib import asynccontextmanager
from typing import AsyncGenerator, AsyncIterator, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from libs.db.config import AsyncSessionLocal

SessionFactory = Callable[[], AsyncSession]


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> SessionFactory:
    """FastAPI dependency returning the factory used by background work."""
    return AsyncSessionLocal


@asynccontextmanager
async def unit_of_work(
    session_factory: SessionFactory = AsyncSessionLocal,
) -> AsyncIterator[AsyncSession]:
    """Open a session, commit when the block succeeds, roll back otherwise.

    The session is closed on every exit path, including cancellation.
    """
    session = session_factory()
    try:
        yield session
        await session.commit()
    except BaseException:
        await session.rollback()
        raise
    finally:
        await session.close()
