from collections.abc import AsyncGenerator

from sqlmodel.ext.asyncio.session import AsyncSession
from tq_database.session import get_async_session


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; routes commit explicitly through the services"""
    async for session in get_async_session():
        yield session
