"""FastAPI dependency injection for database sessions."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from academy_crm.core.database import session_scope


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield one session per request."""
    async with session_scope() as session:
        yield session
