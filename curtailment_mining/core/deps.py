"""Dependency injection utilities."""

from sqlalchemy.ext.asyncio import AsyncSession

from curtailment_mining.core.database import get_session_factory


async def get_db() -> AsyncSession:
    """Get database session."""
    async with get_session_factory()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
