"""
StockPulse API Dependencies

Dependency injection for DB sessions and the command center service.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import Settings, get_settings
from db.session import AsyncSessionLocal
from inventory.command_center import CommandCenter
from inventory.repository import MetricsRepository
from inventory.sql_repository import SqlMetricsRepository


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_metrics_repository() -> MetricsRepository:
    """Read-only source for scoring and detection; one session per query."""
    return SqlMetricsRepository(AsyncSessionLocal)


def get_command_center(
    db: AsyncSession = Depends(get_db),
    repository: MetricsRepository = Depends(get_metrics_repository),
    settings: Settings = Depends(get_settings),
) -> CommandCenter:
    return CommandCenter(db, repository, settings)
