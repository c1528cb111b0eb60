"""System database engine and session factory."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from analytics_ingest.config import Settings


def create_system_engine(settings: Settings) -> AsyncEngine:
    """Engine for the configuration store (``analytics_projects``)."""
    return create_async_engine(
        settings.database_url,
        pool_size=settings.system_pool_size,
        max_overflow=0,
        pool_timeout=settings.tenant_pool_timeout,
        pool_pre_ping=True,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
