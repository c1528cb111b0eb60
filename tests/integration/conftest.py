"""Shared fixtures for integration tests requiring live PostgreSQL.

Each test gets its own committed tenant row with a unique project id and
table prefix; the row and the tenant's tables are dropped afterwards.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator

import pytest
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_ingest.config import Settings, get_settings
from analytics_ingest.services import Services, build_services
from analytics_ingest.storage.database import (
    create_session_factory,
    create_system_engine,
)
from analytics_ingest.storage.orm import Project
from analytics_ingest.storage.tables import create_tenant_tables, tables_for_prefix


@pytest.fixture()
def pg_settings() -> Settings:
    return get_settings().model_copy(
        update={"tenant_pool_size": 2, "tenant_pool_timeout": 0.5}
    )


@pytest.fixture()
async def pg_engine(pg_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    engine = create_system_engine(pg_settings)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def pg_project(pg_engine: AsyncEngine) -> AsyncGenerator[str]:
    """Committed tenant row plus its device table in the system store."""
    suffix = uuid.uuid4().hex[:8]
    project_id = f"it-{suffix}"
    prefix = f"it_{suffix}_"

    async with create_session_factory(pg_engine)() as session:
        session.add(
            Project(
                project_id=project_id,
                project_name="Integration",
                table_prefix=prefix,
            )
        )
        await session.commit()
    await create_tenant_tables(pg_engine, prefix)

    yield project_id

    async with pg_engine.begin() as conn:
        await conn.run_sync(tables_for_prefix(prefix).metadata.drop_all)
        await conn.execute(delete(Project).where(Project.project_id == project_id))


@pytest.fixture()
async def pg_services(
    pg_settings: Settings, pg_engine: AsyncEngine, pg_project: str
) -> AsyncGenerator[Services]:
    services = build_services(pg_settings, system_engine=pg_engine)
    yield services
    await services.gate.drain()
    await services.router.close_all()
