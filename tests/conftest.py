"""Shared pytest fixtures.

Unit tests run against throwaway SQLite files (aiosqlite): one file for
the system store holding ``analytics_projects`` and one file per tenant
routing target. Tenants without a routing target share ``store.db``.
"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from analytics_ingest.auth import signing
from analytics_ingest.auth.gate import AuthenticationGate
from analytics_ingest.auth.issuer import IssuedCredential
from analytics_ingest.config import Settings
from analytics_ingest.services import Services, build_services
from analytics_ingest.storage.database import create_session_factory
from analytics_ingest.storage.orm import DEFAULT_TABLE_PREFIX, Base, Project
from analytics_ingest.storage.tables import create_tenant_tables
from analytics_ingest.tenancy.registry import RoutingTarget, Tenant
from analytics_ingest.tenancy.router import EngineFactory

NOW_MS = 1_760_000_000_000
DEVICE_ID = "6f1c2b9e-3d4a-4e5f-8a7b-9c0d1e2f3a4b"
USER_ID = "0123456789abcdef0123456789abcdef"
PROTECTED_PATH = "/api/v1/protected/test"
ADMIN_TOKEN = "admin-token-for-tests"

AddProject = Callable[..., Awaitable[None]]
SignHeaders = Callable[..., dict[str, str]]


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--run-db",
        action="store_true",
        default=False,
        help="Run tests that require a live PostgreSQL instance",
    )


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    markers_to_check = {
        "requires_db": ("--run-db", "needs --run-db flag"),
    }

    skip_conditions = {
        marker_name: (not config.getoption(option_flag), reason_msg)
        for marker_name, (option_flag, reason_msg) in markers_to_check.items()
    }

    for item in items:
        for marker_name, (should_skip, reason_msg) in skip_conditions.items():
            if should_skip and marker_name in item.keywords:
                item.add_marker(pytest.mark.skip(reason=reason_msg))


@pytest.fixture()
def now_ms() -> int:
    return NOW_MS


@pytest.fixture()
def device_id() -> str:
    return DEVICE_ID


@pytest.fixture()
def user_id() -> str:
    return USER_ID


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        environment="testing",
        admin_token=ADMIN_TOKEN,
        secret_encryption_key=None,
    )


@pytest.fixture()
async def system_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'system.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def engine_factory(tmp_path: Any) -> EngineFactory:
    """Tenant engines on SQLite; one database file per routing target."""

    def _create(tenant: Tenant) -> AsyncEngine:
        database = tenant.routing.database if tenant.routing else "store"
        return create_async_engine(f"sqlite+aiosqlite:///{tmp_path / database}.db")

    return _create


@pytest.fixture()
def add_project(
    system_engine: AsyncEngine, engine_factory: EngineFactory
) -> AddProject:
    """Insert a tenant row and (by default) create its device table."""
    session_factory = create_session_factory(system_engine)

    async def _add(
        project_id: str,
        *,
        is_active: bool = True,
        table_prefix: str = DEFAULT_TABLE_PREFIX,
        provision: bool = True,
        **columns: Any,
    ) -> None:
        async with session_factory() as session:
            session.add(
                Project(
                    project_id=project_id,
                    project_name=f"Project {project_id}",
                    table_prefix=table_prefix,
                    is_active=is_active,
                    **columns,
                )
            )
            await session.commit()
        if not provision:
            return
        # Only the database name matters to the SQLite engine factory.
        routing = None
        if columns.get("db_host"):
            routing = RoutingTarget(
                host=columns["db_host"],
                port=columns.get("db_port") or 5432,
                database=columns.get("db_name") or project_id,
                user=columns.get("db_user"),
            )
        engine = engine_factory(
            Tenant(
                tenant_id=project_id,
                name=project_id,
                table_prefix=table_prefix,
                is_active=is_active,
                routing=routing,
            )
        )
        try:
            await create_tenant_tables(engine, table_prefix)
        finally:
            await engine.dispose()

    return _add


@pytest.fixture()
def set_project_active(
    system_engine: AsyncEngine,
) -> Callable[[str, bool], Awaitable[None]]:
    async def _set(project_id: str, is_active: bool) -> None:
        async with system_engine.begin() as conn:
            await conn.execute(
                update(Project.__table__)
                .where(Project.__table__.c.project_id == project_id)
                .values(is_active=is_active)
            )

    return _set


@pytest.fixture()
async def services(
    settings: Settings,
    system_engine: AsyncEngine,
    engine_factory: EngineFactory,
    add_project: AddProject,
) -> AsyncGenerator[Services]:
    """Services wired to SQLite, with the ``default`` tenant provisioned."""
    await add_project("default")
    services = build_services(
        settings, system_engine=system_engine, engine_factory=engine_factory
    )
    yield services
    await services.gate.drain()
    await services.router.close_all()


@pytest.fixture()
async def gate(services: Services) -> AsyncGenerator[AuthenticationGate]:
    """Gate with a frozen clock at ``NOW_MS``."""
    gate = AuthenticationGate(
        services.registry, services.router, clock=lambda: NOW_MS
    )
    yield gate
    await gate.drain()


@pytest.fixture()
def sign_headers() -> SignHeaders:
    """Build the signed header set a client would send."""

    def _build(
        credential: IssuedCredential,
        *,
        method: str = "GET",
        path: str = PROTECTED_PATH,
        body: str | None = None,
        timestamp: int = NOW_MS,
        device_id: str = DEVICE_ID,
        user_id: str = USER_ID,
        project_id: str | None = None,
    ) -> dict[str, str]:
        message = signing.canonical_message(
            method,
            path,
            timestamp,
            device_id,
            user_id,
            signing.canonical_body(body),
        )
        headers = {
            "X-API-Key": credential.api_key,
            "X-Device-ID": device_id,
            "X-User-ID": user_id,
            "X-Timestamp": str(timestamp),
            "X-Signature": signing.sign(message, credential.secret_key),
        }
        if project_id is not None:
            headers["X-Project-ID"] = project_id
        return headers

    return _build
