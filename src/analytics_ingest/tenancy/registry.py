"""Tenant (project) registry: loads and caches tenant configuration."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import structlog
from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from analytics_ingest.cipher import PlaintextCipher, SecretCipher
from analytics_ingest.errors import PoolExhaustedError, StoreUnavailableError
from analytics_ingest.storage.orm import DEFAULT_TABLE_PREFIX, Project

logger = structlog.get_logger()


@dataclass(frozen=True)
class RoutingTarget:
    """Connection parameters of a tenant's backing store."""

    host: str
    port: int
    database: str
    user: str | None
    password: str | None = field(default=None, repr=False)


@dataclass(frozen=True)
class Tenant:
    tenant_id: str
    name: str
    table_prefix: str
    is_active: bool
    # None: tables live in the system store.
    routing: RoutingTarget | None = None


class TenantRegistry:
    """In-memory tenant cache backed by the ``analytics_projects`` table.

    Active tenants are loaded once on first use. A cache miss reloads that
    single row before reporting the tenant as unknown, which covers tenants
    created after start-up. Entries are never dropped: a deactivated tenant
    stays cached with ``is_active=False``.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: SecretCipher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher or PlaintextCipher()
        self._tenants: dict[str, Tenant] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._reloads: dict[str, asyncio.Task[bool]] = {}

    def _to_tenant(self, row: Project) -> Tenant:
        routing: RoutingTarget | None = None
        if row.db_host:
            password = row.db_password_encrypted
            routing = RoutingTarget(
                host=row.db_host,
                port=row.db_port or 5432,
                database=row.db_name or row.project_id,
                user=row.db_user,
                password=self._cipher.decrypt(password) if password else None,
            )
        return Tenant(
            tenant_id=row.project_id,
            name=row.project_name,
            table_prefix=row.table_prefix or DEFAULT_TABLE_PREFIX,
            is_active=row.is_active,
            routing=routing,
        )

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """System-store session; faults become 503 service errors.

        No tenant pool state changes here.
        """
        try:
            async with self._session_factory() as session:
                yield session
        except PoolTimeoutError as exc:
            logger.warning("system_pool_exhausted")
            raise PoolExhaustedError() from exc
        except (OperationalError, InterfaceError) as exc:
            logger.error("system_store_error", error=type(exc).__name__)
            raise StoreUnavailableError(
                "Configuration store is unavailable, retry later"
            ) from exc

    async def initialize(self) -> None:
        """Load all active tenants. Runs once; later calls are no-ops."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            async with self._session() as session:
                result = await session.execute(
                    select(Project).where(Project.is_active.is_(True))
                )
                rows = result.scalars().all()
            for row in rows:
                tenant = self._to_tenant(row)
                self._tenants.setdefault(tenant.tenant_id, tenant)
            self._initialized = True
            logger.info("tenants_loaded", count=len(rows))

    async def resolve(self, tenant_id: str) -> Tenant | None:
        """Return the cached tenant, reloading its row once on a miss."""
        await self.initialize()
        tenant = self._tenants.get(tenant_id)
        if tenant is not None:
            return tenant
        if not await self._reload_once(tenant_id):
            return None
        return self._tenants.get(tenant_id)

    async def _reload_once(self, tenant_id: str) -> bool:
        """Single-flight reload: concurrent misses share one query."""
        task = self._reloads.get(tenant_id)
        if task is None:
            task = asyncio.ensure_future(self.reload(tenant_id))
            self._reloads[tenant_id] = task
            task.add_done_callback(lambda _: self._reloads.pop(tenant_id, None))
        return await asyncio.shield(task)

    async def reload(self, tenant_id: str) -> bool:
        """Refresh one tenant from the store.

        Returns:
            False if the tenant row no longer exists (the cached entry,
            if any, is left untouched).
        """
        async with self._session() as session:
            result = await session.execute(
                select(Project).where(Project.project_id == tenant_id)
            )
            row = result.scalar_one_or_none()
        if row is None:
            logger.info("tenant_reload_missing", tenant_id=tenant_id)
            return False
        self._tenants[tenant_id] = self._to_tenant(row)
        logger.info("tenant_reloaded", tenant_id=tenant_id, is_active=row.is_active)
        return True

    def list_tenants(self) -> list[Tenant]:
        return sorted(self._tenants.values(), key=lambda t: t.tenant_id)
