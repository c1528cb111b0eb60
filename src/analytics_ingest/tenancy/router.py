"""Per-tenant connection routing.

One ``AsyncEngine`` (a bounded connection pool) per tenant, created on
first use and kept for the life of the process. Pools are never rebuilt
implicitly: once a pool is marked failed every caller sees
``StoreUnavailableError`` until ``close_pool`` resets the tenant.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from enum import StrEnum

import structlog
from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from analytics_ingest.config import Settings
from analytics_ingest.errors import (
    InvalidProjectError,
    PoolExhaustedError,
    StoreUnavailableError,
)
from analytics_ingest.storage.tables import TenantTables, tables_for_prefix
from analytics_ingest.tenancy.registry import Tenant, TenantRegistry

logger = structlog.get_logger()

EngineFactory = Callable[[Tenant], AsyncEngine]


class PoolState(StrEnum):
    ABSENT = "absent"
    LIVE = "live"
    FAILED = "failed"


def tenant_url(tenant: Tenant, settings: Settings) -> URL:
    """Database URL for a tenant; falls back to the system store."""
    if tenant.routing is None:
        return make_url(settings.database_url)
    routing = tenant.routing
    return URL.create(
        "postgresql+psycopg",
        username=routing.user,
        password=routing.password,
        host=routing.host,
        port=routing.port,
        database=routing.database,
    )


def default_engine_factory(settings: Settings) -> EngineFactory:
    """Build tenant engines with a bounded pool and an acquisition timeout."""

    def _create(tenant: Tenant) -> AsyncEngine:
        return create_async_engine(
            tenant_url(tenant, settings),
            pool_size=settings.tenant_pool_size,
            max_overflow=0,
            pool_timeout=settings.tenant_pool_timeout,
            pool_recycle=settings.tenant_pool_recycle,
        )

    return _create


class ConnectionRouter:
    """Lazily creates and caches one connection pool per tenant."""

    def __init__(
        self,
        registry: TenantRegistry,
        engine_factory: EngineFactory,
    ) -> None:
        self._registry = registry
        self._engine_factory = engine_factory
        self._pools: dict[str, AsyncEngine] = {}
        self._failed: set[str] = set()
        self._lock = asyncio.Lock()

    async def _tenant(self, tenant_id: str) -> Tenant:
        tenant = await self._registry.resolve(tenant_id)
        if tenant is None:
            raise InvalidProjectError(tenant_id)
        return tenant

    def state(self, tenant_id: str) -> PoolState:
        if tenant_id in self._failed:
            return PoolState.FAILED
        if tenant_id in self._pools:
            return PoolState.LIVE
        return PoolState.ABSENT

    async def pool_for(self, tenant_id: str) -> AsyncEngine:
        """Return the tenant's pool, creating it on first use.

        Raises:
            InvalidProjectError: tenant is unknown.
            StoreUnavailableError: pool was marked failed.
        """
        if tenant_id in self._failed:
            raise StoreUnavailableError()
        engine = self._pools.get(tenant_id)
        if engine is not None:
            return engine

        tenant = await self._tenant(tenant_id)
        async with self._lock:
            if tenant_id in self._failed:
                raise StoreUnavailableError()
            engine = self._pools.get(tenant_id)
            if engine is None:
                engine = self._engine_factory(tenant)
                self._pools[tenant_id] = engine
                logger.info("tenant_pool_created", tenant_id=tenant_id)
        return engine

    def mark_failed(self, tenant_id: str) -> None:
        """Record a persistent store fault for the tenant's pool."""
        if tenant_id in self._pools and tenant_id not in self._failed:
            self._failed.add(tenant_id)
            logger.warning("tenant_pool_failed", tenant_id=tenant_id)

    async def table_name(self, tenant_id: str, base: str) -> str:
        """Tenant-prefixed table name, e.g. ``analytics_devices``."""
        return (await self.tables_for(tenant_id)).name(base)

    async def tables_for(self, tenant_id: str) -> TenantTables:
        tenant = await self._tenant(tenant_id)
        return tables_for_prefix(tenant.table_prefix)

    async def check_connection(self, tenant_id: str) -> bool:
        """Run ``SELECT 1`` on the tenant's pool."""
        try:
            engine = await self.pool_for(tenant_id)
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, StoreUnavailableError, OSError) as exc:
            logger.warning(
                "tenant_connection_check_failed",
                tenant_id=tenant_id,
                error=type(exc).__name__,
            )
            return False
        return True

    async def close_pool(self, tenant_id: str) -> None:
        """Dispose the tenant's pool and reset its state. Idempotent."""
        async with self._lock:
            engine = self._pools.pop(tenant_id, None)
            self._failed.discard(tenant_id)
        if engine is not None:
            await engine.dispose()
            logger.info("tenant_pool_closed", tenant_id=tenant_id)

    async def close_all(self) -> None:
        """Dispose every pool; one failing dispose does not stop the rest."""
        async with self._lock:
            pools = list(self._pools.items())
            self._pools.clear()
            self._failed.clear()
        for tenant_id, engine in pools:
            try:
                await engine.dispose()
            except Exception:
                logger.exception("tenant_pool_close_error", tenant_id=tenant_id)
        if pools:
            logger.info("tenant_pools_closed", count=len(pools))

    @asynccontextmanager
    async def guard(self, tenant_id: str) -> AsyncIterator[None]:
        """Translate store faults raised inside the block.

        Pool acquisition timeouts become ``PoolExhaustedError``; connection
        level faults mark the pool failed and become
        ``StoreUnavailableError``.
        """
        try:
            yield
        except PoolTimeoutError as exc:
            logger.warning("tenant_pool_exhausted", tenant_id=tenant_id)
            raise PoolExhaustedError() from exc
        except (OperationalError, InterfaceError) as exc:
            self.mark_failed(tenant_id)
            logger.error(
                "tenant_store_error", tenant_id=tenant_id, error=type(exc).__name__
            )
            raise StoreUnavailableError() from exc
