"""Tests for TenantRegistry: cold start, miss reload, single-flight."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.exc import OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from analytics_ingest.cipher import FernetCipher
from analytics_ingest.errors import PoolExhaustedError, StoreUnavailableError
from analytics_ingest.storage.database import create_session_factory
from analytics_ingest.tenancy.registry import TenantRegistry


def _registry(engine: AsyncEngine, **kwargs: object) -> TenantRegistry:
    return TenantRegistry(create_session_factory(engine), **kwargs)  # type: ignore[arg-type]


def _store_down() -> AsyncMock:
    return AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("down")))


class TestInitialize:
    async def test_loads_only_active_tenants(self, system_engine, add_project) -> None:
        await add_project("alpha", provision=False)
        await add_project("beta", is_active=False, provision=False)
        registry = _registry(system_engine)

        await registry.initialize()

        assert [t.tenant_id for t in registry.list_tenants()] == ["alpha"]

    async def test_runs_once(self, system_engine, add_project) -> None:
        await add_project("alpha", provision=False)
        registry = _registry(system_engine)
        await registry.initialize()
        await add_project("gamma", provision=False)

        await registry.initialize()

        assert [t.tenant_id for t in registry.list_tenants()] == ["alpha"]

    async def test_tenant_without_host_has_no_routing(
        self, system_engine, add_project
    ) -> None:
        await add_project("alpha", provision=False, table_prefix="alpha_")
        registry = _registry(system_engine)

        tenant = await registry.resolve("alpha")

        assert tenant is not None
        assert tenant.routing is None
        assert tenant.table_prefix == "alpha_"
        assert tenant.name == "Project alpha"


class TestResolve:
    async def test_unknown_tenant_is_none(self, system_engine) -> None:
        registry = _registry(system_engine)
        assert await registry.resolve("nope") is None

    async def test_miss_reloads_once(self, system_engine, add_project) -> None:
        registry = _registry(system_engine)
        await registry.initialize()
        await add_project("late", provision=False)

        with patch.object(registry, "reload", wraps=registry.reload) as spy:
            tenant = await registry.resolve("late")
            again = await registry.resolve("late")

        assert tenant is not None and tenant.tenant_id == "late"
        assert again is tenant
        spy.assert_awaited_once_with("late")

    async def test_inactive_tenant_found_on_miss(
        self, system_engine, add_project
    ) -> None:
        await add_project("dormant", is_active=False, provision=False)
        registry = _registry(system_engine)

        tenant = await registry.resolve("dormant")

        assert tenant is not None
        assert tenant.is_active is False

    async def test_concurrent_misses_share_one_reload(
        self, system_engine, add_project
    ) -> None:
        registry = _registry(system_engine)
        await registry.initialize()
        await add_project("late", provision=False)

        with patch.object(registry, "reload", wraps=registry.reload) as spy:
            results = await asyncio.gather(
                *(registry.resolve("late") for _ in range(5))
            )

        assert all(t is not None and t.tenant_id == "late" for t in results)
        assert spy.await_count == 1


class TestReload:
    async def test_missing_row_returns_false(self, system_engine) -> None:
        registry = _registry(system_engine)
        assert await registry.reload("ghost") is False

    async def test_picks_up_deactivation(
        self, system_engine, add_project, set_project_active
    ) -> None:
        await add_project("alpha", provision=False)
        registry = _registry(system_engine)
        assert (await registry.resolve("alpha")).is_active  # type: ignore[union-attr]

        await set_project_active("alpha", False)
        assert await registry.reload("alpha") is True

        tenant = await registry.resolve("alpha")
        assert tenant is not None
        assert tenant.is_active is False
        assert "alpha" in [t.tenant_id for t in registry.list_tenants()]


class TestRouting:
    async def test_routing_target_with_decrypted_password(
        self, system_engine, add_project
    ) -> None:
        cipher = FernetCipher(Fernet.generate_key())
        await add_project(
            "remote",
            provision=False,
            db_host="db.internal",
            db_port=6432,
            db_name="remote_store",
            db_user="ingest",
            db_password_encrypted=cipher.encrypt("pg-pass"),
        )
        registry = _registry(system_engine, cipher=cipher)

        tenant = await registry.resolve("remote")

        assert tenant is not None and tenant.routing is not None
        assert tenant.routing.host == "db.internal"
        assert tenant.routing.port == 6432
        assert tenant.routing.database == "remote_store"
        assert tenant.routing.user == "ingest"
        assert tenant.routing.password == "pg-pass"
        assert "pg-pass" not in repr(tenant)

    async def test_routing_defaults(self, system_engine, add_project) -> None:
        await add_project("remote", provision=False, db_host="db.internal")
        registry = _registry(system_engine)

        tenant = await registry.resolve("remote")

        assert tenant is not None and tenant.routing is not None
        assert tenant.routing.port == 5432
        assert tenant.routing.database == "remote"
        assert tenant.routing.password is None


class TestStoreFaults:
    async def test_outage_on_cold_start(self, system_engine, monkeypatch) -> None:
        monkeypatch.setattr(AsyncSession, "execute", _store_down())
        registry = _registry(system_engine)

        with pytest.raises(StoreUnavailableError) as info:
            await registry.resolve("alpha")

        assert info.value.retryable is True
        assert registry.list_tenants() == []

    async def test_outage_on_reload(
        self, system_engine, add_project, monkeypatch
    ) -> None:
        await add_project("alpha", provision=False)
        registry = _registry(system_engine)
        await registry.initialize()
        monkeypatch.setattr(AsyncSession, "execute", _store_down())

        with pytest.raises(StoreUnavailableError):
            await registry.reload("alpha")
        assert [t.tenant_id for t in registry.list_tenants()] == ["alpha"]

    async def test_pool_timeout(self, system_engine, monkeypatch) -> None:
        monkeypatch.setattr(
            AsyncSession,
            "execute",
            AsyncMock(side_effect=PoolTimeoutError("QueuePool limit reached")),
        )
        registry = _registry(system_engine)

        with pytest.raises(PoolExhaustedError):
            await registry.initialize()

    async def test_recovers_after_outage(
        self, system_engine, add_project, monkeypatch
    ) -> None:
        await add_project("alpha", provision=False)
        registry = _registry(system_engine)
        with monkeypatch.context() as patched:
            patched.setattr(AsyncSession, "execute", _store_down())
            with pytest.raises(StoreUnavailableError):
                await registry.initialize()

        tenant = await registry.resolve("alpha")

        assert tenant is not None
        assert tenant.tenant_id == "alpha"
