"""Administrative tenant operations guarded by the admin token.

Tenant rows are edited outside this service; these endpoints only make
the running process pick up changes (reload, pool reset) and provision
the credential tables of a tenant.
"""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from analytics_ingest.api.deps import get_registry, get_router, require_admin
from analytics_ingest.api.schemas import (
    ProjectHealthResponse,
    ProjectInitResponse,
    ProjectResponse,
    ok,
)
from analytics_ingest.errors import ProjectNotFoundError
from analytics_ingest.storage.tables import create_tenant_tables
from analytics_ingest.tenancy.registry import Tenant, TenantRegistry
from analytics_ingest.tenancy.router import ConnectionRouter

logger = structlog.get_logger()

router = APIRouter(
    prefix="/projects", tags=["admin"], dependencies=[Depends(require_admin)]
)

RegistryDep = Annotated[TenantRegistry, Depends(get_registry)]
RouterDep = Annotated[ConnectionRouter, Depends(get_router)]


def _project(tenant: Tenant, pools: ConnectionRouter) -> ProjectResponse:
    return ProjectResponse(
        project_id=tenant.tenant_id,
        project_name=tenant.name,
        table_prefix=tenant.table_prefix,
        is_active=tenant.is_active,
        pool_state=str(pools.state(tenant.tenant_id)),
    )


async def _resolve(registry: TenantRegistry, project_id: str) -> Tenant:
    tenant = await registry.resolve(project_id)
    if tenant is None:
        raise ProjectNotFoundError(f"Project not found: {project_id}")
    return tenant


@router.get("")
async def list_projects(registry: RegistryDep, pools: RouterDep) -> JSONResponse:
    """List tenants currently held in the registry cache."""
    await registry.initialize()
    return ok({"items": [_project(t, pools) for t in registry.list_tenants()]})


@router.post("/{project_id}/reload")
async def reload_project(
    project_id: str, registry: RegistryDep, pools: RouterDep
) -> JSONResponse:
    """Refresh one tenant after its configuration row changed."""
    if not await registry.reload(project_id):
        raise ProjectNotFoundError(f"Project not found: {project_id}")
    tenant = await _resolve(registry, project_id)
    logger.info("admin_project_reloaded", project_id=project_id)
    return ok(_project(tenant, pools))


@router.delete("/{project_id}/pool")
async def close_project_pool(
    project_id: str, registry: RegistryDep, pools: RouterDep
) -> JSONResponse:
    """Dispose the tenant's pool; the next request builds a fresh one."""
    tenant = await _resolve(registry, project_id)
    await pools.close_pool(project_id)
    logger.info("admin_pool_closed", project_id=project_id)
    return ok(_project(tenant, pools))


@router.get("/{project_id}/health")
async def project_health(
    project_id: str, registry: RegistryDep, pools: RouterDep
) -> JSONResponse:
    await _resolve(registry, project_id)
    connected = await pools.check_connection(project_id)
    return ok(
        ProjectHealthResponse(
            project_id=project_id,
            connected=connected,
            pool_state=str(pools.state(project_id)),
        )
    )


@router.post("/{project_id}/init")
async def init_project_tables(
    project_id: str, registry: RegistryDep, pools: RouterDep
) -> JSONResponse:
    """Create the tenant's device credential table if it does not exist."""
    tenant = await _resolve(registry, project_id)
    engine = await pools.pool_for(project_id)
    async with pools.guard(project_id):
        tables = await create_tenant_tables(engine, tenant.table_prefix)
    logger.info("admin_project_initialized", project_id=project_id, tables=tables)
    return ok(ProjectInitResponse(project_id=project_id, tables=tables))
