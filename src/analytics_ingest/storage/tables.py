"""Per-tenant table definitions.

Each tenant owns a private set of tables inside what may be a shared
physical store; table names are the tenant's prefix plus a base name.
Definitions are built with SQLAlchemy Core on a per-prefix ``MetaData``
and cached, so every tenant sharing a prefix shares the same objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    false,
    func,
)
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_ingest.storage.orm import _uuid7

BASE_TABLES: tuple[str, ...] = ("devices", "events", "sessions")


def table_name(prefix: str, base: str) -> str:
    """Concatenate a tenant prefix and a base table name."""
    return f"{prefix}{base}"


@dataclass(frozen=True)
class TenantTables:
    prefix: str
    metadata: MetaData
    devices: Table

    def name(self, base: str) -> str:
        return table_name(self.prefix, base)


@lru_cache(maxsize=256)
def tables_for_prefix(prefix: str) -> TenantTables:
    """Build (once per prefix) the Core tables owned by this credential layer."""
    metadata = MetaData()
    devices = Table(
        table_name(prefix, "devices"),
        metadata,
        Column("id", Uuid, primary_key=True, default=_uuid7),
        Column("project_id", String(64), nullable=False, index=True),
        Column("device_id", String(36), nullable=False),
        Column("api_key", String(64), nullable=False, unique=True),
        Column("secret_key", Text, nullable=False),
        Column("device_model", String(100)),
        Column("os_version", String(50)),
        Column("app_version", String(50)),
        Column("is_banned", Boolean, nullable=False, server_default=false()),
        Column("ban_reason", Text),
        Column(
            "created_at",
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
        Column(
            "last_active_at",
            DateTime(timezone=True),
            nullable=False,
            server_default=func.now(),
        ),
        UniqueConstraint(
            "project_id", "device_id", name=f"uq_{prefix}devices_project_device"
        ),
    )
    return TenantTables(prefix=prefix, metadata=metadata, devices=devices)


async def create_tenant_tables(engine: AsyncEngine, prefix: str) -> list[str]:
    """Create the tenant's credential tables if missing.

    Returns:
        Names of the tables defined for this prefix.
    """
    tables = tables_for_prefix(prefix)
    async with engine.begin() as conn:
        await conn.run_sync(tables.metadata.create_all)
    return sorted(tables.metadata.tables)
