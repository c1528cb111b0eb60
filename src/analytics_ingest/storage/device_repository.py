"""Tenant-scoped repository for device credentials."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncConnection

from analytics_ingest.cipher import PlaintextCipher, SecretCipher
from analytics_ingest.storage.tables import TenantTables


@dataclass(frozen=True)
class DeviceMetadata:
    device_model: str | None = None
    os_version: str | None = None
    app_version: str | None = None


@dataclass(frozen=True)
class DeviceRecord:
    """A device credential row with its secret already decrypted."""

    id: uuid.UUID
    project_id: str
    device_id: str
    api_key: str
    secret_key: str = field(repr=False)
    metadata: DeviceMetadata
    is_banned: bool
    ban_reason: str | None
    created_at: datetime | None
    last_active_at: datetime | None


class DeviceRepository:
    """Device credential queries, always filtered by project_id.

    Operates on an ``AsyncConnection`` so callers control the transaction.
    """

    def __init__(
        self,
        conn: AsyncConnection,
        tables: TenantTables,
        project_id: str,
        cipher: SecretCipher | None = None,
    ) -> None:
        self._conn = conn
        self._devices = tables.devices
        self._project_id = project_id
        self._cipher = cipher or PlaintextCipher()

    def _to_record(self, row: RowMapping) -> DeviceRecord:
        return DeviceRecord(
            id=row["id"],
            project_id=row["project_id"],
            device_id=row["device_id"],
            api_key=row["api_key"],
            secret_key=self._cipher.decrypt(row["secret_key"]),
            metadata=DeviceMetadata(
                device_model=row["device_model"],
                os_version=row["os_version"],
                app_version=row["app_version"],
            ),
            is_banned=bool(row["is_banned"]),
            ban_reason=row["ban_reason"],
            created_at=row["created_at"],
            last_active_at=row["last_active_at"],
        )

    async def _first(self, *conditions: Any) -> DeviceRecord | None:
        stmt = select(self._devices).where(
            self._devices.c.project_id == self._project_id, *conditions
        )
        result = await self._conn.execute(stmt)
        row = result.mappings().first()
        return self._to_record(row) if row is not None else None

    async def find_by_credentials(
        self, api_key: str, device_id: str
    ) -> DeviceRecord | None:
        """Look up a device by API key AND device id within this project.

        Binding all three fields means a leaked API key alone cannot
        authenticate.
        """
        return await self._first(
            self._devices.c.api_key == api_key,
            self._devices.c.device_id == device_id,
        )

    async def find_by_device_id(self, device_id: str) -> DeviceRecord | None:
        return await self._first(self._devices.c.device_id == device_id)

    async def insert(
        self,
        *,
        device_id: str,
        api_key: str,
        secret_key: str,
        metadata: DeviceMetadata,
    ) -> None:
        """Insert a new credential row.

        Raises:
            sqlalchemy.exc.IntegrityError: (project_id, device_id) or
                api_key already exists.
        """
        await self._conn.execute(
            self._devices.insert().values(
                project_id=self._project_id,
                device_id=device_id,
                api_key=api_key,
                secret_key=self._cipher.encrypt(secret_key),
                device_model=metadata.device_model,
                os_version=metadata.os_version,
                app_version=metadata.app_version,
            )
        )

    async def touch_last_active(self, row_id: uuid.UUID) -> None:
        await self._conn.execute(
            update(self._devices)
            .where(self._devices.c.id == row_id)
            .values(last_active_at=func.now())
        )
