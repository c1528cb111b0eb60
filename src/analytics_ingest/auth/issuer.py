"""Device credential issuance."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog
from sqlalchemy.exc import IntegrityError

from analytics_ingest.auth import signing
from analytics_ingest.cipher import PlaintextCipher, SecretCipher
from analytics_ingest.errors import (
    InvalidDeviceIdError,
    InvalidTenantError,
    MissingDeviceIdError,
)
from analytics_ingest.storage.device_repository import (
    DeviceMetadata,
    DeviceRecord,
    DeviceRepository,
)
from analytics_ingest.storage.tables import tables_for_prefix
from analytics_ingest.tenancy.registry import TenantRegistry
from analytics_ingest.tenancy.router import ConnectionRouter

logger = structlog.get_logger()

INSERT_ATTEMPTS = 2


@dataclass(frozen=True)
class IssuedCredential:
    api_key: str
    secret_key: str = field(repr=False)
    is_new: bool


class CredentialIssuer:
    """Issues one API-key/secret-key pair per (tenant, device).

    Registration is idempotent: a device that already holds a credential
    gets the same pair back with ``is_new=False``.
    """

    def __init__(
        self,
        registry: TenantRegistry,
        router: ConnectionRouter,
        cipher: SecretCipher | None = None,
    ) -> None:
        self._registry = registry
        self._router = router
        self._cipher = cipher or PlaintextCipher()

    async def register(
        self,
        tenant_id: str,
        device_id: str | None,
        metadata: DeviceMetadata | None = None,
    ) -> IssuedCredential:
        """Return the device's credential, creating it on first call.

        Raises:
            InvalidTenantError: tenant unknown or inactive.
            MissingDeviceIdError: empty device id.
            InvalidDeviceIdError: device id is not a UUID.
        """
        tenant = await self._registry.resolve(tenant_id)
        if tenant is None or not tenant.is_active:
            raise InvalidTenantError()
        if not device_id:
            raise MissingDeviceIdError()
        if not signing.is_valid_uuid(device_id):
            raise InvalidDeviceIdError()

        engine = await self._router.pool_for(tenant_id)
        tables = tables_for_prefix(tenant.table_prefix)

        async with self._router.guard(tenant_id):
            async with engine.connect() as conn:
                repo = DeviceRepository(conn, tables, tenant_id, self._cipher)
                existing = await repo.find_by_device_id(device_id)
            if existing is not None:
                logger.info(
                    "device_already_registered",
                    tenant_id=tenant_id,
                    device_id=device_id,
                )
                return _issued(existing, is_new=False)

            for attempt in range(INSERT_ATTEMPTS):
                api_key = signing.new_api_key()
                secret_key = signing.new_secret_key()
                try:
                    async with engine.begin() as conn:
                        repo = DeviceRepository(conn, tables, tenant_id, self._cipher)
                        await repo.insert(
                            device_id=device_id,
                            api_key=api_key,
                            secret_key=secret_key,
                            metadata=metadata or DeviceMetadata(),
                        )
                    break
                except IntegrityError:
                    # Either a concurrent registration for the same device won
                    # the insert, or the generated api_key collided.
                    async with engine.connect() as conn:
                        repo = DeviceRepository(conn, tables, tenant_id, self._cipher)
                        existing = await repo.find_by_device_id(device_id)
                    if existing is not None:
                        logger.info(
                            "device_registration_race",
                            tenant_id=tenant_id,
                            device_id=device_id,
                        )
                        return _issued(existing, is_new=False)
                    if attempt + 1 == INSERT_ATTEMPTS:
                        raise
                    logger.warning(
                        "api_key_collision", tenant_id=tenant_id, device_id=device_id
                    )

        logger.info("device_registered", tenant_id=tenant_id, device_id=device_id)
        return IssuedCredential(api_key=api_key, secret_key=secret_key, is_new=True)


def _issued(record: DeviceRecord, *, is_new: bool) -> IssuedCredential:
    return IssuedCredential(
        api_key=record.api_key, secret_key=record.secret_key, is_new=is_new
    )
