"""Request authentication: tenant resolution, credentials, replay window, HMAC.

``AuthenticationGate.authenticate`` runs the checks below in strict order and
stops at the first failure with a distinct ``AuthenticationError``:

1. tenant id from ``X-Project-ID`` (default ``"default"``)
2. tenant known                         -> INVALID_PROJECT
3. tenant active                        -> PROJECT_INACTIVE
4. tenant pool and device table
5. required headers present             -> MISSING_HEADERS
6. device row for (api key, device, tenant) -> INVALID_CREDENTIALS
7. device not banned                    -> DEVICE_BANNED
8. |now - X-Timestamp| <= 5 minutes     -> TIMESTAMP_EXPIRED
9. signature over the received request  -> INVALID_SIGNATURE
10. schedule last-active update, return ``AuthContext``

There is no nonce store: a captured request can be replayed inside the
window.
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_ingest.auth import signing
from analytics_ingest.cipher import PlaintextCipher, SecretCipher
from analytics_ingest.errors import (
    AuthenticationError,
    DeviceBannedError,
    InvalidCredentialsError,
    InvalidProjectError,
    InvalidSignatureError,
    MissingHeadersError,
    ProjectInactiveError,
    TimestampExpiredError,
)
from analytics_ingest.storage.device_repository import DeviceRecord, DeviceRepository
from analytics_ingest.storage.tables import TenantTables, tables_for_prefix
from analytics_ingest.tenancy.registry import Tenant, TenantRegistry
from analytics_ingest.tenancy.router import ConnectionRouter

logger = structlog.get_logger()

REPLAY_WINDOW_MS = 5 * 60 * 1000
DEFAULT_PROJECT_ID = "default"

PROJECT_HEADER = "X-Project-ID"
API_KEY_HEADER = "X-API-Key"
DEVICE_ID_HEADER = "X-Device-ID"
USER_ID_HEADER = "X-User-ID"
TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_HEADER = "X-Signature"
REQUIRED_HEADERS: tuple[str, ...] = (
    API_KEY_HEADER,
    DEVICE_ID_HEADER,
    USER_ID_HEADER,
    TIMESTAMP_HEADER,
    SIGNATURE_HEADER,
)

_TIMESTAMP_RE = re.compile(r"\d{1,16}")


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class AuthContext:
    """Authenticated request context handed to downstream handlers."""

    tenant: Tenant
    engine: AsyncEngine
    tables: TenantTables
    device: DeviceRecord
    user_id: str

    @property
    def tenant_id(self) -> str:
        return self.tenant.tenant_id

    def table_name(self, base: str) -> str:
        """Tenant-scoped table name, e.g. ``table_name("events")``."""
        return self.tables.name(base)


class AuthenticationGate:
    """Verifies signed device requests against per-tenant credentials."""

    def __init__(
        self,
        registry: TenantRegistry,
        router: ConnectionRouter,
        *,
        cipher: SecretCipher | None = None,
        default_project_id: str = DEFAULT_PROJECT_ID,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self._registry = registry
        self._router = router
        self._cipher = cipher or PlaintextCipher()
        self._default_project_id = default_project_id
        self._clock = clock
        self._pending: set[asyncio.Task[None]] = set()

    async def authenticate(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes | str | None,
    ) -> AuthContext:
        """Authenticate one request.

        Args:
            method: HTTP method as received.
            path: Full request path including the query string.
            headers: Request headers (matched case-insensitively).
            body: Raw request body.

        Raises:
            AuthenticationError: one subclass per rejected check.
            PoolExhaustedError: no connection available within the timeout.
            StoreUnavailableError: the tenant store is failing.
        """
        values = {key.lower(): value for key, value in headers.items()}
        tenant_id = values.get(PROJECT_HEADER.lower()) or self._default_project_id
        try:
            return await self._authenticate(method, path, values, body, tenant_id)
        except AuthenticationError as exc:
            logger.warning(
                "auth_rejected",
                code=exc.code,
                tenant_id=tenant_id,
                device_id=values.get(DEVICE_ID_HEADER.lower()),
                path=path,
            )
            raise

    async def _authenticate(
        self,
        method: str,
        path: str,
        values: dict[str, str],
        body: bytes | str | None,
        tenant_id: str,
    ) -> AuthContext:
        tenant = await self._registry.resolve(tenant_id)
        if tenant is None:
            raise InvalidProjectError(tenant_id)
        if not tenant.is_active:
            raise ProjectInactiveError()

        engine = await self._router.pool_for(tenant_id)
        tables = tables_for_prefix(tenant.table_prefix)

        missing = [name for name in REQUIRED_HEADERS if not values.get(name.lower())]
        if missing:
            raise MissingHeadersError(missing)
        api_key = values[API_KEY_HEADER.lower()]
        device_id = values[DEVICE_ID_HEADER.lower()]
        user_id = values[USER_ID_HEADER.lower()]
        raw_timestamp = values[TIMESTAMP_HEADER.lower()]
        signature = values[SIGNATURE_HEADER.lower()]

        # Malformed identifiers cannot match a row; skip the round trip.
        if not signing.is_valid_uuid(device_id):
            raise InvalidCredentialsError()
        if not signing.is_valid_user_id(user_id):
            raise InvalidCredentialsError("Invalid user ID")

        async with self._router.guard(tenant_id):
            async with engine.connect() as conn:
                repo = DeviceRepository(conn, tables, tenant_id, self._cipher)
                device = await repo.find_by_credentials(api_key, device_id)
        if device is None:
            raise InvalidCredentialsError()

        if device.is_banned:
            raise DeviceBannedError(device.ban_reason)

        if _TIMESTAMP_RE.fullmatch(raw_timestamp) is None:
            raise TimestampExpiredError()
        timestamp_ms = int(raw_timestamp)
        if abs(self._clock() - timestamp_ms) > REPLAY_WINDOW_MS:
            raise TimestampExpiredError()

        try:
            body_text = signing.canonical_body(body)
        except UnicodeDecodeError:
            raise InvalidSignatureError() from None
        message = signing.canonical_message(
            method, path, timestamp_ms, device_id, user_id, body_text
        )
        expected = signing.sign(message, device.secret_key)
        if not signing.verify(signature, expected):
            raise InvalidSignatureError()

        self._schedule_touch(engine, tables, tenant_id, device)
        return AuthContext(
            tenant=tenant,
            engine=engine,
            tables=tables,
            device=device,
            user_id=user_id,
        )

    def _schedule_touch(
        self,
        engine: AsyncEngine,
        tables: TenantTables,
        tenant_id: str,
        device: DeviceRecord,
    ) -> None:
        task = asyncio.create_task(self._touch(engine, tables, tenant_id, device))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _touch(
        self,
        engine: AsyncEngine,
        tables: TenantTables,
        tenant_id: str,
        device: DeviceRecord,
    ) -> None:
        """Best-effort last-active update; failures are logged only."""
        try:
            async with engine.begin() as conn:
                repo = DeviceRepository(conn, tables, tenant_id, self._cipher)
                await repo.touch_last_active(device.id)
        except Exception:
            logger.exception(
                "last_active_update_failed",
                tenant_id=tenant_id,
                device_id=device.device_id,
            )

    async def drain(self) -> None:
        """Wait for in-flight last-active updates (called on shutdown)."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
