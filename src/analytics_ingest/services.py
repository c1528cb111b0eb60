"""Process-lifetime services shared by all requests."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from analytics_ingest.auth.gate import AuthenticationGate
from analytics_ingest.auth.issuer import CredentialIssuer
from analytics_ingest.cipher import SecretCipher, create_cipher
from analytics_ingest.config import Settings
from analytics_ingest.storage.database import (
    create_session_factory,
    create_system_engine,
)
from analytics_ingest.tenancy.registry import TenantRegistry
from analytics_ingest.tenancy.router import (
    ConnectionRouter,
    EngineFactory,
    default_engine_factory,
)

logger = structlog.get_logger()


@dataclass
class Services:
    """Explicitly owned registry, router, gate and issuer.

    Built once in the application lifespan (or per test) and closed on
    shutdown.
    """

    system_engine: AsyncEngine
    registry: TenantRegistry
    router: ConnectionRouter
    gate: AuthenticationGate
    issuer: CredentialIssuer

    async def close(self) -> None:
        await self.gate.drain()
        await self.router.close_all()
        await self.system_engine.dispose()
        logger.info("services_closed")


def build_services(
    settings: Settings,
    *,
    system_engine: AsyncEngine | None = None,
    engine_factory: EngineFactory | None = None,
    cipher: SecretCipher | None = None,
) -> Services:
    """Wire the services together from settings.

    ``system_engine``, ``engine_factory`` and ``cipher`` override the
    defaults derived from settings.
    """
    engine = system_engine or create_system_engine(settings)
    cipher = cipher or create_cipher(settings)
    registry = TenantRegistry(create_session_factory(engine), cipher=cipher)
    router = ConnectionRouter(
        registry, engine_factory or default_engine_factory(settings)
    )
    return Services(
        system_engine=engine,
        registry=registry,
        router=router,
        gate=AuthenticationGate(
            registry,
            router,
            cipher=cipher,
            default_project_id=settings.default_project_id,
        ),
        issuer=CredentialIssuer(registry, router, cipher=cipher),
    )
