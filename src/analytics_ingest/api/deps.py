"""FastAPI dependency injection."""

from __future__ import annotations

import hmac
from typing import cast

from fastapi import Depends, Header, Query, Request

from analytics_ingest.auth.gate import AuthContext, AuthenticationGate
from analytics_ingest.auth.issuer import CredentialIssuer
from analytics_ingest.config import Settings
from analytics_ingest.errors import (
    AdminTokenNotConfiguredError,
    AdminUnauthorizedError,
)
from analytics_ingest.services import Services
from analytics_ingest.tenancy.registry import TenantRegistry
from analytics_ingest.tenancy.router import ConnectionRouter

__all__ = [
    "get_gate",
    "get_issuer",
    "get_registry",
    "get_router",
    "get_services",
    "get_settings",
    "require_admin",
    "require_device",
    "signed_path",
]


def get_services(request: Request) -> Services:
    """Retrieve Services from app state.

    Initialized during lifespan startup (or injected by ``create_app``).
    """
    return cast(Services, request.app.state.services)


def get_settings(request: Request) -> Settings:
    return cast(Settings, request.app.state.settings)


def get_gate(services: Services = Depends(get_services)) -> AuthenticationGate:
    return services.gate


def get_issuer(services: Services = Depends(get_services)) -> CredentialIssuer:
    return services.issuer


def get_registry(services: Services = Depends(get_services)) -> TenantRegistry:
    return services.registry


def get_router(services: Services = Depends(get_services)) -> ConnectionRouter:
    return services.router


def signed_path(request: Request) -> str:
    """Path plus query string, exactly as the server received them."""
    path = request.url.path
    query = request.url.query
    return f"{path}?{query}" if query else path


async def require_device(
    request: Request,
    gate: AuthenticationGate = Depends(get_gate),
) -> AuthContext:
    """Authenticate a signed device request.

    The context is also stored on ``request.state.auth``.

    Raises:
        AuthenticationError: rendered as the matching error envelope.
    """
    body = await request.body()
    context = await gate.authenticate(
        request.method, signed_path(request), request.headers, body
    )
    request.state.auth = context
    return context


async def require_admin(
    settings: Settings = Depends(get_settings),
    x_admin_token: str | None = Header(default=None),
    token: str | None = Query(default=None),
) -> None:
    """Fixed admin token from ``X-Admin-Token`` or the ``token`` query param.

    Raises:
        AdminTokenNotConfiguredError: ``ADMIN_TOKEN`` is unset.
        AdminUnauthorizedError: token missing or wrong.
    """
    if settings.admin_token is None:
        raise AdminTokenNotConfiguredError()
    supplied = x_admin_token or token
    expected = settings.admin_token.get_secret_value()
    if not supplied or not hmac.compare_digest(
        supplied.encode("utf-8"), expected.encode("utf-8")
    ):
        raise AdminUnauthorizedError()
