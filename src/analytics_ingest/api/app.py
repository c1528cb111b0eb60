"""FastAPI application with lifespan management."""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from analytics_ingest.api.deps import get_services
from analytics_ingest.api.middleware import RequestLoggingMiddleware
from analytics_ingest.api.routes.admin import router as admin_router
from analytics_ingest.api.routes.auth import router as auth_router
from analytics_ingest.api.routes.protected import router as protected_router
from analytics_ingest.api.schemas import HealthResponse, fail, ok
from analytics_ingest.config import Settings, get_settings
from analytics_ingest.errors import InfrastructureError, ServiceError
from analytics_ingest.logging_config import configure_logging
from analytics_ingest.services import Services, build_services

logger = structlog.get_logger()

HEALTH_CHECK_TIMEOUT = 5.0

_HTTP_ERROR_CODES: dict[int, str] = {
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application startup and shutdown.

    Startup:
        - Configure logging.
        - Build services (unless injected) and warm the tenant registry.
    Shutdown:
        - Drain pending last-active updates.
        - Close every tenant pool and the system engine.
    """
    settings: Settings = app.state.settings
    configure_logging(
        environment=str(settings.environment),
        log_level=settings.log_level,
    )
    owned = app.state.services is None
    if owned:
        app.state.services = build_services(settings)
    services: Services = app.state.services

    try:
        await services.registry.initialize()
    except (InfrastructureError, SQLAlchemyError) as e:
        # Tenants are loaded lazily on first request instead.
        logger.warning("tenant_registry_warmup_failed", error=type(e).__name__)

    app.state.started_at = time.monotonic()
    logger.info("app_started", environment=str(settings.environment))
    yield

    if owned:
        await services.close()
    logger.info("app_stopped")


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ServiceError)
    async def service_error_handler(
        request: Request, exc: ServiceError
    ) -> JSONResponse:
        if isinstance(exc, InfrastructureError):
            logger.error(
                "infrastructure_error",
                code=exc.code,
                path=request.url.path,
                cause=type(exc.__cause__).__name__ if exc.__cause__ else None,
            )
        return fail(exc.code, exc.message, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        message = f"{location}: {first.get('msg', 'invalid request')}"
        return fail("VALIDATION_ERROR", message, 400)

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        code = _HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
        message = (
            f"Path {request.url.path} not found"
            if exc.status_code == 404
            else str(exc.detail)
        )
        return fail(code, message, exc.status_code, headers=exc.headers)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Catch-all handler for unhandled exceptions."""
        logger.error("unhandled_exception", exc_info=exc, path=request.url.path)
        message = (
            "Internal server error"
            if settings.is_prod
            else f"Internal server error ({type(exc).__name__})"
        )
        return fail("INTERNAL_SERVER_ERROR", message, 500)


def create_app(
    settings: Settings | None = None,
    services: Services | None = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Defaults to ``get_settings()``.
        services: Pre-built services; when omitted they are built and
            owned by the lifespan.
    """
    settings = settings or get_settings()
    app = FastAPI(
        title="Analytics Ingest",
        description="Multi-tenant ingestion API with signed device requests",
        version="0.1.0",
        lifespan=lifespan,
        debug=settings.is_dev,
    )
    app.state.settings = settings
    app.state.services = services
    app.state.started_at = time.monotonic()

    app.add_middleware(
        RequestLoggingMiddleware, default_project_id=settings.default_project_id
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allowed_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allowed_methods,
        allow_headers=settings.cors_allowed_headers,
    )
    _register_exception_handlers(app, settings)

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """Health check: verifies system database connectivity."""
        services = get_services(request)
        database = "connected"
        try:
            async with services.system_engine.connect() as conn:
                await asyncio.wait_for(
                    conn.execute(text("SELECT 1")),
                    timeout=HEALTH_CHECK_TIMEOUT,
                )
        except (TimeoutError, SQLAlchemyError, OSError) as e:
            logger.warning("health_check_db_error", error=type(e).__name__)
            database = "disconnected"

        return ok(
            HealthResponse(
                status="healthy",
                database=database,
                environment=str(settings.environment),
                uptime_seconds=round(time.monotonic() - app.state.started_at, 3),
            )
        )

    app.include_router(auth_router, prefix="/api/v1")
    app.include_router(protected_router, prefix="/api/v1")
    app.include_router(admin_router, prefix="/api/admin")
    return app


app = create_app()
