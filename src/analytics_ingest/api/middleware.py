"""Per-request log context and access logging."""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from analytics_ingest.logging_config import (
    bind_request_context,
    clear_request_context,
)

logger = structlog.get_logger()

REQUEST_ID_HEADER = "X-Request-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind ``request_id``/``project_id`` to the log context and log each request.

    The request id is taken from ``X-Request-ID`` when the caller sends one
    and echoed back on the response. Requests without ``X-Project-ID`` are
    logged under the project the gate routes them to.
    """

    SKIP_PATHS: frozenset[str] = frozenset(
        {"/health", "/docs", "/openapi.json", "/redoc"}
    )

    def __init__(self, app: ASGIApp, default_project_id: str = "default") -> None:
        super().__init__(app)
        self.default_project_id = default_project_id

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.SKIP_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or secrets.token_hex(8)
        clear_request_context()
        bind_request_context(
            request_id=request_id,
            project_id=request.headers.get("x-project-id") or self.default_project_id,
        )
        started = time.perf_counter()
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.info(
                "http_request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                latency_ms=round((time.perf_counter() - started) * 1000, 1),
            )
            return response
        finally:
            clear_request_context()
