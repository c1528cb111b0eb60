"""Domain-specific exceptions for analytics-ingest.

Every ``ServiceError`` carries a stable machine-readable ``code`` and the
HTTP status it maps to. The API layer renders each one as a single
response envelope.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import ClassVar


class ServiceError(Exception):
    """Base class for errors rendered as a structured envelope."""

    code: ClassVar[str] = "INTERNAL_SERVER_ERROR"
    status_code: ClassVar[int] = 500
    default_message: ClassVar[str] = "Internal server error"
    retryable: ClassVar[bool] = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ──────────────────────────────────────────────
# Authentication gate (client-caused, not retryable as-is)
# ──────────────────────────────────────────────


class AuthenticationError(ServiceError):
    """Request rejected by the authentication gate."""


class InvalidProjectError(AuthenticationError):
    code = "INVALID_PROJECT"
    status_code = 400
    default_message = "Invalid project ID"

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Invalid project ID: {project_id}")


class ProjectInactiveError(AuthenticationError):
    code = "PROJECT_INACTIVE"
    status_code = 403
    default_message = "Project is not active"


class MissingHeadersError(AuthenticationError):
    code = "MISSING_HEADERS"
    status_code = 400
    default_message = "Missing required headers"

    def __init__(self, missing: Iterable[str]) -> None:
        self.missing = tuple(missing)
        super().__init__(f"Missing required headers: {', '.join(self.missing)}")


class InvalidCredentialsError(AuthenticationError):
    code = "INVALID_CREDENTIALS"
    status_code = 401
    default_message = "Invalid API key or device ID"


class DeviceBannedError(AuthenticationError):
    code = "DEVICE_BANNED"
    status_code = 403
    default_message = "Device has been banned"

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(reason)


class TimestampExpiredError(AuthenticationError):
    code = "TIMESTAMP_EXPIRED"
    status_code = 401
    default_message = "Request timestamp is outside the 5 minute window"


class InvalidSignatureError(AuthenticationError):
    code = "INVALID_SIGNATURE"
    status_code = 401
    default_message = "Invalid signature"


# ──────────────────────────────────────────────
# Device registration
# ──────────────────────────────────────────────


class RegistrationError(ServiceError):
    """Registration request rejected before any credential is issued."""


class InvalidTenantError(RegistrationError):
    code = "INVALID_PROJECT"
    status_code = 400
    default_message = "Invalid or inactive project"


class MissingDeviceIdError(RegistrationError):
    code = "MISSING_DEVICE_ID"
    status_code = 400
    default_message = "Missing device ID"


class InvalidDeviceIdError(RegistrationError):
    code = "INVALID_DEVICE_ID"
    status_code = 400
    default_message = "Device ID must be a valid UUID"


# ──────────────────────────────────────────────
# Infrastructure (retryable by the client with backoff)
# ──────────────────────────────────────────────


class InfrastructureError(ServiceError):
    status_code = 503
    retryable = True


class PoolExhaustedError(InfrastructureError):
    code = "POOL_EXHAUSTED"
    default_message = "No database connection available, retry later"


class StoreUnavailableError(InfrastructureError):
    code = "STORE_UNAVAILABLE"
    default_message = "Tenant store is unavailable, retry later"


# ──────────────────────────────────────────────
# Administration
# ──────────────────────────────────────────────


class AdminTokenNotConfiguredError(ServiceError):
    code = "ADMIN_TOKEN_NOT_CONFIGURED"
    status_code = 500
    default_message = "Admin token is not configured, set ADMIN_TOKEN"


class AdminUnauthorizedError(ServiceError):
    code = "UNAUTHORIZED"
    status_code = 401
    default_message = "Invalid admin token"


class ProjectNotFoundError(ServiceError):
    code = "PROJECT_NOT_FOUND"
    status_code = 404
    default_message = "Project not found"
