"""Request/response schemas and the response envelope.

Every response, success or error, is wrapped as::

    {"success": true, "data": {...}, "error": null, "timestamp": "..."}
    {"success": false, "data": null,
     "error": {"code": "INVALID_SIGNATURE", "message": "..."}, "timestamp": "..."}
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field


def _utc_timestamp() -> str:
    return (
        datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    )


class ErrorBody(BaseModel):
    code: str
    message: str


class Envelope(BaseModel):
    success: bool
    data: Any = None
    error: ErrorBody | None = None
    timestamp: str = Field(default_factory=_utc_timestamp)


def ok(data: BaseModel | dict[str, Any], status_code: int = 200) -> JSONResponse:
    """Success envelope."""
    envelope = Envelope(success=True, data=jsonable_encoder(data))
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def fail(
    code: str,
    message: str,
    status_code: int,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Error envelope."""
    envelope = Envelope(success=False, error=ErrorBody(code=code, message=message))
    return JSONResponse(
        status_code=status_code, content=envelope.model_dump(), headers=headers
    )


# --- Registration ---


class RegisterRequest(BaseModel):
    """Request body for ``POST /auth/register``.

    ``device_id`` is optional at the schema level so a missing value is
    reported as ``MISSING_DEVICE_ID`` rather than a validation error.
    """

    model_config = ConfigDict(extra="ignore")

    device_id: str | None = None
    device_model: str | None = Field(default=None, max_length=100)
    os_version: str | None = Field(default=None, max_length=50)
    app_version: str | None = Field(default=None, max_length=50)


class RegisterResponse(BaseModel):
    api_key: str
    secret_key: str
    is_new: bool


# --- Protected ---


class ProtectedTestResponse(BaseModel):
    message: str
    device_id: str
    user_id: str
    device_model: str | None
    last_active: datetime | None


# --- Health ---


class HealthResponse(BaseModel):
    status: str
    database: str
    environment: str
    uptime_seconds: float


# --- Admin ---


class ProjectResponse(BaseModel):
    project_id: str
    project_name: str
    table_prefix: str
    is_active: bool
    pool_state: str


class ProjectHealthResponse(BaseModel):
    project_id: str
    connected: bool
    pool_state: str


class ProjectInitResponse(BaseModel):
    project_id: str
    tables: list[str]
