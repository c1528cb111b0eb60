"""Device registration endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from analytics_ingest.api.deps import get_issuer, get_settings
from analytics_ingest.api.schemas import RegisterRequest, RegisterResponse, ok
from analytics_ingest.auth.issuer import CredentialIssuer
from analytics_ingest.config import Settings
from analytics_ingest.storage.device_repository import DeviceMetadata

router = APIRouter(prefix="/auth", tags=["auth"])

IssuerDep = Annotated[CredentialIssuer, Depends(get_issuer)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


@router.post("/register", status_code=201)
async def register_device(
    issuer: IssuerDep,
    settings: SettingsDep,
    payload: RegisterRequest | None = None,
    x_project_id: Annotated[str | None, Header()] = None,
) -> JSONResponse:
    """Issue (or return the existing) API key and secret key for a device.

    Returns 201 on first issuance and 200 when the device was already
    registered in this project.
    """
    payload = payload or RegisterRequest()
    credential = await issuer.register(
        x_project_id or settings.default_project_id,
        payload.device_id,
        DeviceMetadata(
            device_model=payload.device_model,
            os_version=payload.os_version,
            app_version=payload.app_version,
        ),
    )
    return ok(
        RegisterResponse(
            api_key=credential.api_key,
            secret_key=credential.secret_key,
            is_new=credential.is_new,
        ),
        status_code=201 if credential.is_new else 200,
    )
