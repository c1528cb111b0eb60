"""Signed-request probe used by clients to check their signing code."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from analytics_ingest.api.deps import require_device
from analytics_ingest.api.schemas import ProtectedTestResponse, ok
from analytics_ingest.auth.gate import AuthContext

router = APIRouter(prefix="/protected", tags=["protected"])

AuthDep = Annotated[AuthContext, Depends(require_device)]


@router.get("/test")
async def protected_test(auth: AuthDep) -> JSONResponse:
    return ok(
        ProtectedTestResponse(
            message="Authenticated",
            device_id=auth.device.device_id,
            user_id=auth.user_id,
            device_model=auth.device.metadata.device_model,
            last_active=auth.device.last_active_at,
        )
    )
