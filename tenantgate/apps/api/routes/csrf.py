from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from tenantgate.apps.api.deps import get_csrf_guard, request_fingerprint
from tenantgate.core.config import get_settings
from tenantgate.services.csrf import CsrfGuard


router = APIRouter(tags=["csrf"])


class CsrfTokenResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    csrf_token: str = Field(alias="csrfToken")


@router.get("/csrf-token", response_model=CsrfTokenResponse, response_model_by_alias=True)
async def csrf_token(
    request: Request,
    response: Response,
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> CsrfTokenResponse:
    # Explicit fetch for clients that cannot read response headers.
    token = await guard.issue(request_fingerprint(request))
    response.headers[get_settings().csrf_header_name] = token
    return CsrfTokenResponse(csrf_token=token)
