from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.deps import TenantContext, get_db, require_tenant_context
from tenantgate.core.clock import ensure_utc
from tenantgate.services.lifecycle.trial import TrialStatus, get_trial_status


router = APIRouter(prefix="/tenant", tags=["tenant"])


class TenantResponse(BaseModel):
    id: str
    name: str
    type: str
    is_active: bool
    subscription_status: str
    subscription_plan: str | None = None
    trial_end_date: datetime | None = None
    is_platform_owner: bool
    user_id: str
    role: str


@router.get("/current", response_model=TenantResponse)
async def current_tenant(context: TenantContext = Depends(require_tenant_context)) -> TenantResponse:
    tenant = context.tenant
    return TenantResponse(
        id=tenant.id,
        name=tenant.name,
        type=tenant.type,
        is_active=tenant.is_active,
        subscription_status=tenant.subscription_status,
        subscription_plan=tenant.subscription_plan,
        trial_end_date=ensure_utc(tenant.trial_end_date),
        is_platform_owner=tenant.is_platform_owner,
        user_id=context.principal.user_id,
        role=context.principal.role,
    )


@router.get("/trial-status", response_model=TrialStatus)
async def trial_status(
    context: TenantContext = Depends(require_tenant_context),
    db: AsyncSession = Depends(get_db),
) -> TrialStatus:
    result = await get_trial_status(db, context.tenant.id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Tenant not found", "code": "TENANT_NOT_FOUND"},
        )
    return result
