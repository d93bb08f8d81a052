from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.deps import TenantContext, get_db, require_platform_operator
from tenantgate.core.clock import ensure_utc
from tenantgate.core.errors import InvalidTransitionError, TenantNotFoundError
from tenantgate.domain.models import Tenant
from tenantgate.services.lifecycle.trial import extend_trial, reactivate_tenant, run_trial_sweep


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/platform", tags=["platform"])


class ReactivateRequest(BaseModel):
    plan: str | None = Field(default=None, min_length=1, max_length=64)


class ExtendTrialRequest(BaseModel):
    days: int | None = Field(default=None, gt=0, le=365)


class TenantLifecycleResponse(BaseModel):
    id: str
    is_active: bool
    subscription_status: str
    subscription_plan: str | None = None
    trial_end_date: str | None = None
    suspended_at: str | None = None


class SweepResponse(BaseModel):
    started_at: str
    examined: int
    suspended: list[str]
    failed: list[str]


def _lifecycle_response(tenant: Tenant) -> TenantLifecycleResponse:
    trial_end = ensure_utc(tenant.trial_end_date)
    suspended_at = ensure_utc(tenant.suspended_at)
    return TenantLifecycleResponse(
        id=tenant.id,
        is_active=tenant.is_active,
        subscription_status=tenant.subscription_status,
        subscription_plan=tenant.subscription_plan,
        trial_end_date=trial_end.isoformat() if trial_end else None,
        suspended_at=suspended_at.isoformat() if suspended_at else None,
    )


def _lifecycle_error(exc: Exception) -> HTTPException:
    # Map lifecycle domain errors to stable client codes.
    if isinstance(exc, TenantNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"message": "Tenant not found", "code": "TENANT_NOT_FOUND"},
        )
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={"message": str(exc), "code": "INVALID_TRANSITION"},
    )


@router.post("/tenants/{tenant_id}/reactivate", response_model=TenantLifecycleResponse)
async def reactivate(
    tenant_id: str,
    payload: ReactivateRequest | None = None,
    context: TenantContext = Depends(require_platform_operator),
    db: AsyncSession = Depends(get_db),
) -> TenantLifecycleResponse:
    plan = payload.plan if payload else None
    try:
        tenant = await reactivate_tenant(db, tenant_id, plan)
    except (TenantNotFoundError, InvalidTransitionError) as exc:
        raise _lifecycle_error(exc) from exc
    logger.info("platform_tenant_reactivated tenant_id=%s operator_id=%s", tenant_id, context.principal.user_id)
    return _lifecycle_response(tenant)


@router.post("/tenants/{tenant_id}/extend-trial", response_model=TenantLifecycleResponse)
async def extend(
    tenant_id: str,
    payload: ExtendTrialRequest | None = None,
    context: TenantContext = Depends(require_platform_operator),
    db: AsyncSession = Depends(get_db),
) -> TenantLifecycleResponse:
    days = payload.days if payload else None
    try:
        tenant = await extend_trial(db, tenant_id, days)
    except (TenantNotFoundError, InvalidTransitionError) as exc:
        raise _lifecycle_error(exc) from exc
    logger.info("platform_trial_extended tenant_id=%s operator_id=%s", tenant_id, context.principal.user_id)
    return _lifecycle_response(tenant)


@router.post("/trial-sweep", response_model=SweepResponse)
async def trial_sweep(
    request: Request,
    context: TenantContext = Depends(require_platform_operator),
) -> SweepResponse:
    # Manual tick; the debounce stamp keeps it safe alongside the scheduler.
    report = await run_trial_sweep(request.app.state.session_factory)
    logger.info("platform_trial_sweep operator_id=%s", context.principal.user_id)
    return SweepResponse(**report.as_dict())
