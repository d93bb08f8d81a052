from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
import math
from typing import Callable

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.clock import ensure_utc, utc_now
from tenantgate.core.config import get_settings
from tenantgate.core.errors import InvalidTransitionError, TenantNotFoundError
from tenantgate.domain.lifecycle import STATUS_ACTIVE, STATUS_TRIAL, ensure_transition
from tenantgate.domain.models import Tenant
from tenantgate.persistence.repos.tenants import (
    extend_trial_end,
    get_tenant,
    list_expired_trial_tenants,
    reactivate_tenant_rows,
    stamp_suspension_check,
    suspend_tenant,
)
from tenantgate.persistence.repos.users import set_users_active
from tenantgate.services.auth.roles import PLATFORM_OPERATOR_ROLE


logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


@dataclass
class SweepReport:
    # Outcome of one lifecycle tick; ids are kept for logs and operator tooling.
    started_at: datetime
    examined: list[str] = field(default_factory=list)
    suspended: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, object]:
        return {
            "started_at": self.started_at.isoformat(),
            "examined": len(self.examined),
            "suspended": list(self.suspended),
            "failed": list(self.failed),
        }


class TrialStatus(BaseModel):
    tenant_id: str
    name: str
    subscription_status: str
    is_active: bool
    trial_start_date: datetime | None = None
    trial_end_date: datetime | None = None
    suspended_at: datetime | None = None
    suspension_reason: str | None = None
    # None means unlimited (platform owner).
    days_remaining: int | None = None
    is_trial_expired: bool
    is_trial_active: bool
    is_platform_owner: bool
    unlimited_access: bool


async def _suspend_one(session_factory: SessionFactory, tenant_id: str, *, now: datetime, reason: str) -> bool:
    # Tenant status and user deactivation commit together or not at all.
    async with session_factory() as session:
        async with session.begin():
            suspended = await suspend_tenant(session, tenant_id, now=now, reason=reason)
            if suspended:
                await set_users_active(
                    session,
                    tenant_id,
                    is_active=False,
                    exclude_roles=(PLATFORM_OPERATOR_ROLE,),
                )
    return suspended


async def run_trial_sweep(
    session_factory: SessionFactory,
    *,
    now: datetime | None = None,
    interval_s: int | None = None,
) -> SweepReport:
    """Suspend tenants whose trial window has closed.

    Selection skips tenants stamped within the last interval, so ticks that overlap or
    repeat inside one interval do no work. A tenant whose suspension raises is rolled
    back, logged and left unstamped, which makes the next tick retry it.
    """
    settings = get_settings()
    now = now or utc_now()
    interval = settings.trial_sweep_interval_s if interval_s is None else interval_s
    reason = settings.trial_suspension_reason
    report = SweepReport(started_at=now)

    async with session_factory() as session:
        candidates = await list_expired_trial_tenants(
            session,
            now=now,
            checked_before=now - timedelta(seconds=interval),
        )
        candidate_ids = [tenant.id for tenant in candidates]
    logger.info("trial_sweep_started candidates=%s", len(candidate_ids))

    for tenant_id in candidate_ids:
        try:
            suspended = await _suspend_one(session_factory, tenant_id, now=now, reason=reason)
        except Exception:  # noqa: BLE001 - one tenant failure must not abort the batch.
            logger.exception("trial_tenant_suspend_failed tenant_id=%s", tenant_id)
            report.failed.append(tenant_id)
            continue
        report.examined.append(tenant_id)
        if suspended:
            report.suspended.append(tenant_id)
            logger.info("trial_tenant_suspended tenant_id=%s", tenant_id)
        else:
            logger.info("trial_tenant_skipped tenant_id=%s reason=state_changed", tenant_id)

    if report.examined:
        async with session_factory() as session:
            async with session.begin():
                await stamp_suspension_check(session, report.examined, now=now)

    logger.info(
        "trial_sweep_finished examined=%s suspended=%s failed=%s",
        len(report.examined),
        len(report.suspended),
        len(report.failed),
    )
    return report


async def _load_tenant(session: AsyncSession, tenant_id: str) -> Tenant:
    tenant = await get_tenant(session, tenant_id)
    if tenant is None:
        raise TenantNotFoundError(f"Tenant not found: {tenant_id}")
    return tenant


async def reactivate_tenant(session: AsyncSession, tenant_id: str, plan: str | None = None) -> Tenant:
    """Return a tenant to ``active`` and re-enable all of its users.

    This is the only way out of suspension and is never invoked by the sweep.
    """
    plan = plan or get_settings().trial_default_reactivation_plan
    tenant = await _load_tenant(session, tenant_id)
    if tenant.is_platform_owner:
        logger.info("tenant_reactivate_noop tenant_id=%s reason=platform_owner", tenant_id)
        return tenant
    ensure_transition(tenant.subscription_status, STATUS_ACTIVE)

    await reactivate_tenant_rows(session, tenant_id, plan=plan)
    reactivated_users = await set_users_active(session, tenant_id, is_active=True)
    await session.commit()
    await session.refresh(tenant)
    logger.info(
        "tenant_reactivated tenant_id=%s plan=%s users=%s",
        tenant_id,
        plan,
        reactivated_users,
    )
    return tenant


async def extend_trial(session: AsyncSession, tenant_id: str, days: int | None = None) -> Tenant:
    days = get_settings().trial_default_extension_days if days is None else days
    if days <= 0:
        raise ValueError("Trial extension must be a positive number of days")
    tenant = await _load_tenant(session, tenant_id)
    if tenant.is_platform_owner:
        logger.info("trial_extend_noop tenant_id=%s reason=platform_owner", tenant_id)
        return tenant
    if tenant.subscription_status != STATUS_TRIAL:
        raise InvalidTransitionError(tenant.subscription_status, STATUS_TRIAL)

    current_end = ensure_utc(tenant.trial_end_date) or utc_now()
    new_end = current_end + timedelta(days=days)
    if not await extend_trial_end(session, tenant_id, trial_end_date=new_end):
        raise InvalidTransitionError(tenant.subscription_status, STATUS_TRIAL)
    await session.commit()
    await session.refresh(tenant)
    logger.info("trial_extended tenant_id=%s days=%s", tenant_id, days)
    return tenant


def build_trial_status(tenant: Tenant, *, now: datetime | None = None) -> TrialStatus:
    now = now or utc_now()
    common = {
        "tenant_id": tenant.id,
        "name": tenant.name,
        "subscription_status": tenant.subscription_status,
        "is_active": tenant.is_active,
        "trial_start_date": ensure_utc(tenant.trial_start_date),
        "trial_end_date": ensure_utc(tenant.trial_end_date),
        "suspended_at": ensure_utc(tenant.suspended_at),
        "suspension_reason": tenant.suspension_reason,
    }
    if tenant.is_platform_owner:
        return TrialStatus(
            **common,
            days_remaining=None,
            is_trial_expired=False,
            is_trial_active=False,
            is_platform_owner=True,
            unlimited_access=True,
        )

    trial_end = ensure_utc(tenant.trial_end_date) or now
    remaining_s = (trial_end - now).total_seconds()
    return TrialStatus(
        **common,
        days_remaining=max(0, math.ceil(remaining_s / 86400)),
        is_trial_expired=now > trial_end,
        is_trial_active=tenant.subscription_status == STATUS_TRIAL and now <= trial_end,
        is_platform_owner=False,
        unlimited_access=False,
    )


async def get_trial_status(
    session: AsyncSession, tenant_id: str, *, now: datetime | None = None
) -> TrialStatus | None:
    tenant = await get_tenant(session, tenant_id)
    if tenant is None:
        return None
    return build_trial_status(tenant, now=now)
