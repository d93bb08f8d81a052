from __future__ import annotations

from datetime import datetime
from typing import Iterable

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.lifecycle import STATUS_ACTIVE, STATUS_SUSPENDED, STATUS_TRIAL
from tenantgate.domain.models import Tenant


async def get_tenant(session: AsyncSession, tenant_id: str) -> Tenant | None:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    return result.scalar_one_or_none()


async def list_expired_trial_tenants(
    session: AsyncSession,
    *,
    now: datetime,
    checked_before: datetime,
) -> list[Tenant]:
    # Skip tenants already examined inside the current debounce window.
    result = await session.execute(
        select(Tenant)
        .where(
            Tenant.subscription_status == STATUS_TRIAL,
            Tenant.trial_end_date < now,
            Tenant.is_active.is_(True),
            Tenant.is_platform_owner.is_(False),
            or_(
                Tenant.last_suspension_check.is_(None),
                Tenant.last_suspension_check < checked_before,
            ),
        )
        .order_by(Tenant.trial_end_date, Tenant.id)
    )
    return list(result.scalars().all())


async def suspend_tenant(
    session: AsyncSession,
    tenant_id: str,
    *,
    now: datetime,
    reason: str,
) -> bool:
    # Conditional update: a tenant reactivated or upgraded since selection is left alone.
    result = await session.execute(
        update(Tenant)
        .where(
            Tenant.id == tenant_id,
            Tenant.subscription_status == STATUS_TRIAL,
            Tenant.is_active.is_(True),
            Tenant.is_platform_owner.is_(False),
        )
        .values(
            subscription_status=STATUS_SUSPENDED,
            is_active=False,
            suspended_at=now,
            suspension_reason=reason,
        )
    )
    return bool(result.rowcount)


async def stamp_suspension_check(
    session: AsyncSession, tenant_ids: Iterable[str], *, now: datetime
) -> int:
    ids = list(tenant_ids)
    if not ids:
        return 0
    result = await session.execute(
        update(Tenant).where(Tenant.id.in_(ids)).values(last_suspension_check=now)
    )
    return result.rowcount or 0


async def reactivate_tenant_rows(session: AsyncSession, tenant_id: str, *, plan: str) -> bool:
    result = await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id)
        .values(
            subscription_status=STATUS_ACTIVE,
            subscription_plan=plan,
            is_active=True,
            suspended_at=None,
            suspension_reason=None,
        )
    )
    return bool(result.rowcount)


async def extend_trial_end(session: AsyncSession, tenant_id: str, *, trial_end_date: datetime) -> bool:
    result = await session.execute(
        update(Tenant)
        .where(Tenant.id == tenant_id, Tenant.subscription_status == STATUS_TRIAL)
        .values(trial_end_date=trial_end_date)
    )
    return bool(result.rowcount)
