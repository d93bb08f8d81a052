from __future__ import annotations

import asyncio
from datetime import timedelta

from sqlalchemy import select

from tenantgate.core.clock import utc_now
from tenantgate.core.config import get_settings
from tenantgate.domain.models import Tenant, User
from tenantgate.persistence.db import SessionLocal


PLATFORM_TENANT_ID = "platform"
DEMO_TENANT_ID = "demo-hospital"


async def _seed() -> None:
    # Idempotent demo data: one platform owner and one hospital on trial.
    settings = get_settings()
    now = utc_now()
    async with SessionLocal() as session:
        existing = await session.execute(select(Tenant.id))
        known = set(existing.scalars().all())
        if PLATFORM_TENANT_ID not in known:
            session.add(
                Tenant(
                    id=PLATFORM_TENANT_ID,
                    name="Platform",
                    type="platform",
                    subscription_status="active",
                    is_platform_owner=True,
                )
            )
            session.add(User(id="operator", tenant_id=PLATFORM_TENANT_ID, username="operator", role="super_admin"))
        if DEMO_TENANT_ID not in known:
            session.add(
                Tenant(
                    id=DEMO_TENANT_ID,
                    name="Demo Hospital",
                    type="hospital",
                    subscription_status="trial",
                    trial_start_date=now,
                    trial_end_date=now + timedelta(days=settings.trial_length_days),
                )
            )
            session.add(User(id="demo-admin", tenant_id=DEMO_TENANT_ID, username="admin", role="tenant_admin"))
            session.add(User(id="demo-frontdesk", tenant_id=DEMO_TENANT_ID, username="frontdesk", role="receptionist"))
        await session.commit()
    print(f"seeded tenants={PLATFORM_TENANT_ID},{DEMO_TENANT_ID}")


if __name__ == "__main__":
    asyncio.run(_seed())
