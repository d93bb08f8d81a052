from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select

from tenantgate.domain.models import Tenant, User
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.auth.roles import normalize_role
from tenantgate.services.auth.tokens import issue_token


def utc_now() -> datetime:
    # Drop microseconds so values survive the SQLite round-trip unchanged.
    return datetime.now(timezone.utc).replace(microsecond=0)


async def create_tenant(
    *,
    tenant_id: str | None = None,
    tenant_type: str = "hospital",
    status: str = "trial",
    is_active: bool = True,
    trial_end_date: datetime | None = None,
    is_platform_owner: bool = False,
    last_suspension_check: datetime | None = None,
    suspended_at: datetime | None = None,
    suspension_reason: str | None = None,
) -> str:
    tenant_id = tenant_id or f"t-{uuid4().hex[:12]}"
    now = utc_now()
    async with SessionLocal() as session:
        session.add(
            Tenant(
                id=tenant_id,
                name=f"Tenant {tenant_id}",
                type=tenant_type,
                is_active=is_active,
                subscription_status=status,
                trial_start_date=now - timedelta(days=14),
                trial_end_date=trial_end_date if trial_end_date is not None else now + timedelta(days=7),
                is_platform_owner=is_platform_owner,
                last_suspension_check=last_suspension_check,
                suspended_at=suspended_at,
                suspension_reason=suspension_reason,
            )
        )
        await session.commit()
    return tenant_id


async def create_user(
    *,
    tenant_id: str,
    role: str,
    is_active: bool = True,
    password_changed_at: datetime | None = None,
    username: str | None = None,
) -> User:
    user = User(
        id=f"u-{uuid4().hex[:12]}",
        tenant_id=tenant_id,
        username=username or role,
        role=normalize_role(role),
        is_active=is_active,
        password_changed_at=password_changed_at,
    )
    async with SessionLocal() as session:
        session.add(user)
        await session.commit()
    return user


def auth_headers(user: User, *, now: datetime | None = None, ttl_s: int | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_token(user, now=now, ttl_s=ttl_s)}"}


async def fetch_tenant(tenant_id: str) -> Tenant:
    async with SessionLocal() as session:
        result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
        return result.scalar_one()


async def fetch_users(tenant_id: str) -> list[User]:
    async with SessionLocal() as session:
        result = await session.execute(select(User).where(User.tenant_id == tenant_id).order_by(User.role))
        return list(result.scalars().all())


class FakeClock:
    # Monotonic float clock shared by the CSRF guard, rate limiter and state store.
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
