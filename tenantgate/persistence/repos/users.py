from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.domain.models import User
from tenantgate.persistence.guards import tenant_predicate


async def get_user(session: AsyncSession, user_id: str, tenant_id: str) -> User | None:
    # Return None for tenant mismatch so a foreign user id looks like a missing one.
    result = await session.execute(
        select(User).where(User.id == user_id, tenant_predicate(User, tenant_id))
    )
    return result.scalar_one_or_none()


async def set_users_active(
    session: AsyncSession,
    tenant_id: str,
    *,
    is_active: bool,
    exclude_roles: tuple[str, ...] = (),
) -> int:
    # Bulk (de)activation; callers own the transaction boundary.
    stmt = update(User).where(tenant_predicate(User, tenant_id))
    if exclude_roles:
        stmt = stmt.where(User.role.not_in(exclude_roles))
    result = await session.execute(stmt.values(is_active=is_active))
    return result.rowcount or 0
