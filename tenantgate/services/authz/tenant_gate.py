from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Iterable, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.paths import first_matching_prefix
from tenantgate.domain.models import Tenant
from tenantgate.domain.results import Err, Ok, Result
from tenantgate.persistence.repos.tenants import get_tenant
from tenantgate.services.auth.roles import FRONT_DESK_ROLE, is_platform_operator
from tenantgate.services.auth.tokens import Principal


logger = logging.getLogger(__name__)

OPERATIONAL_ACCESS_DENIED = "SUPER_ADMIN_OPERATIONAL_ACCESS_DENIED"
UNCLASSIFIED_PATH_DENIED = "SUPER_ADMIN_UNCLASSIFIED_PATH_DENIED"
TENANT_BOUNDARY_VIOLATION = "TENANT_BOUNDARY_VIOLATION"
TENANT_NOT_FOUND = "TENANT_NOT_FOUND"
TENANT_INACTIVE = "TENANT_INACTIVE"
TENANT_LOOKUP_FAILED = "TENANT_LOOKUP_FAILED"

PATH_NOT_OPERATOR = "not_operator"
PATH_MANAGEMENT = "management"
PATH_UNCLASSIFIED = "unclassified"


@dataclass(frozen=True)
class AccessDenial:
    # Carries the exact client-facing body so the API edge never rewrites the code.
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)

    @property
    def code(self) -> str | None:
        return self.body.get("error") or self.body.get("code")


def _deny(status_code: int, message: str, *, error: str | None = None, **extra: Any) -> Err[AccessDenial]:
    body: dict[str, Any] = {"message": message}
    if error is not None:
        body["error"] = error
    body.update(extra)
    return Err(AccessDenial(status_code=status_code, body=body))


def tenant_is_operational(tenant: Tenant) -> bool:
    # The platform owner sits outside the subscription lifecycle and is always active.
    return bool(tenant.is_platform_owner or tenant.is_active)


async def resolve_tenant(session: AsyncSession, principal: Principal) -> Result[Tenant, AccessDenial]:
    # One tenant-store read per request; the principal's tenant must exist and be active.
    try:
        tenant = await get_tenant(session, principal.tenant_id)
    except SQLAlchemyError:
        logger.exception("tenant_lookup_failed tenant_id=%s", principal.tenant_id)
        return _deny(503, "Tenant context unavailable", error=TENANT_LOOKUP_FAILED)
    if tenant is None:
        logger.warning("tenant_not_found tenant_id=%s user_id=%s", principal.tenant_id, principal.user_id)
        return _deny(401, "Invalid tenant context", error=TENANT_NOT_FOUND)
    if not tenant_is_operational(tenant):
        logger.info("tenant_inactive tenant_id=%s status=%s", tenant.id, tenant.subscription_status)
        extra: dict[str, Any] = {"subscriptionStatus": tenant.subscription_status}
        if tenant.suspension_reason:
            extra["reason"] = tenant.suspension_reason
        return _deny(403, "Tenant account is inactive", error=TENANT_INACTIVE, **extra)
    return Ok(tenant)


def check_platform_path(
    principal: Principal,
    path: str,
    settings: Settings | None = None,
) -> Result[str, AccessDenial]:
    """Confine the platform operator to platform-management endpoints.

    The operational deny-list is consulted first with plain string prefixes, so
    "/api/billing" also refuses "/api/billing-plans" even though it is allow-listed.
    Paths on neither list are refused too unless ``platform_gate_default_allow`` is set.
    """
    if not is_platform_operator(principal.role):
        return Ok(PATH_NOT_OPERATOR)
    settings = settings or get_settings()

    if first_matching_prefix(
        path, settings.platform_operational_deny_prefixes, segment_aware=False
    ):
        logger.error("platform_operator_operational_access_denied user_id=%s path=%s", principal.user_id, path)
        return _deny(
            403,
            "Super admin cannot access operational tenant data for security compliance",
            error=OPERATIONAL_ACCESS_DENIED,
        )

    if first_matching_prefix(path, settings.platform_management_allow_prefixes):
        logger.info("platform_operator_management_access user_id=%s path=%s", principal.user_id, path)
        return Ok(PATH_MANAGEMENT)

    if settings.platform_gate_default_allow:
        logger.warning("platform_operator_unclassified_path_allowed user_id=%s path=%s", principal.user_id, path)
        return Ok(PATH_UNCLASSIFIED)
    logger.warning("platform_operator_unclassified_path_denied user_id=%s path=%s", principal.user_id, path)
    return _deny(
        403,
        "Super admin access is limited to platform management endpoints",
        error=UNCLASSIFIED_PATH_DENIED,
    )


def check_tenant_scope(
    principal: Principal,
    target_tenant_ids: Iterable[str | None],
) -> Result[None, AccessDenial]:
    # Every tenant id a request addresses must be the principal's own.
    if is_platform_operator(principal.role):
        return Ok(None)
    for target in target_tenant_ids:
        if target is None or target == "":
            continue
        if str(target) != principal.tenant_id:
            logger.warning(
                "tenant_boundary_violation user_id=%s tenant_id=%s target_tenant_id=%s",
                principal.user_id,
                principal.tenant_id,
                target,
            )
            return _deny(403, "Cross-tenant access denied", error=TENANT_BOUNDARY_VIOLATION)
    return Ok(None)


def check_roles(
    principal: Principal,
    tenant: Tenant | None,
    allowed_roles: Sequence[str],
    settings: Settings | None = None,
) -> Result[None, AccessDenial]:
    settings = settings or get_settings()
    # Front-desk staff only exist in care-delivery organizations.
    if (
        principal.role == FRONT_DESK_ROLE
        and tenant is not None
        and tenant.type
        and tenant.type not in settings.front_desk_tenant_types
    ):
        return _deny(403, "Receptionist role is only available for hospitals and clinics")
    if principal.role not in allowed_roles:
        return _deny(
            403,
            "Insufficient permissions",
            required=list(allowed_roles),
            current=principal.role,
        )
    return Ok(None)


def check_platform_operator(principal: Principal) -> Result[None, AccessDenial]:
    if not is_platform_operator(principal.role):
        return _deny(403, "Super admin access required")
    return Ok(None)
