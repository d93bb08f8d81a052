from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface tenant-scoped queries issued without a tenant id.
    message: str


def require_tenant_id(tenant_id: str | None) -> str:
    # Refuse to build tenant-scoped queries from an empty tenant identifier.
    if not tenant_id:
        raise TenantPredicateError("Tenant predicate required but tenant_id is missing")
    return tenant_id


def tenant_predicate(model, tenant_id: str | None) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    return model.tenant_id == require_tenant_id(tenant_id)
