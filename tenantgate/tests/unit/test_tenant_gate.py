from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tenantgate.core.config import Settings
from tenantgate.core.paths import first_matching_prefix, path_has_prefix
from tenantgate.domain.models import Tenant
from tenantgate.domain.results import Err, Ok
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.auth.tokens import Principal
from tenantgate.services.authz.tenant_gate import (
    OPERATIONAL_ACCESS_DENIED,
    PATH_MANAGEMENT,
    PATH_NOT_OPERATOR,
    PATH_UNCLASSIFIED,
    TENANT_BOUNDARY_VIOLATION,
    TENANT_INACTIVE,
    TENANT_NOT_FOUND,
    UNCLASSIFIED_PATH_DENIED,
    check_platform_operator,
    check_platform_path,
    check_roles,
    check_tenant_scope,
    resolve_tenant,
)
from tenantgate.tests.utils.seed import create_tenant


def _principal(role: str, tenant_id: str = "t1") -> Principal:
    issued = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return Principal(
        user_id=f"u-{role}",
        tenant_id=tenant_id,
        role=role,
        username=role,
        issued_at=issued,
        expires_at=issued,
    )


def _tenant(tenant_type: str) -> Tenant:
    return Tenant(id="t1", name="T1", type=tenant_type, is_active=True, subscription_status="active")


def test_prefix_matching_respects_segments() -> None:
    assert path_has_prefix("/api/billing", "/api/billing")
    assert path_has_prefix("/api/billing/invoices/7", "/api/billing")
    assert not path_has_prefix("/api/billing-plans", "/api/billing")
    assert path_has_prefix("/api/auth/login", "/api/auth/")
    assert not path_has_prefix("/api/authors", "/api/auth/")
    assert first_matching_prefix("/api/billing-plans", ["/api/billing"]) is None
    assert first_matching_prefix("/api/billing-plans", ["/api/billing"], segment_aware=False) == "/api/billing"


@pytest.mark.parametrize(
    "path",
    ["/api/prescriptions", "/api/lab-results/9", "/api/billing/invoices", "/api/pharmacy/stock"],
)
def test_operator_denied_on_operational_paths(path: str) -> None:
    result = check_platform_path(_principal("super_admin"), path, Settings())
    assert isinstance(result, Err)
    assert result.error.status_code == 403
    assert result.error.body["error"] == OPERATIONAL_ACCESS_DENIED


def test_operator_deny_list_wins_over_allow_list() -> None:
    settings = Settings(
        platform_management_allow_prefixes=["/api/billing", "/api/prescriptions", "/api/tenants"],
    )
    for path in ("/api/billing/invoices", "/api/prescriptions"):
        result = check_platform_path(_principal("super_admin"), path, settings)
        assert isinstance(result, Err)
        assert result.error.code == OPERATIONAL_ACCESS_DENIED


def test_operator_deny_list_matches_plain_prefixes() -> None:
    # "/api/billing-plans" is allow-listed but still starts with the denied "/api/billing".
    for path in ("/api/billing-plans", "/api/billing-plans/basic"):
        result = check_platform_path(_principal("super_admin"), path, Settings())
        assert isinstance(result, Err)
        assert result.error.code == OPERATIONAL_ACCESS_DENIED


def test_operator_deny_list_holds_when_unclassified_paths_allowed() -> None:
    settings = Settings(platform_gate_default_allow=True)
    for path in ("/api/hospitals/7/records", "/api/lab-orders-export"):
        result = check_platform_path(_principal("super_admin"), path, settings)
        assert isinstance(result, Err)
        assert result.error.code == OPERATIONAL_ACCESS_DENIED


def test_operator_allowed_on_management_paths() -> None:
    settings = Settings()
    for path in ("/api/tenants", "/api/platform/trial-sweep", "/api/tenant-settings/7"):
        assert check_platform_path(_principal("super_admin"), path, settings) == Ok(PATH_MANAGEMENT)


def test_operator_unclassified_path_denied_by_default() -> None:
    result = check_platform_path(_principal("super_admin"), "/api/reports/new-feature", Settings())
    assert isinstance(result, Err)
    assert result.error.body == {
        "message": "Super admin access is limited to platform management endpoints",
        "error": UNCLASSIFIED_PATH_DENIED,
    }


def test_operator_unclassified_path_allowed_when_configured() -> None:
    settings = Settings(platform_gate_default_allow=True)
    assert check_platform_path(_principal("super_admin"), "/api/reports", settings) == Ok(
        PATH_UNCLASSIFIED
    )


def test_non_operator_skips_platform_gate() -> None:
    assert check_platform_path(_principal("physician"), "/api/prescriptions", Settings()) == Ok(
        PATH_NOT_OPERATOR
    )


def test_tenant_scope_rejects_foreign_tenant() -> None:
    principal = _principal("tenant_admin", tenant_id="t1")
    assert check_tenant_scope(principal, [None, "t1", ""]) == Ok(None)
    result = check_tenant_scope(principal, ["t1", "t2"])
    assert isinstance(result, Err)
    assert result.error.status_code == 403
    assert result.error.code == TENANT_BOUNDARY_VIOLATION


def test_tenant_scope_does_not_bind_platform_operator() -> None:
    assert check_tenant_scope(_principal("super_admin", tenant_id="platform"), ["t2"]) == Ok(None)


def test_receptionist_limited_to_care_delivery_tenants() -> None:
    principal = _principal("receptionist")
    allowed = ("receptionist", "tenant_admin")
    settings = Settings()

    assert check_roles(principal, _tenant("hospital"), allowed, settings) == Ok(None)
    assert check_roles(principal, _tenant("clinic"), allowed, settings) == Ok(None)
    result = check_roles(principal, _tenant("pharmacy"), allowed, settings)
    assert isinstance(result, Err)
    assert result.error.body == {
        "message": "Receptionist role is only available for hospitals and clinics"
    }


def test_role_mismatch_lists_required_and_current() -> None:
    result = check_roles(_principal("nurse"), _tenant("hospital"), ("physician", "director"), Settings())
    assert isinstance(result, Err)
    assert result.error.status_code == 403
    assert result.error.body == {
        "message": "Insufficient permissions",
        "required": ["physician", "director"],
        "current": "nurse",
    }


def test_require_platform_operator() -> None:
    assert check_platform_operator(_principal("super_admin")) == Ok(None)
    result = check_platform_operator(_principal("tenant_admin"))
    assert isinstance(result, Err)
    assert result.error.body == {"message": "Super admin access required"}


@pytest.mark.asyncio
async def test_resolve_tenant_outcomes() -> None:
    active_id = await create_tenant(status="active")
    suspended_id = await create_tenant(
        status="suspended", is_active=False, suspension_reason="Trial period expired"
    )
    owner_id = await create_tenant(
        tenant_type="platform", status="active", is_active=False, is_platform_owner=True
    )

    async with SessionLocal() as session:
        found = await resolve_tenant(session, _principal("nurse", tenant_id=active_id))
        assert isinstance(found, Ok)
        assert found.value.id == active_id

        missing = await resolve_tenant(session, _principal("nurse", tenant_id="t-missing"))
        assert isinstance(missing, Err)
        assert missing.error.status_code == 401
        assert missing.error.code == TENANT_NOT_FOUND

        inactive = await resolve_tenant(session, _principal("nurse", tenant_id=suspended_id))
        assert isinstance(inactive, Err)
        assert inactive.error.status_code == 403
        assert inactive.error.code == TENANT_INACTIVE
        assert inactive.error.body["reason"] == "Trial period expired"

        # The platform owner is always treated as active.
        owner = await resolve_tenant(session, _principal("super_admin", tenant_id=owner_id))
        assert isinstance(owner, Ok)
