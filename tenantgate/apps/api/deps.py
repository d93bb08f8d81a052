from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any, AsyncGenerator

from fastapi import Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.apps.api.rate_limit import client_ip
from tenantgate.core.config import get_settings
from tenantgate.core.paths import first_matching_prefix
from tenantgate.domain.models import Tenant
from tenantgate.domain.results import Err
from tenantgate.persistence.db import get_session
from tenantgate.services.auth.tokens import AUTH_ERROR_MESSAGES, AuthErrorKind, Principal, verify_token
from tenantgate.services.authz.tenant_gate import (
    AccessDenial,
    check_platform_operator,
    check_platform_path,
    check_roles,
    check_tenant_scope,
    resolve_tenant,
)
from tenantgate.services.csrf import SAFE_METHODS, CsrfFailure, CsrfGuard, csrf_error_body, fingerprint


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


@dataclass(frozen=True)
class TenantContext:
    # Output of the full gate chain, handed to route handlers.
    principal: Principal
    tenant: Tenant


def _auth_error(kind: AuthErrorKind) -> HTTPException:
    # Keep the precise code; clients branch on it to decide between re-login and retry.
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": AUTH_ERROR_MESSAGES[kind], "code": kind.value},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _denial_error(denial: AccessDenial) -> HTTPException:
    return HTTPException(status_code=denial.status_code, detail=dict(denial.body))


def _csrf_error(failure: CsrfFailure) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=csrf_error_body(failure))


def _parse_bearer_token(header_value: str | None) -> str | None:
    # Anything other than "Bearer <token>" counts as no credential at all.
    if not header_value:
        return None
    parts = header_value.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


async def _json_body(request: Request) -> dict[str, Any]:
    if request.method in SAFE_METHODS:
        return {}
    if "application/json" not in request.headers.get("content-type", ""):
        return {}
    # Starlette caches the body, so route-level body parsing still sees it.
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    raw_token = _parse_bearer_token(request.headers.get("Authorization"))
    result = await verify_token(db, raw_token)
    if isinstance(result, Err):
        raise _auth_error(result.error)
    request.state.principal = result.value
    return result.value


async def get_current_tenant(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
) -> Tenant:
    result = await resolve_tenant(db, principal)
    if isinstance(result, Err):
        raise _denial_error(result.error)
    request.state.tenant = result.value
    return result.value


def get_csrf_guard(request: Request) -> CsrfGuard:
    return request.app.state.csrf_guard


def request_fingerprint(request: Request) -> str:
    settings = get_settings()
    return fingerprint(client_ip(request, settings), request.headers.get(settings.csrf_client_header))


async def enforce_csrf(
    request: Request,
    response: Response,
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> None:
    """Mint on safe/public requests, validate on unsafe ones."""
    settings = get_settings()
    fp = request_fingerprint(request)
    if request.method in SAFE_METHODS or first_matching_prefix(
        request.url.path, settings.csrf_public_prefixes
    ):
        token = await guard.issue(fp)
        response.headers[settings.csrf_header_name] = token
        return

    supplied = request.headers.get(settings.csrf_header_name)
    if not supplied:
        body_token = (await _json_body(request)).get(settings.csrf_body_field)
        supplied = body_token if isinstance(body_token, str) else None
    if not supplied:
        supplied = request.query_params.get(settings.csrf_body_field)

    result = await guard.validate(fp, supplied)
    if isinstance(result, Err):
        raise _csrf_error(result.error)


async def _target_tenant_ids(request: Request) -> list[str | None]:
    body = await _json_body(request)
    return [
        request.path_params.get("tenant_id"),
        request.headers.get("X-Tenant-Id"),
        body.get("tenant_id"),
        body.get("tenantId"),
    ]


async def require_tenant_scope(
    request: Request,
    tenant: Tenant = Depends(get_current_tenant),
    principal: Principal = Depends(get_current_principal),
) -> TenantContext:
    # Token, tenant, platform path gate and tenant scope; CSRF is left to the caller.
    path_result = check_platform_path(principal, request.url.path)
    if isinstance(path_result, Err):
        raise _denial_error(path_result.error)

    scope_result = check_tenant_scope(principal, await _target_tenant_ids(request))
    if isinstance(scope_result, Err):
        raise _denial_error(scope_result.error)
    return TenantContext(principal=principal, tenant=tenant)


async def require_tenant_context(
    request: Request,
    response: Response,
    context: TenantContext = Depends(require_tenant_scope),
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> TenantContext:
    """Full gate chain: token, tenant, platform path gate, tenant scope, then CSRF."""
    await enforce_csrf(request, response, guard)
    return context


def require_role(*allowed_roles: str):
    # Dependency factory to enforce role membership ahead of the CSRF guard.
    async def _dependency(
        request: Request,
        response: Response,
        context: TenantContext = Depends(require_tenant_scope),
        guard: CsrfGuard = Depends(get_csrf_guard),
    ) -> TenantContext:
        result = check_roles(context.principal, context.tenant, allowed_roles)
        if isinstance(result, Err):
            raise _denial_error(result.error)
        await enforce_csrf(request, response, guard)
        return context

    return _dependency


async def require_platform_operator(
    request: Request,
    response: Response,
    context: TenantContext = Depends(require_tenant_scope),
    guard: CsrfGuard = Depends(get_csrf_guard),
) -> TenantContext:
    result = check_platform_operator(context.principal)
    if isinstance(result, Err):
        raise _denial_error(result.error)
    await enforce_csrf(request, response, guard)
    return context
