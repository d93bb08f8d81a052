from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantgate.persistence.guards import TenantPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _body_from_detail(detail: Any, status_code: int) -> dict[str, Any]:
    # Dict details are already client-facing bodies; return them untouched.
    if isinstance(detail, dict):
        return detail
    if isinstance(detail, str):
        return {"message": detail, "code": _default_code(status_code)}
    return {"message": "Request failed", "code": _default_code(status_code)}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        content=_body_from_detail(exc.detail, exc.status_code),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Routing 404/405 errors share the same body shape.
    return JSONResponse(
        content=_body_from_detail(exc.detail, exc.status_code),
        status_code=exc.status_code,
        headers=exc.headers,
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    logger.info("request_validation_failed path=%s errors=%s", request.url.path, len(exc.errors()))
    return JSONResponse(
        content={"message": "Validation error", "code": "VALIDATION_ERROR"},
        status_code=422,
    )


async def tenant_predicate_exception_handler(
    request: Request, exc: TenantPredicateError
) -> JSONResponse:
    logger.error("tenant_predicate_missing path=%s", request.url.path)
    return JSONResponse(
        content={"message": "Tenant scope required", "code": "TENANT_SCOPE_REQUIRED"},
        status_code=403,
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error body.
    logger.exception("unhandled_exception path=%s", request.url.path)
    return JSONResponse(
        content={"message": "Internal server error", "code": "INTERNAL_ERROR"},
        status_code=500,
    )
