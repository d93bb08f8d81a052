from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Callable

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from tenantgate.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    tenant_predicate_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from tenantgate.apps.api.rate_limit import RateLimiter, enforce_rate_limit
from tenantgate.apps.api.routes.csrf import router as csrf_router
from tenantgate.apps.api.routes.health import router as health_router
from tenantgate.apps.api.routes.platform import router as platform_router
from tenantgate.apps.api.routes.tenant import router as tenant_router
from tenantgate.core.config import get_settings
from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.persistence.guards import TenantPredicateError
from tenantgate.services.csrf import CsrfGuard
from tenantgate.services.lifecycle.scheduler import PeriodicTask, TrialLifecycleScheduler
from tenantgate.services.lifecycle.trial import SessionFactory
from tenantgate.services.state_store import StateStore, build_state_store


logger = logging.getLogger(__name__)

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Cache-Control": "no-cache, no-store, must-revalidate, private",
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # Background loops are owned by the app and stopped before the process exits.
    settings = get_settings()
    tasks: list[PeriodicTask] = []

    csrf_sweeper = PeriodicTask(
        "csrf_purge",
        app.state.csrf_guard.purge_stale,
        interval_s=settings.csrf_sweep_interval_s,
        run_on_start=False,
    )
    csrf_sweeper.start()
    tasks.append(csrf_sweeper)

    app.state.trial_scheduler = None
    if settings.trial_scheduler_enabled:
        scheduler = TrialLifecycleScheduler(app.state.session_factory)
        scheduler.start()
        tasks.append(scheduler)
        app.state.trial_scheduler = scheduler
    try:
        yield
    finally:
        for task in reversed(tasks):
            await task.stop()


def create_app(
    *,
    state_store: StateStore | None = None,
    session_factory: SessionFactory | None = None,
    time_provider: Callable[[], float] | None = None,
) -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(title="tenantgate API", lifespan=lifespan)

    # Shared state is attached here rather than in lifespan so ASGI test clients see it.
    store = state_store if state_store is not None else build_state_store(settings)
    app.state.state_store = store
    app.state.session_factory = session_factory or SessionLocal
    app.state.csrf_guard = CsrfGuard(store, time_provider=time_provider)
    app.state.rate_limiter = RateLimiter(store, time_provider=time_provider)

    @app.middleware("http")
    async def security_headers_middleware(request: Request, call_next):  # type: ignore[override]
        response = await call_next(request)
        for key, value in _SECURITY_HEADERS.items():
            response.headers.setdefault(key, value)
        return response

    # Registered last so it wraps everything else and runs before authentication.
    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next):  # type: ignore[override]
        return await enforce_rate_limit(request, call_next)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(TenantPredicateError)
    async def _tenant_predicate_exception_handler(request: Request, exc: TenantPredicateError):
        return await tenant_predicate_exception_handler(request, exc)

    prefix = settings.api_prefix
    app.include_router(health_router, prefix=prefix)
    app.include_router(csrf_router, prefix=prefix)
    app.include_router(tenant_router, prefix=prefix)
    # Platform-management endpoints; the path gate confines the operator to these.
    app.include_router(platform_router, prefix=prefix)

    logger.info("app_created state_backend=%s prefix=%s", settings.state_backend, prefix)
    return app


app = create_app()
