from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import time
from typing import Callable

from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import StateStoreError
from tenantgate.core.paths import first_matching_prefix
from tenantgate.services.state_store import StateStore


logger = logging.getLogger(__name__)

TIER_AUTH = "auth"
TIER_API = "api"

_KEY_PREFIX = "rl"
_THROTTLE_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass(frozen=True)
class TierConfig:
    # Fixed window length and the number of requests allowed inside it.
    window_s: int
    max_requests: int


@dataclass(frozen=True)
class RateLimitDecision:
    # Capture the outcome and retry hints for a rate-limited request.
    allowed: bool
    tier: str
    count: int
    limit: int
    retry_after_s: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


def client_ip(request: Request, settings: Settings | None = None) -> str:
    # Source address for throttling and CSRF fingerprints; proxies are trusted only when configured.
    settings = settings or get_settings()
    if settings.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def tier_for_path(path: str, settings: Settings | None = None) -> str | None:
    # Return None for exempt liveness paths so they are never counted.
    settings = settings or get_settings()
    if path in settings.rl_exempt_paths:
        return None
    if first_matching_prefix(path, settings.rl_auth_path_prefixes):
        return TIER_AUTH
    return TIER_API


def tier_config(tier: str, settings: Settings | None = None) -> TierConfig:
    settings = settings or get_settings()
    if tier == TIER_AUTH:
        return TierConfig(settings.rl_auth_window_s, settings.rl_auth_max_requests)
    return TierConfig(settings.rl_api_window_s, settings.rl_api_max_requests)


class RateLimiter:
    def __init__(self, store: StateStore, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._store = store
        self._time_provider = time_provider or time.time

    async def check(self, *, source: str, tier: str, config: TierConfig) -> RateLimitDecision:
        """Count one request against the source's bucket for the current window.

        Windows are aligned to multiples of ``window_s`` since the epoch, so every
        instance sharing a store agrees on bucket boundaries.
        """
        window_s = max(1, int(config.window_s))
        now = self._time_provider()
        window_index = int(now // window_s)
        key = f"{_KEY_PREFIX}:{tier}:{source}:{window_index}"
        count = await self._store.incr(key, ttl_s=window_s)
        window_end = (window_index + 1) * window_s
        retry_after_s = max(1, int(math.ceil(window_end - now)))
        return RateLimitDecision(
            allowed=count <= config.max_requests,
            tier=tier,
            count=count,
            limit=config.max_requests,
            retry_after_s=retry_after_s,
        )


def _throttle_response(decision: RateLimitDecision) -> JSONResponse:
    # Construct a stable 429 response with retry hints.
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": _THROTTLE_MESSAGE, "retryAfter": decision.retry_after_s},
        headers={
            "Retry-After": str(decision.retry_after_s),
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Tier": decision.tier,
        },
    )


def _unavailable_response() -> JSONResponse:
    # Return a stable 503 when rate limit storage is unavailable and fail-closed.
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"message": "Rate limiting unavailable", "code": "RATE_LIMIT_UNAVAILABLE"},
    )


async def enforce_rate_limit(request: Request, call_next: Callable) -> Response:
    """HTTP middleware body; runs before authentication so anonymous floods are throttled too."""
    settings = get_settings()
    if not settings.rate_limit_enabled:
        return await call_next(request)
    tier = tier_for_path(request.url.path, settings)
    if tier is None:
        return await call_next(request)

    limiter: RateLimiter = request.app.state.rate_limiter
    source = client_ip(request, settings)
    try:
        decision = await limiter.check(source=source, tier=tier, config=tier_config(tier, settings))
    except StateStoreError:
        if settings.rl_fail_mode.lower() == "closed":
            logger.exception("rate_limit_unavailable path=%s", request.url.path)
            return _unavailable_response()
        logger.warning("rate_limit_degraded path=%s", request.url.path)
        response = await call_next(request)
        response.headers["X-RateLimit-Status"] = "degraded"
        return response

    if not decision.allowed:
        logger.warning(
            "rate_limited tier=%s source=%s count=%s limit=%s",
            decision.tier,
            source,
            decision.count,
            decision.limit,
        )
        return _throttle_response(decision)

    response = await call_next(request)
    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return response
