from __future__ import annotations

import pytest
from starlette.requests import Request

from tenantgate.apps.api.rate_limit import (
    TIER_API,
    TIER_AUTH,
    RateLimiter,
    TierConfig,
    client_ip,
    tier_config,
    tier_for_path,
)
from tenantgate.core.config import Settings
from tenantgate.services.state_store import InMemoryStateStore
from tenantgate.tests.utils.seed import FakeClock


def _request(headers: dict[str, str] | None = None, host: str = "10.1.1.1") -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/tenant/current",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": (host, 5000),
    }
    return Request(scope)


def test_tier_selection() -> None:
    settings = Settings()
    assert tier_for_path("/api/health", settings) is None
    assert tier_for_path("/api/ping", settings) is None
    assert tier_for_path("/api/auth/login", settings) == TIER_AUTH
    assert tier_for_path("/api/login", settings) == TIER_AUTH
    assert tier_for_path("/api/authors", settings) == TIER_API
    assert tier_for_path("/api/tenant/current", settings) == TIER_API


def test_tier_configs_are_independent() -> None:
    settings = Settings(rl_auth_max_requests=5, rl_api_max_requests=500, rl_auth_window_s=60)
    assert tier_config(TIER_AUTH, settings) == TierConfig(window_s=60, max_requests=5)
    assert tier_config(TIER_API, settings) == TierConfig(window_s=900, max_requests=500)


def test_client_ip_honors_forwarded_for_only_when_trusted() -> None:
    request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})
    assert client_ip(request, Settings()) == "10.1.1.1"
    assert client_ip(request, Settings(trust_forwarded_for=True)) == "203.0.113.7"


@pytest.mark.asyncio
async def test_request_over_window_limit_is_throttled_per_source() -> None:
    clock = FakeClock(start=9_000.0)
    limiter = RateLimiter(InMemoryStateStore(time_provider=clock), time_provider=clock)
    config = TierConfig(window_s=900, max_requests=3)

    for expected in (1, 2, 3):
        decision = await limiter.check(source="10.0.0.1", tier=TIER_API, config=config)
        assert decision.allowed
        assert decision.count == expected

    clock.advance(100)
    throttled = await limiter.check(source="10.0.0.1", tier=TIER_API, config=config)
    assert not throttled.allowed
    assert throttled.remaining == 0
    # Window [9000, 9900): retry lands exactly on the boundary.
    assert throttled.retry_after_s == 800

    other = await limiter.check(source="10.0.0.2", tier=TIER_API, config=config)
    assert other.allowed


@pytest.mark.asyncio
async def test_tiers_count_separately_and_windows_reset() -> None:
    clock = FakeClock(start=9_000.0)
    limiter = RateLimiter(InMemoryStateStore(time_provider=clock), time_provider=clock)
    config = TierConfig(window_s=900, max_requests=1)

    assert (await limiter.check(source="ip", tier=TIER_AUTH, config=config)).allowed
    assert not (await limiter.check(source="ip", tier=TIER_AUTH, config=config)).allowed
    assert (await limiter.check(source="ip", tier=TIER_API, config=config)).allowed

    clock.advance(900)
    assert (await limiter.check(source="ip", tier=TIER_AUTH, config=config)).allowed


@pytest.mark.asyncio
async def test_retry_after_is_at_least_one_second() -> None:
    clock = FakeClock(start=899.6)
    limiter = RateLimiter(InMemoryStateStore(time_provider=clock), time_provider=clock)
    config = TierConfig(window_s=900, max_requests=0)
    decision = await limiter.check(source="ip", tier=TIER_API, config=config)
    assert not decision.allowed
    assert decision.retry_after_s == 1
