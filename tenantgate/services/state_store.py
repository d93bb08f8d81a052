from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from tenantgate.core.config import Settings, get_settings
from tenantgate.core.errors import StateStoreError


logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Key/value store behind CSRF records and rate-limit buckets.

    The in-memory backend serves single-instance deployments; every instance behind a
    load balancer must point at the Redis backend or counters and tokens diverge.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, *, ttl_s: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def incr(self, key: str, *, ttl_s: int) -> int: ...

    async def expire(self, key: str, ttl_s: int) -> None: ...

    async def purge_expired(self) -> int: ...


class InMemoryStateStore:
    def __init__(self, *, time_provider: Callable[[], float] | None = None) -> None:
        # Allow injecting time for deterministic tests.
        self._time_provider = time_provider or time.time
        self._entries: dict[str, tuple[str, float | None]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> tuple[str, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at = entry[1]
        if expires_at is not None and expires_at <= now:
            self._entries.pop(key, None)
            return None
        return entry

    def _deadline(self, ttl_s: int | None, now: float) -> float | None:
        if ttl_s is None:
            return None
        return now + max(1, int(ttl_s))

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key, self._time_provider())
            return entry[0] if entry else None

    async def set(self, key: str, value: str, *, ttl_s: int | None = None) -> None:
        async with self._lock:
            self._entries[key] = (value, self._deadline(ttl_s, self._time_provider()))

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def incr(self, key: str, *, ttl_s: int) -> int:
        async with self._lock:
            now = self._time_provider()
            entry = self._live(key, now)
            if entry is None:
                # TTL is fixed when the counter is created, like INCR followed by EXPIRE NX.
                self._entries[key] = ("1", self._deadline(ttl_s, now))
                return 1
            count = int(entry[0]) + 1
            self._entries[key] = (str(count), entry[1])
            return count

    async def expire(self, key: str, ttl_s: int) -> None:
        async with self._lock:
            now = self._time_provider()
            entry = self._live(key, now)
            if entry is not None:
                self._entries[key] = (entry[0], self._deadline(ttl_s, now))

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self._time_provider()
            stale = [
                key
                for key, (_, expires_at) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


_redis_pool: Redis | None = None
_redis_loop: asyncio.AbstractEventLoop | None = None
_redis_lock = asyncio.Lock()


async def _get_redis() -> Redis:
    # Cache Redis connections to avoid reconnecting per request.
    global _redis_pool, _redis_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            _redis_loop = current_loop
    return _redis_pool


class RedisStateStore:
    def __init__(self, *, prefix: str, redis: Redis | None = None) -> None:
        self._prefix = prefix
        self._redis = redis

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def _client(self) -> Redis:
        if self._redis is not None:
            return self._redis
        return await _get_redis()

    async def get(self, key: str) -> str | None:
        try:
            redis = await self._client()
            return await redis.get(self._key(key))
        except RedisError as exc:
            raise StateStoreError(f"state store get failed: {type(exc).__name__}") from exc

    async def set(self, key: str, value: str, *, ttl_s: int | None = None) -> None:
        try:
            redis = await self._client()
            await redis.set(self._key(key), value, ex=ttl_s)
        except RedisError as exc:
            raise StateStoreError(f"state store set failed: {type(exc).__name__}") from exc

    async def delete(self, key: str) -> None:
        try:
            redis = await self._client()
            await redis.delete(self._key(key))
        except RedisError as exc:
            raise StateStoreError(f"state store delete failed: {type(exc).__name__}") from exc

    async def incr(self, key: str, *, ttl_s: int) -> int:
        # Pipeline the increment and the first-write TTL so a crash never leaves an immortal counter.
        try:
            redis = await self._client()
            async with redis.pipeline(transaction=True) as pipe:
                pipe.incr(self._key(key))
                pipe.expire(self._key(key), max(1, int(ttl_s)), nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except RedisError as exc:
            raise StateStoreError(f"state store incr failed: {type(exc).__name__}") from exc

    async def expire(self, key: str, ttl_s: int) -> None:
        try:
            redis = await self._client()
            await redis.expire(self._key(key), max(1, int(ttl_s)))
        except RedisError as exc:
            raise StateStoreError(f"state store expire failed: {type(exc).__name__}") from exc

    async def purge_expired(self) -> int:
        # Redis evicts expired keys itself.
        return 0


def build_state_store(settings: Settings | None = None) -> StateStore:
    settings = settings or get_settings()
    backend = settings.state_backend.lower()
    if backend == "redis":
        logger.info("state_store_backend backend=redis prefix=%s", settings.state_redis_prefix)
        return RedisStateStore(prefix=settings.state_redis_prefix)
    if backend != "memory":
        raise ValueError(f"Unsupported state backend: {settings.state_backend}")
    logger.info("state_store_backend backend=memory")
    return InMemoryStateStore()


def reset_state_store_connections() -> None:
    # Reset cached Redis connections for deterministic test setup.
    global _redis_pool, _redis_loop
    _redis_pool = None
    _redis_loop = None
