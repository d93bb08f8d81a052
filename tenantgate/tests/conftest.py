from __future__ import annotations

import asyncio
import os
from pathlib import Path
import tempfile

# Point the engine at a throwaway SQLite file before any tenantgate module builds it.
_TEST_DB_PATH = Path(tempfile.gettempdir()) / f"tenantgate-test-{os.getpid()}.db"
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DB_PATH}")
os.environ.setdefault("STATE_BACKEND", "memory")
os.environ.setdefault("JWT_SECRET", "test-secret-with-enough-length-for-hs256")
os.environ.setdefault("TRIAL_SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import delete  # noqa: E402

from tenantgate.core.config import get_settings  # noqa: E402
from tenantgate.domain.models import Base, Tenant, User  # noqa: E402
from tenantgate.persistence.db import SessionLocal, engine  # noqa: E402
from tenantgate.services.state_store import reset_state_store_connections  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def create_schema() -> None:
    # Build the schema once from model metadata; there are no migrations to replay.
    async def _create() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()

    asyncio.run(_create())
    yield
    if _TEST_DB_PATH.exists():
        _TEST_DB_PATH.unlink()


@pytest.fixture(autouse=True)
async def reset_tables_between_tests() -> None:
    # Every test starts from empty tenant/user tables.
    async with SessionLocal() as session:
        await session.execute(delete(User))
        await session.execute(delete(Tenant))
        await session.commit()
    yield


@pytest.fixture(autouse=True)
async def dispose_engine_between_tests() -> None:
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    yield
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> None:
    # Clear settings cache between tests to avoid leaking env overrides.
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_redis_connections() -> None:
    # Drop the cached Redis client so no test reuses one bound to a closed loop.
    reset_state_store_connections()
    yield
    reset_state_store_connections()
