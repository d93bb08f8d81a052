from __future__ import annotations

import asyncio

from tenantgate.domain.models import Base
from tenantgate.persistence.db import engine


async def _init() -> None:
    # Create the tenant/user tables this service reads; the wider schema is owned elsewhere.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    await engine.dispose()
    print("tables created")


if __name__ == "__main__":
    asyncio.run(_init())
