from __future__ import annotations

import asyncio
import signal

from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.lifecycle.scheduler import TrialLifecycleScheduler


async def _main() -> None:
    # Run the lifecycle scheduler without the API, for deployments that do not use arq.
    configure_logging()
    scheduler = TrialLifecycleScheduler(SessionLocal)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)
    scheduler.start()
    await stop.wait()
    await scheduler.stop()


if __name__ == "__main__":
    asyncio.run(_main())
