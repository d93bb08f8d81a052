from __future__ import annotations

import logging

from arq import cron
from arq.connections import RedisSettings

from tenantgate.core.config import get_settings
from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.lifecycle.trial import run_trial_sweep


logger = logging.getLogger(__name__)


async def trial_sweep(ctx) -> dict:
    # One lifecycle tick; the debounce stamp makes overlapping API-side ticks harmless.
    settings = get_settings()
    report = await run_trial_sweep(SessionLocal, interval_s=settings.trial_sweep_interval_s)
    return report.as_dict()


def cron_minutes(interval_s: int) -> set[int]:
    # arq cron has minute resolution; sub-hour intervals become evenly spaced minutes.
    step = max(1, int(interval_s) // 60)
    if step >= 60:
        return {0}
    return set(range(0, 60, step))


async def _startup(ctx) -> None:
    configure_logging()
    logger.info("trial_worker_started")


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [trial_sweep]
    cron_jobs = [
        cron(
            trial_sweep,
            minute=cron_minutes(settings.trial_sweep_interval_s),
            run_at_startup=True,
            unique=True,
        )
    ]
    on_startup = _startup
