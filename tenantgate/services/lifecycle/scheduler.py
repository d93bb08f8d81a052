from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from typing import Any, Awaitable, Callable

from tenantgate.core.config import get_settings
from tenantgate.services.lifecycle.trial import SessionFactory, SweepReport, run_trial_sweep


logger = logging.getLogger(__name__)


class PeriodicTask:
    """Cooperative asyncio loop with an explicit start/stop lifecycle.

    Construction has no side effects. ``start()`` schedules the loop, which ticks once
    immediately and then every ``interval_s``. ``stop()`` lets an in-flight tick finish
    before returning. ``run_once()`` is single-flight: a tick requested while another is
    running is skipped, not queued.
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        *,
        interval_s: float,
        run_on_start: bool = True,
    ) -> None:
        self.name = name
        self._func = func
        self._interval_s = max(0.01, float(interval_s))
        self._run_on_start = run_on_start
        self._task: asyncio.Task[None] | None = None
        self._stop_event: asyncio.Event | None = None
        self._in_flight = False
        self.ticks = 0
        self.skipped = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> bool:
        if self._in_flight:
            self.skipped += 1
            logger.info("periodic_task_tick_skipped name=%s reason=in_flight", self.name)
            return False
        self._in_flight = True
        try:
            await self._func()
        except Exception:  # noqa: BLE001 - keep the loop alive while surfacing failures in logs.
            logger.exception("periodic_task_tick_failed name=%s", self.name)
        finally:
            self._in_flight = False
            self.ticks += 1
        return True

    async def _loop(self, stop_event: asyncio.Event) -> None:
        if self._run_on_start:
            await self.run_once()
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval_s)
            except asyncio.TimeoutError:
                await self.run_once()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event), name=self.name)
        logger.info("periodic_task_started name=%s interval_s=%s", self.name, self._interval_s)

    async def stop(self) -> None:
        if self._task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        task = self._task
        self._task = None
        await task
        logger.info("periodic_task_stopped name=%s", self.name)


class TrialLifecycleScheduler(PeriodicTask):
    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        interval_s: int | None = None,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        settings = get_settings()
        self._session_factory = session_factory
        self._sweep_interval_s = settings.trial_sweep_interval_s if interval_s is None else interval_s
        # Allow injecting time for deterministic tests.
        self._now_provider = now_provider
        self.last_report: SweepReport | None = None
        super().__init__("trial_lifecycle", self._tick, interval_s=self._sweep_interval_s)

    async def _tick(self) -> None:
        now = self._now_provider() if self._now_provider else None
        self.last_report = await run_trial_sweep(
            self._session_factory,
            now=now,
            interval_s=self._sweep_interval_s,
        )
