from __future__ import annotations

from tenantgate.workers.trial_worker import WorkerSettings, cron_minutes, trial_sweep


def test_cron_minutes_follow_sweep_interval() -> None:
    assert cron_minutes(3600) == {0}
    assert cron_minutes(7200) == {0}
    assert cron_minutes(900) == {0, 15, 30, 45}
    assert cron_minutes(30) == set(range(60))


def test_worker_registers_hourly_sweep_that_runs_at_startup() -> None:
    assert WorkerSettings.functions == [trial_sweep]
    (job,) = WorkerSettings.cron_jobs
    assert job.run_at_startup is True
    assert job.minute == {0}
