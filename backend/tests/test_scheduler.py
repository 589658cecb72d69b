"""
Unit tests for the repeating jobs and the scheduler service.
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_settings
from scheduler.service import (
    JOB_COMPLETED_SYNC,
    JOB_EXPIRY_SWEEP,
    JOB_LIVE_REFRESH,
    JOB_TRANSITION,
    RepeatingJob,
    SchedulerService,
    UnknownJobError,
    connect_with_retry,
)


# ── RepeatingJob ────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_run_once_records_result() -> None:
    job = RepeatingJob("count", 60, AsyncMock(return_value=3))
    run = await job.run_once()
    assert run.ok
    assert run.result == 3
    assert run.trigger == "manual"
    assert run.finished_at is not None
    assert job.last_run is run
    assert not job.running


@pytest.mark.asyncio
async def test_run_once_captures_errors() -> None:
    job = RepeatingJob("boom", 60, AsyncMock(side_effect=RuntimeError("provider down")))
    run = await job.run_once()
    assert not run.ok
    assert run.error == "provider down"
    assert not job.running


@pytest.mark.asyncio
async def test_overlapping_run_is_skipped() -> None:
    release = asyncio.Event()
    entered = asyncio.Event()
    calls = 0

    async def slow() -> str:
        nonlocal calls
        calls += 1
        entered.set()
        await release.wait()
        return "done"

    job = RepeatingJob("slow", 60, slow)
    first = asyncio.create_task(job.run_once("timer"))
    await entered.wait()
    assert job.running

    second = await job.run_once("manual")
    assert second.skipped
    assert not second.ok

    release.set()
    finished = await first
    assert finished.ok and finished.result == "done"
    assert calls == 1


@pytest.mark.asyncio
async def test_timer_runs_job_repeatedly_until_stopped() -> None:
    func = AsyncMock(return_value=None)
    job = RepeatingJob("tick", 0.01, func)
    job.start(run_immediately=True)
    assert job.started
    await asyncio.sleep(0.05)
    await job.stop()
    assert not job.started
    assert func.await_count >= 2

    count = func.await_count
    await asyncio.sleep(0.03)
    assert func.await_count == count


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_run() -> None:
    release = asyncio.Event()
    finished = []

    async def slow() -> None:
        await release.wait()
        finished.append(True)

    job = RepeatingJob("slow", 60, slow)
    job.start(run_immediately=True)
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    stopper = asyncio.create_task(job.stop())
    await asyncio.sleep(0.01)
    assert not stopper.done()
    release.set()
    await stopper
    assert finished == [True]


# ── SchedulerService ────────────────────────────────────────────────────

def fake_runtime() -> MagicMock:
    runtime = MagicMock()
    runtime.settings = make_settings()
    runtime.transition.process_transitions = AsyncMock(return_value=0)
    runtime.ingest.refresh_live_matches = AsyncMock(return_value=2)
    runtime.ingest.sync_completed_matches = AsyncMock(return_value=1)
    runtime.live_store.purge_expired = AsyncMock(return_value=0)
    return runtime


def test_from_runtime_registers_all_jobs() -> None:
    service = SchedulerService.from_runtime(fake_runtime())
    assert set(service.jobs) == {JOB_TRANSITION, JOB_LIVE_REFRESH, JOB_COMPLETED_SYNC, JOB_EXPIRY_SWEEP}
    assert service.jobs[JOB_TRANSITION].interval_s == make_settings().scheduler_transition_interval_s


@pytest.mark.asyncio
async def test_trigger_runs_named_job() -> None:
    runtime = fake_runtime()
    service = SchedulerService.from_runtime(runtime)
    run = await service.trigger(JOB_LIVE_REFRESH)
    assert run.ok and run.result == 2
    runtime.ingest.refresh_live_matches.assert_awaited_once()

    status = service.status()
    assert status[JOB_LIVE_REFRESH]["last_run"]["result"] == 2
    assert status[JOB_TRANSITION]["last_run"] is None


@pytest.mark.asyncio
async def test_trigger_unknown_job() -> None:
    service = SchedulerService.from_runtime(fake_runtime())
    with pytest.raises(UnknownJobError):
        await service.trigger("nope")


@pytest.mark.asyncio
async def test_start_with_run_on_start_refreshes_live_immediately() -> None:
    runtime = fake_runtime()
    service = SchedulerService.from_runtime(runtime, run_on_start=True)
    service.start()
    await asyncio.sleep(0.01)
    await service.stop()
    runtime.ingest.refresh_live_matches.assert_awaited()
    runtime.transition.process_transitions.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_until_shutdown_stops_jobs() -> None:
    service = SchedulerService.from_runtime(fake_runtime(), run_on_start=False)
    task = asyncio.create_task(service.run_until_shutdown())
    await asyncio.sleep(0.01)
    assert all(job.started for job in service.jobs.values())
    service.request_shutdown()
    await task
    assert not any(job.started for job in service.jobs.values())


# ── connect_with_retry ──────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_connect_with_retry_retries_then_succeeds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("scheduler.service.CONNECT_RETRY_BASE_DELAY_S", 0.0)
    connect = AsyncMock(side_effect=[ConnectionError("refused"), None])
    await connect_with_retry(connect, "Redis")
    assert connect.await_count == 2


@pytest.mark.asyncio
async def test_connect_with_retry_gives_up(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("scheduler.service.CONNECT_RETRY_BASE_DELAY_S", 0.0)
    monkeypatch.setattr("scheduler.service.CONNECT_RETRY_ATTEMPTS", 3)
    connect = AsyncMock(side_effect=ConnectionError("refused"))
    with pytest.raises(ConnectionError):
        await connect_with_retry(connect, "Database")
    assert connect.await_count == 3
