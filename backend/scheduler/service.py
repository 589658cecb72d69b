"""
Scheduler service for Live Crease.

Owns the repeating lifecycle jobs (transition detection, live refresh,
completed-catalog sync, expiry sweep). Each job is an independent asyncio
task with its own interval, a start/stop lifecycle and a re-entrancy guard:
a tick or manual trigger that arrives while the job is running is skipped.
Runs embedded in the API process or headless via ``main()``.
"""
from __future__ import annotations

import asyncio
import contextlib
import signal
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import JobRun
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import (
    JOB_DURATION,
    JOB_RUNS,
    JOBS_RUNNING,
    SERVICE_INFO,
    atrack_latency,
    start_metrics_server,
)
from shared.utils.redis_manager import RedisManager

from lifecycle.runtime import LifecycleRuntime, build_runtime

logger = get_logger(__name__)

JOB_TRANSITION = "transition_detection"
JOB_LIVE_REFRESH = "live_refresh"
JOB_COMPLETED_SYNC = "completed_sync"
JOB_EXPIRY_SWEEP = "expiry_sweep"

# Retry connection on startup (e.g. Redis/DB not ready yet in Docker)
CONNECT_RETRY_ATTEMPTS = 10
CONNECT_RETRY_BASE_DELAY_S = 2.0

JobFunc = Callable[[], Awaitable[Any]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UnknownJobError(KeyError):
    """No job is registered under the requested name."""


class RepeatingJob:
    """One named coroutine run every ``interval_s`` seconds, never twice at once."""

    def __init__(self, name: str, interval_s: float, func: JobFunc) -> None:
        self.name = name
        self.interval_s = interval_s
        self._func = func
        self._running = False
        self._last_run: Optional[JobRun] = None
        self._timer: Optional[asyncio.Task[None]] = None
        self._in_flight: set[asyncio.Task[JobRun]] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_run(self) -> Optional[JobRun]:
        return self._last_run

    @property
    def started(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self, run_immediately: bool = False) -> None:
        if self.started:
            return
        self._timer = asyncio.create_task(self._tick_loop(run_immediately), name=f"job:{self.name}")
        logger.info("job_started", job=self.name, interval_s=self.interval_s, run_immediately=run_immediately)

    async def stop(self) -> None:
        """Stop the timer. Runs already in flight are allowed to finish."""
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        logger.info("job_stopped", job=self.name)

    async def _tick_loop(self, run_immediately: bool) -> None:
        if not run_immediately:
            await asyncio.sleep(self.interval_s)
        while True:
            task = asyncio.create_task(self.run_once("timer"))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            await asyncio.sleep(self.interval_s)

    async def run_once(self, trigger: str = "manual") -> JobRun:
        """Run the job now unless it is already running; errors are captured in the returned ``JobRun``."""
        started_at = _now()
        if self._running:
            JOB_RUNS.labels(job=self.name, outcome="skipped").inc()
            logger.info("job_skipped_running", job=self.name, trigger=trigger)
            return JobRun(job=self.name, trigger=trigger, started_at=started_at, finished_at=started_at, skipped=True)

        self._running = True
        JOBS_RUNNING.labels(job=self.name).set(1)
        run = JobRun(job=self.name, trigger=trigger, started_at=started_at)
        try:
            async with atrack_latency(JOB_DURATION, job=self.name):
                run.result = await self._func()
            run.ok = True
            JOB_RUNS.labels(job=self.name, outcome="ok").inc()
        except Exception as exc:
            run.error = str(exc)
            JOB_RUNS.labels(job=self.name, outcome="error").inc()
            logger.error("job_error", job=self.name, trigger=trigger, error=str(exc), exc_info=True)
        finally:
            self._running = False
            JOBS_RUNNING.labels(job=self.name).set(0)
            run.finished_at = _now()
            self._last_run = run

        logger.info(
            "job_finished",
            job=self.name,
            trigger=trigger,
            ok=run.ok,
            result=run.result,
            duration_s=round((run.finished_at - run.started_at).total_seconds(), 3),
        )
        return run


class SchedulerService:
    """Owns the lifecycle jobs and exposes manual triggers and status."""

    def __init__(
        self,
        jobs: Iterable[RepeatingJob],
        settings: Settings | None = None,
        run_on_start: Optional[bool] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._jobs: dict[str, RepeatingJob] = {job.name: job for job in jobs}
        self._run_on_start = self._settings.scheduler_run_on_start if run_on_start is None else run_on_start
        self._shutdown = asyncio.Event()

    @classmethod
    def from_runtime(cls, runtime: LifecycleRuntime, run_on_start: Optional[bool] = None) -> "SchedulerService":
        settings = runtime.settings
        jobs = [
            RepeatingJob(JOB_TRANSITION, settings.scheduler_transition_interval_s, runtime.transition.process_transitions),
            RepeatingJob(JOB_LIVE_REFRESH, settings.scheduler_live_refresh_interval_s, runtime.ingest.refresh_live_matches),
            RepeatingJob(
                JOB_COMPLETED_SYNC, settings.scheduler_completed_sync_interval_s, runtime.ingest.sync_completed_matches
            ),
            RepeatingJob(JOB_EXPIRY_SWEEP, settings.scheduler_expiry_sweep_interval_s, runtime.live_store.purge_expired),
        ]
        return cls(jobs, settings=settings, run_on_start=run_on_start)

    @property
    def jobs(self) -> dict[str, RepeatingJob]:
        return dict(self._jobs)

    def start(self) -> None:
        for job in self._jobs.values():
            job.start(run_immediately=self._run_on_start and job.name == JOB_LIVE_REFRESH)
        logger.info("scheduler_started", jobs=sorted(self._jobs), run_on_start=self._run_on_start)

    async def stop(self) -> None:
        for job in self._jobs.values():
            await job.stop()
        logger.info("scheduler_stopped")

    async def trigger(self, name: str) -> JobRun:
        """Run job ``name`` now. Raises UnknownJobError for an unregistered name."""
        job = self._jobs.get(name)
        if job is None:
            raise UnknownJobError(name)
        return await job.run_once("manual")

    def status(self) -> dict[str, dict[str, Any]]:
        return {
            name: {
                "interval_s": job.interval_s,
                "started": job.started,
                "running": job.running,
                "last_run": job.last_run.model_dump(mode="json") if job.last_run else None,
            }
            for name, job in self._jobs.items()
        }

    async def run_until_shutdown(self) -> None:
        self.start()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def connect_with_retry(connect_fn: Callable[[], Awaitable[None]], name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                raise
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


async def main() -> None:
    """Headless scheduler entrypoint."""
    settings = get_settings()
    setup_logging("scheduler")
    start_metrics_server()
    SERVICE_INFO.info({"service": "scheduler", "environment": settings.environment.value})

    redis = RedisManager(settings)
    db = DatabaseManager(settings)

    await connect_with_retry(redis.connect, "Redis")
    await connect_with_retry(db.connect, "Database")
    await db.create_schema()

    runtime = build_runtime(db, redis, settings)
    await runtime.start()
    service = SchedulerService.from_runtime(runtime)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, service.request_shutdown)
        except (ValueError, OSError, RuntimeError) as exc:
            logger.warning("signal_handler_unavailable", signal=sig, error=str(exc))

    logger.info("scheduler_service_started", instance_id=settings.instance_id)

    try:
        await service.run_until_shutdown()
    finally:
        await runtime.close()
        await db.disconnect()
        await redis.disconnect()
        logger.info("scheduler_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
