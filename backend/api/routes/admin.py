"""
Operational endpoints for the lifecycle jobs.

GET  /v1/admin/jobs            - Interval, running flag and last run per job.
POST /v1/admin/jobs/{job}/run  - Run a job now (skipped if already running).
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from shared.utils.logging import get_logger

from api.dependencies import get_scheduler
from scheduler.service import SchedulerService, UnknownJobError

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/jobs")
async def list_jobs(scheduler: SchedulerService = Depends(get_scheduler)) -> dict[str, Any]:
    return {"jobs": scheduler.status()}


@router.post("/jobs/{job}/run")
async def run_job(job: str, scheduler: SchedulerService = Depends(get_scheduler)) -> dict[str, Any]:
    try:
        run = await scheduler.trigger(job)
    except UnknownJobError:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job}")
    logger.info("job_triggered_via_api", job=job, ok=run.ok, skipped=run.skipped)
    return run.model_dump(mode="json")
