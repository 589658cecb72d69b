"""
Cricket match REST endpoints.

GET /v1/cricket/live               - All live matches (lazy refresh when empty).
GET /v1/cricket/live/{id}          - One live match.
GET /v1/cricket/completed          - Filtered, paginated completed catalog.
GET /v1/cricket/completed/{id}     - One completed match, player names enriched.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.domain import CompletedFilter
from shared.models.enums import MatchFormat
from shared.utils.logging import get_logger

from api.dependencies import get_runtime
from ingest.validation import sanitize_match_id
from lifecycle.runtime import LifecycleRuntime

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/cricket", tags=["cricket"])


def _require_match_id(raw: str) -> str:
    match_id = sanitize_match_id(raw)
    if match_id is None:
        raise HTTPException(status_code=400, detail=f"Invalid match id: {raw!r}")
    return match_id


@router.get("/live")
async def list_live_matches(runtime: LifecycleRuntime = Depends(get_runtime)) -> dict[str, Any]:
    """All matches currently in the live store, newest start first."""
    records = await runtime.live_store.list_all()
    if not records:
        logger.info("live_store_empty_refreshing")
        await runtime.ingest.refresh_live_matches()
        records = await runtime.live_store.list_all()
    return {
        "matches": [record.model_dump(mode="json", exclude_none=True) for record in records],
        "count": len(records),
    }


@router.get("/live/{match_id}")
async def get_live_match(match_id: str, runtime: LifecycleRuntime = Depends(get_runtime)) -> dict[str, Any]:
    record = await runtime.live_store.get(_require_match_id(match_id))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Live match {match_id} not found")
    return record.model_dump(mode="json", exclude_none=True)


@router.get("/completed")
async def list_completed_matches(
    format: Optional[MatchFormat] = Query(None, description="Exact match format"),
    series: Optional[str] = Query(None, description="Case-insensitive series substring"),
    start_date: Optional[datetime] = Query(None, description="Earliest end time"),
    end_date: Optional[datetime] = Query(None, description="Latest end time"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    runtime: LifecycleRuntime = Depends(get_runtime),
) -> dict[str, Any]:
    """Completed matches, most recently finished first."""
    result = await runtime.completed_store.list(
        CompletedFilter(format=format, series=series, start_date=start_date, end_date=end_date),
        page=page,
        limit=limit,
    )
    return result.model_dump(mode="json", exclude_none=True)


@router.get("/completed/{match_id}")
async def get_completed_match(match_id: str, runtime: LifecycleRuntime = Depends(get_runtime)) -> dict[str, Any]:
    record = await runtime.completed_store.get(_require_match_id(match_id))
    if record is None:
        raise HTTPException(status_code=404, detail=f"Completed match {match_id} not found")
    return record.model_dump(mode="json", exclude_none=True)
