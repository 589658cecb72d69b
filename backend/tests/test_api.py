"""API route tests. The lifespan is disabled and the runtime and scheduler are mocks, so no DB/Redis is needed."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from shared.models.domain import (
    CompletedFilter,
    CompletedMatchRecord,
    CompletedPage,
    JobRun,
    LiveMatchRecord,
    Pagination,
)
from shared.models.enums import MatchFormat

from api.app import create_app
from api.dependencies import init_dependencies, reset_dependencies
from conftest import finished_payload, fixture_payload
from ingest.normalization.normalizer import ScoreNormalizer
from lifecycle.transition import build_completed_record
from scheduler.service import JOB_LIVE_REFRESH, UnknownJobError

NOW = datetime(2026, 10, 17, 14, 0, tzinfo=timezone.utc)


def live_record(match_id: int = 1001) -> LiveMatchRecord:
    match = ScoreNormalizer().normalize(fixture_payload(match_id))
    assert match is not None
    return LiveMatchRecord.from_canonical(match).model_copy(update={"update_count": 3})


def completed_record(match_id: int = 1001) -> CompletedMatchRecord:
    normalizer = ScoreNormalizer()
    payload = finished_payload(match_id)
    match = normalizer.normalize(payload)
    assert match is not None
    result = normalizer.result_for(payload, match)
    assert result is not None
    return build_completed_record(match, result, observed_at=NOW)


@pytest.fixture
def runtime() -> MagicMock:
    rt = MagicMock()
    rt.live_store.list_all = AsyncMock(return_value=[live_record()])
    rt.live_store.get = AsyncMock(return_value=None)
    rt.ingest.refresh_live_matches = AsyncMock(return_value=0)
    rt.completed_store.get = AsyncMock(return_value=None)
    rt.completed_store.list = AsyncMock(
        return_value=CompletedPage(
            items=[completed_record()],
            pagination=Pagination(current=1, pages=1, total=1, limit=20),
        )
    )
    return rt


@pytest.fixture
def scheduler() -> MagicMock:
    sched = MagicMock()
    sched.status = MagicMock(return_value={JOB_LIVE_REFRESH: {"interval_s": 60.0, "started": True, "running": False, "last_run": None}})
    sched.trigger = AsyncMock(
        return_value=JobRun(job=JOB_LIVE_REFRESH, trigger="manual", started_at=NOW, finished_at=NOW, ok=True, result=2)
    )
    return sched


@pytest.fixture
def client(runtime: MagicMock, scheduler: MagicMock) -> Iterator[TestClient]:
    """Test client with lifespan disabled and mocked dependencies."""
    app = create_app(use_lifespan=False)
    init_dependencies(runtime, scheduler)
    with TestClient(app) as c:
        yield c
    reset_dependencies()


# ── System ──────────────────────────────────────────────────────────────

def test_health_returns_ok(client: TestClient) -> None:
    """GET /health returns 200 and status ok."""
    r = client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data.get("status") == "ok"
    assert data.get("service") == "api"


def test_health_returns_json(client: TestClient) -> None:
    r = client.get("/health")
    assert r.headers.get("content-type", "").startswith("application/json")


def test_request_id_is_echoed(client: TestClient) -> None:
    r = client.get("/v1/cricket/live", headers={"X-Request-ID": "abc123"})
    assert r.headers["X-Request-ID"] == "abc123"


# ── Live ────────────────────────────────────────────────────────────────

def test_live_lists_records(client: TestClient, runtime: MagicMock) -> None:
    r = client.get("/v1/cricket/live")
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 1
    assert body["matches"][0]["match_id"] == "1001"
    assert body["matches"][0]["update_count"] == 3
    runtime.ingest.refresh_live_matches.assert_not_awaited()


def test_empty_live_store_triggers_refresh(client: TestClient, runtime: MagicMock) -> None:
    runtime.live_store.list_all.side_effect = [[], [live_record(1002)]]
    r = client.get("/v1/cricket/live")
    assert r.status_code == 200
    assert [m["match_id"] for m in r.json()["matches"]] == ["1002"]
    runtime.ingest.refresh_live_matches.assert_awaited_once()


def test_live_match_found(client: TestClient, runtime: MagicMock) -> None:
    runtime.live_store.get.return_value = live_record()
    r = client.get("/v1/cricket/live/1001")
    assert r.status_code == 200
    assert r.json()["teams"]["home"]["name"] == "Mumbai Indians"
    runtime.live_store.get.assert_awaited_once_with("1001")


def test_live_match_not_found(client: TestClient) -> None:
    r = client.get("/v1/cricket/live/4040")
    assert r.status_code == 404
    assert r.json()["error"] == "not_found"


def test_invalid_match_id_is_rejected(client: TestClient, runtime: MagicMock) -> None:
    r = client.get("/v1/cricket/live/not%20an%20id")
    assert r.status_code == 400
    assert r.json()["error"] == "bad_request"
    runtime.live_store.get.assert_not_awaited()


# ── Completed ───────────────────────────────────────────────────────────

def test_completed_list_passes_filters(client: TestClient, runtime: MagicMock) -> None:
    r = client.get(
        "/v1/cricket/completed",
        params={
            "format": "odi",
            "series": "premier",
            "start_date": "2026-10-01T00:00:00Z",
            "page": 2,
            "limit": 5,
        },
    )
    assert r.status_code == 200
    body = r.json()
    assert body["pagination"]["total"] == 1
    assert body["items"][0]["result"]["data_source"] == "parsed-from-provider-note"

    args, kwargs = runtime.completed_store.list.await_args
    flt: CompletedFilter = args[0]
    assert flt.format == MatchFormat.ODI
    assert flt.series == "premier"
    assert flt.start_date == datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert flt.end_date is None
    assert kwargs == {"page": 2, "limit": 5}


def test_completed_list_rejects_bad_page(client: TestClient) -> None:
    assert client.get("/v1/cricket/completed", params={"page": 0}).status_code == 422
    assert client.get("/v1/cricket/completed", params={"format": "hundred"}).status_code == 422


def test_completed_match_found(client: TestClient, runtime: MagicMock) -> None:
    runtime.completed_store.get.return_value = completed_record()
    r = client.get("/v1/cricket/completed/1001")
    assert r.status_code == 200
    body = r.json()
    assert body["result"]["winner"] == "home"
    assert body["result"]["margin"] == 20


def test_completed_match_not_found(client: TestClient) -> None:
    r = client.get("/v1/cricket/completed/1001")
    assert r.status_code == 404
    assert r.json()["message"] == "Completed match 1001 not found"


# ── Admin ───────────────────────────────────────────────────────────────

def test_jobs_status(client: TestClient) -> None:
    r = client.get("/v1/admin/jobs")
    assert r.status_code == 200
    assert r.json()["jobs"][JOB_LIVE_REFRESH]["started"] is True


def test_run_job(client: TestClient, scheduler: MagicMock) -> None:
    r = client.post(f"/v1/admin/jobs/{JOB_LIVE_REFRESH}/run")
    assert r.status_code == 200
    assert r.json()["result"] == 2
    scheduler.trigger.assert_awaited_once_with(JOB_LIVE_REFRESH)


def test_run_unknown_job(client: TestClient, scheduler: MagicMock) -> None:
    scheduler.trigger.side_effect = UnknownJobError("nope")
    r = client.post("/v1/admin/jobs/nope/run")
    assert r.status_code == 404
