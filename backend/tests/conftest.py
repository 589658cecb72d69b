"""
Shared fixtures: test settings, an in-memory SQLite database, and builders
for SportMonks-shaped fixture payloads.
"""
from __future__ import annotations

from typing import Any, Optional

import pytest
import pytest_asyncio

from shared.config import Settings
from shared.utils.database import DatabaseManager

HOME_ID = 10
AWAY_ID = 20


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "environment": "test",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "redis_url": "redis://localhost:6379/15",
        "sportmonks_api_token": "test-token",
        "transition_backoff_base_s": 0.0,
        "provider_retry_backoff_s": 0.0,
        "live_upsert_backoff_s": 0.0,
        "metrics_enabled": False,
    }
    values.update(overrides)
    return Settings(**values)


def innings(team_id: int, inning: int, score: Optional[int], wickets: Optional[int], overs: Optional[float]) -> dict[str, Any]:
    return {"team_id": team_id, "inning": inning, "score": score, "wickets": wickets, "overs": overs}


def fixture_payload(
    match_id: Any = 1001,
    status: Optional[str] = "1st Innings",
    note: str = "",
    state_id: Optional[int] = None,
    winner_team_id: Optional[int] = None,
    runs: Optional[list[dict[str, Any]]] = None,
    match_type: str = "T20",
    live: Optional[bool] = True,
    starting_at: str = "2026-10-17T10:00:00.000000Z",
    **extra: Any,
) -> dict[str, Any]:
    """A v2 ``/fixtures/{id}`` style payload between two fixed teams."""
    payload: dict[str, Any] = {
        "resource": "fixtures",
        "id": match_id,
        "league_id": 3,
        "round": "12th Match",
        "localteam_id": HOME_ID,
        "visitorteam_id": AWAY_ID,
        "starting_at": starting_at,
        "type": match_type,
        "live": live,
        "status": status,
        "note": note,
        "winner_team_id": winner_team_id,
        "localteam": {"resource": "teams", "id": HOME_ID, "name": "Mumbai Indians", "code": "MI"},
        "visitorteam": {"resource": "teams", "id": AWAY_ID, "name": "Chennai Super Kings", "code": "CSK"},
        "league": {"resource": "leagues", "id": 3, "name": "Indian Premier League"},
        "venue": {"resource": "venues", "id": 7, "name": "Wankhede Stadium", "city": "Mumbai"},
    }
    if state_id is not None:
        payload["state_id"] = state_id
    if runs is not None:
        payload["runs"] = runs
    payload.update(extra)
    return payload


def finished_payload(match_id: Any = 1001, **extra: Any) -> dict[str, Any]:
    """Mumbai Indians beat Chennai Super Kings by 20 runs."""
    values: dict[str, Any] = {
        "status": "Finished",
        "note": "Mumbai Indians won by 20 runs",
        "winner_team_id": HOME_ID,
        "live": False,
        "runs": [innings(HOME_ID, 1, 180, 5, 20.0), innings(AWAY_ID, 2, 160, 8, 20.0)],
    }
    values.update(extra)
    return fixture_payload(match_id, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest_asyncio.fixture
async def db(settings: Settings):
    manager = DatabaseManager(settings)
    await manager.connect()
    await manager.create_schema()
    yield manager
    await manager.disconnect()
