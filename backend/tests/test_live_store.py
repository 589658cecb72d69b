"""
Tests for the live match store against an in-memory SQLite database.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from shared.config import Settings
from shared.models.domain import LiveMatchRecord
from shared.utils.database import DatabaseManager

from conftest import HOME_ID, fixture_payload, innings, make_settings
from ingest.normalization.normalizer import ScoreNormalizer
from ingest.validation import RecordValidationError
from lifecycle.completed_store import CompletedMatchStore
from lifecycle.errors import StorageContentionError
from lifecycle.live_store import LiveMatchStore, deep_merge

T0 = datetime(2026, 10, 17, 10, 0, tzinfo=timezone.utc)


def live_record(match_id: int = 1001, **payload_extra) -> LiveMatchRecord:
    match = ScoreNormalizer().normalize(fixture_payload(match_id=match_id, **payload_extra))
    assert match is not None
    return LiveMatchRecord.from_canonical(match)


@pytest.fixture
def store(db: DatabaseManager, settings: Settings) -> LiveMatchStore:
    return LiveMatchStore(db, settings, clock=lambda: T0)


# ── deep_merge ──────────────────────────────────────────────────────────

def test_deep_merge_merges_nested_and_replaces_lists() -> None:
    base = {"a": {"x": 1, "y": 2}, "items": [1, 2], "keep": True}
    patch = {"a": {"y": 3}, "items": [9]}
    assert deep_merge(base, patch) == {"a": {"x": 1, "y": 3}, "items": [9], "keep": True}
    assert base["a"] == {"x": 1, "y": 2}


# ── Upsert ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_first_upsert_inserts_with_bookkeeping(store: LiveMatchStore, settings: Settings) -> None:
    stored = await store.upsert(live_record())
    assert stored.update_count == 1
    assert stored.created_at == T0
    assert stored.expires_at == T0 + timedelta(hours=settings.live_ttl_hours)
    assert await store.exists("1001")


@pytest.mark.asyncio
async def test_two_upserts_merge_and_count(store: LiveMatchStore) -> None:
    await store.upsert(live_record(runs=[innings(HOME_ID, 1, 60, 1, 7.0)], partnership={"runs": 30, "balls": 20}))
    await store.upsert(live_record(runs=[innings(HOME_ID, 1, 75, 2, 9.0)]))

    stored = await store.get("1001")
    assert stored is not None
    assert stored.update_count == 2
    assert stored.current_score.home is not None and stored.current_score.home.runs == 75
    # Omitted fields keep their stored values.
    assert stored.partnership is not None and stored.partnership.runs == 30
    assert stored.venue is not None and stored.venue.name == "Wankhede Stadium"


@pytest.mark.asyncio
async def test_update_without_team_includes_keeps_stored_names(store: LiveMatchStore) -> None:
    await store.upsert(live_record(runs=[innings(HOME_ID, 1, 60, 1, 7.0)]))
    update = live_record(localteam=None, visitorteam=None, runs=[innings(HOME_ID, 1, 90, 2, 10.0)])
    assert update.teams is not None and update.teams.home.name is None

    await store.upsert(update)

    stored = await store.get("1001")
    assert stored is not None
    assert stored.update_count == 2
    assert stored.current_score.home is not None and stored.current_score.home.runs == 90
    assert stored.current_score.home.wickets == 2
    assert stored.teams is not None
    assert stored.teams.home.name == "Mumbai Indians"
    assert stored.teams.away.name == "Chennai Super Kings"


@pytest.mark.asyncio
async def test_upsert_rejects_invalid_record_before_writing(store: LiveMatchStore) -> None:
    record = live_record().model_copy(update={"teams": None})
    with pytest.raises(RecordValidationError) as excinfo:
        await store.upsert(record)
    assert "teams are required" in excinfo.value.errors
    assert not await store.exists("1001")


@pytest.mark.asyncio
async def test_upsert_without_start_time_is_rejected(store: LiveMatchStore) -> None:
    record = live_record().model_copy(update={"start_time": None})
    with pytest.raises(RecordValidationError):
        await store.upsert(record)


@pytest.mark.asyncio
async def test_contention_is_retried_then_raised(db: DatabaseManager) -> None:
    store = LiveMatchStore(db, make_settings(live_upsert_retry_attempts=2))
    store._merge = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("duplicate key")))  # type: ignore[method-assign]
    with pytest.raises(StorageContentionError) as excinfo:
        await store.upsert(live_record())
    assert excinfo.value.attempts == 3
    assert store._merge.await_count == 3


@pytest.mark.asyncio
async def test_lock_timeouts_back_off_between_attempts(db: DatabaseManager, monkeypatch: pytest.MonkeyPatch) -> None:
    sleep = AsyncMock()
    monkeypatch.setattr("lifecycle.live_store.asyncio.sleep", sleep)
    store = LiveMatchStore(db, make_settings(live_upsert_retry_attempts=2, live_upsert_backoff_s=0.5))
    store._merge = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("lock timeout")))  # type: ignore[method-assign]

    with pytest.raises(StorageContentionError) as excinfo:
        await store.upsert(live_record())

    assert excinfo.value.attempts == 3
    assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_contention_recovers_on_retry(store: LiveMatchStore) -> None:
    real_merge = store._merge
    calls = {"n": 0}

    async def flaky(session, record):
        calls["n"] += 1
        if calls["n"] == 1:
            raise IntegrityError("INSERT", {}, Exception("duplicate key"))
        return await real_merge(session, record)

    store._merge = flaky  # type: ignore[method-assign]
    stored = await store.upsert(live_record())
    assert stored.update_count == 1
    assert calls["n"] == 2


# ── Delete / list ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_delete_reports_whether_a_row_was_removed(store: LiveMatchStore) -> None:
    await store.upsert(live_record())
    assert await store.delete("1001") is True
    assert await store.delete("1001") is False
    assert await store.get("1001") is None


@pytest.mark.asyncio
async def test_list_all_newest_start_first(store: LiveMatchStore) -> None:
    await store.upsert(live_record(1001, starting_at="2026-10-17T06:00:00Z"))
    await store.upsert(live_record(1002, starting_at="2026-10-17T10:00:00Z"))
    records = await store.list_all()
    assert [r.match_id for r in records] == ["1002", "1001"]


# ── Expiry ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_expired_records_are_purged_not_migrated(
    store: LiveMatchStore, db: DatabaseManager, settings: Settings
) -> None:
    await store.upsert(live_record(1001))
    completed = CompletedMatchStore(db, settings=settings)

    assert await store.purge_expired(T0 + timedelta(hours=1)) == 0
    purged = await store.purge_expired(T0 + timedelta(hours=settings.live_ttl_hours, seconds=1))

    assert purged == 1
    assert await store.get("1001") is None
    assert not await completed.exists("1001")
    page = await completed.list()
    assert page.pagination.total == 0


@pytest.mark.asyncio
async def test_merge_does_not_extend_expiry(store: LiveMatchStore, db: DatabaseManager, settings: Settings) -> None:
    await store.upsert(live_record())
    later = LiveMatchStore(db, settings, clock=lambda: T0 + timedelta(hours=5))
    stored = await later.upsert(live_record())
    assert stored.expires_at == T0 + timedelta(hours=settings.live_ttl_hours)
    assert stored.updated_at == T0 + timedelta(hours=5)
