"""
Live match store.

One row per in-progress match. Upserts merge the supplied fields over the
stored document and bump ``update_count`` inside a single transaction; rows
carry an ``expires_at`` set on first insert and are purged by the expiry sweep.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import Settings, get_settings
from shared.models.domain import LiveMatchRecord
from shared.models.orm import LiveMatchORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import EXPIRED_PURGED, LIVE_UPSERTS

from ingest.validation import RecordValidationError, validate_match_data
from lifecycle.errors import StorageContentionError

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Merge ``patch`` over ``base``. Nested dicts merge key by key; lists and scalars are replaced."""
    merged = dict(base)
    for key, value in patch.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, dict):
            merged[key] = deep_merge(current, value)
        else:
            merged[key] = value
    return merged


class LiveMatchStore:
    """Idempotent store of in-progress matches keyed by provider match id."""

    def __init__(
        self,
        db: DatabaseManager,
        settings: Settings | None = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._clock = clock or utcnow

    @asynccontextmanager
    async def _reading(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.read_session() as own:
            yield own

    @asynccontextmanager
    async def _writing(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.write_session() as own:
            yield own

    # ── Writes ──────────────────────────────────────────────────────────
    async def upsert(self, record: LiveMatchRecord, session: Optional[AsyncSession] = None) -> LiveMatchRecord:
        """
        Insert or merge a live record.

        Validation runs before any write. A supplied ``session`` joins the
        caller's transaction and gets a single attempt; otherwise a
        duplicate-key race or lock timeout is retried up to
        ``live_upsert_retry_attempts`` times with exponential backoff.

        Raises:
            RecordValidationError: the record is structurally invalid.
            StorageContentionError: the insert race kept failing.
        """
        errors = validate_match_data(record)
        if errors:
            LIVE_UPSERTS.labels(outcome="invalid").inc()
            raise RecordValidationError(record.match_id, errors)

        if session is not None:
            try:
                return await self._merge(session, record)
            except (IntegrityError, OperationalError) as exc:
                LIVE_UPSERTS.labels(outcome="contended").inc()
                raise StorageContentionError(record.match_id, 1) from exc

        attempts = 1 + max(0, self._settings.live_upsert_retry_attempts)
        for attempt in range(1, attempts + 1):
            try:
                async with self._db.write_session() as own:
                    stored = await self._merge(own, record)
                return stored
            except (IntegrityError, OperationalError) as exc:
                LIVE_UPSERTS.labels(outcome="contended").inc()
                logger.warning(
                    "live_upsert_contended",
                    match_id=record.match_id,
                    attempt=attempt,
                    max_attempts=attempts,
                    error=str(exc.orig) if exc.orig else str(exc),
                )
                if attempt < attempts:
                    await asyncio.sleep(self._settings.live_upsert_backoff_s * (2 ** (attempt - 1)))
        raise StorageContentionError(record.match_id, attempts)

    async def _merge(self, session: AsyncSession, record: LiveMatchRecord) -> LiveMatchRecord:
        now = self._clock()
        stmt = select(LiveMatchORM).where(LiveMatchORM.match_id == record.match_id).with_for_update()
        row = (await session.execute(stmt)).scalar_one_or_none()
        incoming = record.document()

        if row is None:
            row = LiveMatchORM(
                match_id=record.match_id,
                document=incoming,
                update_count=1,
                start_time=record.start_time,
                created_at=now,
                updated_at=now,
                expires_at=now + timedelta(hours=self._settings.live_ttl_hours),
            )
            session.add(row)
            await session.flush()
            LIVE_UPSERTS.labels(outcome="inserted").inc()
            logger.info("live_match_inserted", match_id=record.match_id)
        else:
            row.document = deep_merge(row.document or {}, incoming)
            row.update_count = (row.update_count or 0) + 1
            row.updated_at = now
            if record.start_time is not None:
                row.start_time = record.start_time
            await session.flush()
            LIVE_UPSERTS.labels(outcome="merged").inc()
            logger.debug("live_match_merged", match_id=record.match_id, update_count=row.update_count)

        return self._to_record(row)

    async def delete(self, match_id: str, session: Optional[AsyncSession] = None) -> bool:
        async with self._writing(session) as s:
            result = await s.execute(delete(LiveMatchORM).where(LiveMatchORM.match_id == match_id))
        removed = (result.rowcount or 0) > 0
        if removed:
            logger.info("live_match_deleted", match_id=match_id)
        return removed

    async def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every record whose ``expires_at`` has passed. Returns the number removed."""
        cutoff = now or self._clock()
        async with self._db.write_session() as session:
            result = await session.execute(delete(LiveMatchORM).where(LiveMatchORM.expires_at <= cutoff))
        purged = result.rowcount or 0
        if purged:
            EXPIRED_PURGED.inc(purged)
            logger.info("live_matches_expired", purged=purged, cutoff=cutoff.isoformat())
        return purged

    # ── Reads ───────────────────────────────────────────────────────────
    async def get(self, match_id: str, session: Optional[AsyncSession] = None) -> Optional[LiveMatchRecord]:
        async with self._reading(session) as s:
            row = await s.get(LiveMatchORM, match_id)
            return self._to_record(row) if row is not None else None

    async def exists(self, match_id: str, session: Optional[AsyncSession] = None) -> bool:
        async with self._reading(session) as s:
            found = await s.scalar(select(LiveMatchORM.match_id).where(LiveMatchORM.match_id == match_id))
        return found is not None

    async def list_all(self) -> list[LiveMatchRecord]:
        """All live records, newest start time first."""
        async with self._db.read_session() as session:
            rows = (
                await session.execute(select(LiveMatchORM).order_by(LiveMatchORM.start_time.desc()))
            ).scalars().all()
        return [self._to_record(row) for row in rows]

    @staticmethod
    def _to_record(row: LiveMatchORM) -> LiveMatchRecord:
        return LiveMatchRecord.model_validate(
            {
                **(row.document or {}),
                "match_id": row.match_id,
                "update_count": row.update_count,
                "created_at": as_utc(row.created_at),
                "updated_at": as_utc(row.updated_at),
                "expires_at": as_utc(row.expires_at),
            }
        )
