"""
Completed match store.

Durable catalog of finished matches. Only records carrying a provider-asserted
result are accepted. Reads trigger best-effort player-name enrichment whose
write-back runs in the background.
"""
from __future__ import annotations

import asyncio
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import Settings, get_settings
from shared.models.domain import (
    CompletedFilter,
    CompletedMatchRecord,
    CompletedPage,
    Pagination,
)
from shared.models.orm import CompletedMatchORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import COMPLETED_UPSERTS

from ingest.validation import RecordValidationError, validate_completed_match
from lifecycle.enrichment import PlayerNameEnricher
from lifecycle.live_store import as_utc, utcnow

logger = get_logger(__name__)


def _like_term(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class CompletedMatchStore:
    """Idempotent store of finished matches keyed by provider match id."""

    def __init__(
        self,
        db: DatabaseManager,
        enricher: Optional[PlayerNameEnricher] = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db
        self._enricher = enricher
        self._settings = settings or get_settings()
        self._write_backs: set[asyncio.Task[None]] = set()

    @asynccontextmanager
    async def _reading(self, session: Optional[AsyncSession]) -> AsyncIterator[AsyncSession]:
        if session is not None:
            yield session
            return
        async with self._db.read_session() as own:
            yield own

    # ── Writes ──────────────────────────────────────────────────────────
    async def upsert(
        self, record: CompletedMatchRecord, session: Optional[AsyncSession] = None
    ) -> CompletedMatchRecord:
        """
        Insert or replace a completed record.

        Raises:
            RecordValidationError: the record is incomplete or its result is not provider-sourced.
        """
        errors = validate_completed_match(record)
        if errors:
            COMPLETED_UPSERTS.labels(outcome="invalid").inc()
            raise RecordValidationError(record.match_id, errors)

        if session is not None:
            return await self._write(session, record)
        async with self._db.write_session() as own:
            stored = await self._write(own, record)
        return stored

    async def _write(self, session: AsyncSession, record: CompletedMatchRecord) -> CompletedMatchRecord:
        now = utcnow()
        values = {
            "document": record.document(),
            "format": record.format.value if record.format else None,
            "series": record.series,
            "start_time": record.start_time,
            "end_time": record.end_time,
            "result_source": record.result.data_source.value,
            "api_fetched_at": record.api_fetched_at,
            "updated_at": now,
        }
        row = await session.get(CompletedMatchORM, record.match_id)
        if row is None:
            row = CompletedMatchORM(match_id=record.match_id, created_at=now, **values)
            session.add(row)
            outcome = "inserted"
        else:
            for key, value in values.items():
                setattr(row, key, value)
            outcome = "updated"
        await session.flush()

        COMPLETED_UPSERTS.labels(outcome=outcome).inc()
        logger.info(
            "completed_match_stored",
            match_id=record.match_id,
            outcome=outcome,
            winner=record.result.winner.value,
            result_source=record.result.data_source.value,
        )
        return self._to_record(row)

    # ── Reads ───────────────────────────────────────────────────────────
    async def get(self, match_id: str) -> Optional[CompletedMatchRecord]:
        async with self._db.read_session() as session:
            row = await session.get(CompletedMatchORM, match_id)
            record = self._to_record(row) if row is not None else None
        if record is None:
            return None
        return await self._enrich(record)

    async def exists(self, match_id: str, session: Optional[AsyncSession] = None) -> bool:
        async with self._reading(session) as s:
            found = await s.scalar(
                select(CompletedMatchORM.match_id).where(CompletedMatchORM.match_id == match_id)
            )
        return found is not None

    async def list(
        self,
        filter: Optional[CompletedFilter] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> CompletedPage:
        """Filtered page of completed matches, most recently finished first."""
        filter = filter or CompletedFilter()
        limit = min(max(1, limit or self._settings.completed_page_limit_default), self._settings.completed_page_limit_max)
        page = max(1, page)

        conditions = []
        if filter.format is not None:
            conditions.append(CompletedMatchORM.format == filter.format.value)
        if filter.series:
            conditions.append(CompletedMatchORM.series.ilike(_like_term(filter.series), escape="\\"))
        if filter.start_date is not None:
            conditions.append(CompletedMatchORM.end_time >= filter.start_date)
        if filter.end_date is not None:
            conditions.append(CompletedMatchORM.end_time <= filter.end_date)

        async with self._db.read_session() as session:
            total = await session.scalar(
                select(func.count()).select_from(CompletedMatchORM).where(*conditions)
            ) or 0
            rows = (
                await session.execute(
                    select(CompletedMatchORM)
                    .where(*conditions)
                    .order_by(CompletedMatchORM.end_time.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars().all()

        return CompletedPage(
            items=[self._to_record(row) for row in rows],
            pagination=Pagination(current=page, pages=math.ceil(total / limit), total=total, limit=limit),
        )

    # ── Enrichment ──────────────────────────────────────────────────────
    async def _enrich(self, record: CompletedMatchRecord) -> CompletedMatchRecord:
        if self._enricher is None or not record.missing_player_ids():
            return record
        try:
            enriched = await self._enricher.enrich(record)
        except Exception as exc:
            logger.warning("completed_enrichment_failed", match_id=record.match_id, error=str(exc))
            return record
        if enriched is not record:
            self._schedule_write_back(enriched)
        return enriched

    def _schedule_write_back(self, record: CompletedMatchRecord) -> None:
        task = asyncio.create_task(self._write_back(record))
        self._write_backs.add(task)
        task.add_done_callback(self._write_backs.discard)

    async def _write_back(self, record: CompletedMatchRecord) -> None:
        try:
            async with self._db.write_session() as session:
                row = await session.get(CompletedMatchORM, record.match_id)
                if row is None:
                    return
                row.document = record.document()
                row.updated_at = utcnow()
            logger.info("completed_enrichment_saved", match_id=record.match_id)
        except Exception as exc:
            logger.error(
                "completed_enrichment_write_back_failed",
                match_id=record.match_id,
                error=str(exc),
                exc_info=True,
            )

    async def wait_for_write_backs(self) -> None:
        """Wait for pending enrichment write-backs (shutdown and tests)."""
        if self._write_backs:
            await asyncio.gather(*list(self._write_backs), return_exceptions=True)

    @staticmethod
    def _to_record(row: CompletedMatchORM) -> CompletedMatchRecord:
        return CompletedMatchRecord.model_validate(
            {
                **(row.document or {}),
                "match_id": row.match_id,
                "created_at": as_utc(row.created_at),
                "updated_at": as_utc(row.updated_at),
            }
        )
