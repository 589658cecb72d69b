"""
Ingest pipelines.

``refresh_live_matches`` pulls the provider's live listing into the live
store; ``sync_completed_matches`` backfills the completed catalog from the
provider's recently finished fixtures. Matches still held live are handed to
the transition engine so the two stores never overlap.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import Classification, LiveMatchRecord
from shared.models.enums import LifecycleStage
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import LIVE_MATCHES, NORMALIZATION_DROPS

from ingest.classification.status import classify
from ingest.normalization.extractors import MATCH_ID_EXTRACTORS, first_of
from ingest.normalization.normalizer import ScoreNormalizer
from ingest.providers.base import BaseCricketProvider, ProviderError
from ingest.validation import RecordValidationError, sanitize_match_id
from lifecycle.completed_store import CompletedMatchStore
from lifecycle.enrichment import PlayerNameEnricher
from lifecycle.errors import StorageContentionError
from lifecycle.live_store import LiveMatchStore
from lifecycle.notifier import MatchUpdateNotifier
from lifecycle.transition import TransitionEngine, build_completed_record

logger = get_logger(__name__)

Classifier = Callable[[dict[str, Any]], Classification]


class IngestService:
    """Live refresh and completed-catalog sync against one provider."""

    def __init__(
        self,
        provider: BaseCricketProvider,
        live_store: LiveMatchStore,
        completed_store: CompletedMatchStore,
        transition: TransitionEngine,
        db: DatabaseManager,
        normalizer: Optional[ScoreNormalizer] = None,
        enricher: Optional[PlayerNameEnricher] = None,
        notifier: Optional[MatchUpdateNotifier] = None,
        settings: Settings | None = None,
        classifier: Classifier = classify,
    ) -> None:
        self._provider = provider
        self._live = live_store
        self._completed = completed_store
        self._transition = transition
        self._db = db
        self._locks = transition.locks
        self._normalizer = normalizer or ScoreNormalizer()
        self._enricher = enricher
        self._notifier = notifier or MatchUpdateNotifier()
        self._settings = settings or get_settings()
        self._classify = classifier

    # ── Live refresh ────────────────────────────────────────────────────
    async def refresh_live_matches(self) -> int:
        """
        Upsert every live match from the provider's live listing.

        Returns the number of records stored. A provider failure leaves the
        store untouched and returns 0.
        """
        try:
            payloads = await self._provider.fetch_live_matches()
        except ProviderError as exc:
            logger.warning(
                "live_refresh_provider_error",
                provider=exc.provider,
                path=exc.path,
                status=exc.status,
                error=str(exc),
            )
            return 0

        stored = 0
        for payload in payloads:
            try:
                if await self._store_live(payload):
                    stored += 1
            except Exception as exc:
                logger.error(
                    "live_refresh_match_error",
                    raw_id=payload.get("id") if isinstance(payload, dict) else None,
                    error=str(exc),
                    exc_info=True,
                )

        records = await self._live.list_all()
        LIVE_MATCHES.set(len(records))
        if stored:
            await self._notifier.on_live_set_changed(records)
        logger.info("live_refresh_done", fetched=len(payloads), stored=stored, live=len(records))
        return stored

    async def _store_live(self, payload: dict[str, Any]) -> bool:
        verdict = self._classify(payload)
        if verdict.stage != LifecycleStage.LIVE:
            logger.debug("live_refresh_skipped", raw_id=payload.get("id"), stage=verdict.stage.value, rule=verdict.rule)
            return False

        match = self._normalizer.normalize(payload)
        if match is None:
            return False
        try:
            async with self._locks.hold(match.match_id), self._db.write_session() as session:
                if await self._completed.exists(match.match_id, session=session):
                    logger.debug("live_refresh_already_completed", match_id=match.match_id)
                    return False
                record = await self._live.upsert(LiveMatchRecord.from_canonical(match), session=session)
        except RecordValidationError as exc:
            NORMALIZATION_DROPS.labels(reason="invalid_live_record").inc()
            logger.warning("live_record_rejected", match_id=match.match_id, errors=exc.errors)
            return False
        except StorageContentionError as exc:
            logger.warning("live_record_contended", match_id=match.match_id, attempts=exc.attempts)
            return False

        await self._notifier.on_match_updated(match.match_id, record)
        return True

    # ── Completed sync ──────────────────────────────────────────────────
    async def sync_completed_matches(self) -> int:
        """
        Backfill the completed catalog from recently finished fixtures.

        Matches already catalogued are skipped. Returns the number of matches
        added (directly or through migration).
        """
        try:
            listing = await self._provider.fetch_recently_finished()
        except ProviderError as exc:
            logger.warning("completed_sync_provider_error", path=exc.path, status=exc.status, error=str(exc))
            return 0

        synced = 0
        skipped = 0
        for summary in listing:
            match_id = sanitize_match_id(first_of(MATCH_ID_EXTRACTORS, summary)) if isinstance(summary, dict) else None
            if match_id is None:
                NORMALIZATION_DROPS.labels(reason="invalid_match_id").inc()
                continue
            try:
                added = await self._sync_one(match_id, summary)
            except ProviderError as exc:
                logger.warning("completed_sync_fetch_failed", match_id=match_id, error=str(exc))
                continue
            except Exception as exc:
                logger.error("completed_sync_match_error", match_id=match_id, error=str(exc), exc_info=True)
                continue
            if added:
                synced += 1
            else:
                skipped += 1

        logger.info("completed_sync_done", listed=len(listing), synced=synced, skipped=skipped)
        return synced

    async def _sync_one(self, match_id: str, summary: dict[str, Any]) -> bool:
        verdict = self._classify(summary)
        if verdict.stage != LifecycleStage.COMPLETED or not verdict.is_high:
            logger.debug("completed_sync_not_final", match_id=match_id, stage=verdict.stage.value, rule=verdict.rule)
            return False
        if await self._completed.exists(match_id):
            return False
        if await self._live.exists(match_id):
            return await self._transition.migrate(match_id)

        payload = await self._provider.fetch_match(match_id)
        if payload is None:
            logger.info("completed_sync_detail_missing", match_id=match_id)
            return False
        match = self._normalizer.normalize(payload)
        if match is None:
            return False
        result = self._normalizer.result_for(payload, match)
        if result is None:
            logger.info("completed_sync_no_result", match_id=match_id)
            return False

        record = build_completed_record(match, result)
        if self._enricher is not None:
            try:
                record = await self._enricher.enrich(record)
            except Exception as exc:
                logger.warning("completed_sync_enrichment_failed", match_id=match_id, error=str(exc))

        try:
            async with self._locks.hold(match_id), self._db.write_session() as session:
                went_live = await self._live.exists(match_id, session=session)
                if not went_live:
                    stored = await self._completed.upsert(record, session=session)
        except RecordValidationError as exc:
            NORMALIZATION_DROPS.labels(reason="invalid_completed_record").inc()
            logger.warning("completed_record_rejected", match_id=match_id, errors=exc.errors)
            return False
        if went_live:
            logger.info("completed_sync_now_live", match_id=match_id)
            return await self._transition.migrate(match_id, payload)

        await self._notifier.on_match_updated(match_id, stored)
        return True
