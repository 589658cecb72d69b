"""
Transition engine: moves finished matches from the live store to the
completed store.

Per-match states::

    LIVE -> VERIFYING -> MIGRATING -> COMPLETED
    VERIFYING -> LIVE   (inconclusive or failed re-check)
    MIGRATING -> LIVE   (no result, validation failure, storage failure)

Verification happens outside any transaction; only the completed write and
the live delete share one.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import (
    CanonicalMatch,
    Classification,
    CompletedMatchRecord,
    LiveMatchRecord,
    MatchFacts,
    ProviderAssertedResult,
    TeamRef,
    Teams,
    Venue,
)
from shared.models.enums import LifecycleStage, TransitionState
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import LIVE_MATCHES, MIGRATIONS

from ingest.classification.status import classify
from ingest.normalization.normalizer import ScoreNormalizer
from ingest.providers.base import BaseCricketProvider, ProviderError, ProviderUnavailableError
from ingest.validation import RecordValidationError
from lifecycle.completed_store import CompletedMatchStore
from lifecycle.errors import MigrationAborted
from lifecycle.locks import MatchLocks
from lifecycle.live_store import LiveMatchStore, deep_merge, utcnow
from lifecycle.notifier import MatchUpdateNotifier

logger = get_logger(__name__)

Classifier = Callable[[dict[str, Any]], Classification]

_CARRIED_FIELDS = frozenset(MatchFacts.model_fields) | {
    "man_of_match_id",
    "man_of_series_id",
    "total_overs_played",
    "super_over",
    "follow_on",
    "draw_no_result",
}


def carry_identity(match: CanonicalMatch, live: Optional[LiveMatchRecord]) -> CanonicalMatch:
    """
    ``match`` with team and venue details it lacks filled in from the live record.

    A side is only filled when its team id matches the live record's.
    """
    if live is None:
        return match
    update: dict[str, Any] = {}

    if live.teams is not None:
        if match.teams is None:
            update["teams"] = live.teams
        else:
            sides = {}
            for side in ("home", "away"):
                fresh_team = getattr(match.teams, side)
                stored_team = getattr(live.teams, side)
                if fresh_team.id == stored_team.id:
                    merged = deep_merge(
                        stored_team.model_dump(exclude_none=True), fresh_team.model_dump(exclude_none=True)
                    )
                    sides[side] = TeamRef.model_validate(merged)
                else:
                    sides[side] = fresh_team
            update["teams"] = Teams(**sides)

    if live.venue is not None:
        fresh_venue = match.venue.model_dump(exclude_none=True) if match.venue else {}
        update["venue"] = Venue.model_validate(deep_merge(live.venue.model_dump(exclude_none=True), fresh_venue))

    return match.model_copy(update=update) if update else match


def build_completed_record(
    match: CanonicalMatch,
    result: ProviderAssertedResult,
    live: Optional[LiveMatchRecord] = None,
    observed_at: Optional[datetime] = None,
) -> CompletedMatchRecord:
    """
    Completed record from a freshly normalized match.

    Fields the fresh fetch omitted are taken from the live record. ``end_time``
    is the provider's end timestamp, else the moment completion was observed.
    """
    observed_at = observed_at or utcnow()
    match = carry_identity(match, live)
    fields = set(_CARRIED_FIELDS)
    fallback = live.model_dump(exclude_none=True, include=fields & set(LiveMatchRecord.model_fields)) if live else {}
    fresh = match.model_dump(exclude_none=True, include=fields)

    final_score = match.current_score
    if final_score.home is None and final_score.away is None and live is not None:
        final_score = live.current_score

    return CompletedMatchRecord.model_validate(
        {
            **fallback,
            **fresh,
            "match_id": match.match_id,
            "end_time": match.end_time or observed_at,
            "final_score": final_score.model_dump(),
            "result": result,
            "api_fetched_at": observed_at,
        }
    )


@dataclass(frozen=True)
class TransitionCandidate:
    match_id: str
    payload: dict[str, Any]
    classification: Classification


class TransitionEngine:
    """Detects finished live matches and migrates them atomically."""

    def __init__(
        self,
        provider: BaseCricketProvider,
        live_store: LiveMatchStore,
        completed_store: CompletedMatchStore,
        db: DatabaseManager,
        notifier: Optional[MatchUpdateNotifier] = None,
        normalizer: Optional[ScoreNormalizer] = None,
        settings: Settings | None = None,
        classifier: Classifier = classify,
        locks: Optional[MatchLocks] = None,
    ) -> None:
        self._provider = provider
        self._live = live_store
        self._completed = completed_store
        self._db = db
        self.locks = locks or MatchLocks()
        self._notifier = notifier or MatchUpdateNotifier()
        self._normalizer = normalizer or ScoreNormalizer()
        self._settings = settings or get_settings()
        self._classify = classifier
        self._states: dict[str, TransitionState] = {}

    def state_of(self, match_id: str) -> Optional[TransitionState]:
        return self._states.get(match_id)

    def _set_state(self, match_id: str, state: TransitionState) -> None:
        previous = self._states.get(match_id)
        self._states[match_id] = state
        if previous != state:
            logger.debug(
                "transition_state",
                match_id=match_id,
                previous=previous.value if previous else None,
                state=state.value,
            )

    # ── Detection ───────────────────────────────────────────────────────
    async def detect(self) -> list[TransitionCandidate]:
        """Re-verify every live match; return those now completed with high confidence."""
        records = await self._live.list_all()
        live_ids = {record.match_id for record in records}
        for match_id in list(self._states):
            if match_id not in live_ids:
                del self._states[match_id]

        semaphore = asyncio.Semaphore(max(1, self._settings.transition_concurrency))

        async def check(match_id: str) -> Optional[TransitionCandidate]:
            async with semaphore:
                try:
                    return await self._verify(match_id)
                except Exception as exc:
                    logger.error("transition_verify_error", match_id=match_id, error=str(exc), exc_info=True)
                    self._set_state(match_id, TransitionState.LIVE)
                    return None

        found = await asyncio.gather(*(check(match_id) for match_id in live_ids))
        candidates = [candidate for candidate in found if candidate is not None]
        logger.info("transition_detection_done", live=len(live_ids), candidates=len(candidates))
        return candidates

    async def _verify(self, match_id: str) -> Optional[TransitionCandidate]:
        self._set_state(match_id, TransitionState.VERIFYING)
        payload = await self._fetch_fresh(match_id)
        if payload is None:
            self._set_state(match_id, TransitionState.LIVE)
            return None

        verdict = self._classify(payload)
        if verdict.stage == LifecycleStage.COMPLETED and verdict.is_high:
            logger.info("transition_candidate", match_id=match_id, rule=verdict.rule, reason=verdict.reason)
            return TransitionCandidate(match_id=match_id, payload=payload, classification=verdict)

        self._set_state(match_id, TransitionState.LIVE)
        return None

    async def _fetch_fresh(self, match_id: str) -> Optional[dict[str, Any]]:
        """Uncached detail fetch with bounded exponential backoff. None when it keeps failing."""
        attempts = 1 + max(0, self._settings.transition_max_retries)
        for attempt in range(attempts):
            try:
                return await self._provider.fetch_match(match_id, fresh=True)
            except ProviderUnavailableError as exc:
                logger.warning("transition_fetch_unavailable", match_id=match_id, error=str(exc))
                return None
            except ProviderError as exc:
                if attempt == attempts - 1:
                    logger.warning(
                        "transition_fetch_failed", match_id=match_id, attempts=attempts, error=str(exc)
                    )
                    return None
                delay = self._settings.transition_backoff_base_s * (2 ** attempt)
                logger.info(
                    "transition_fetch_retry", match_id=match_id, attempt=attempt + 1, delay_s=delay, error=str(exc)
                )
                await asyncio.sleep(delay)
        return None

    # ── Migration ───────────────────────────────────────────────────────
    async def migrate(self, match_id: str, payload: Optional[dict[str, Any]] = None) -> bool:
        """
        Move one match from the live store to the completed store.

        Returns True once both the completed write and the live delete have
        committed. Any failure rolls both back and leaves the match live.
        """
        self._set_state(match_id, TransitionState.MIGRATING)
        try:
            if payload is None:
                payload = await self._fetch_fresh(match_id)
                if payload is None:
                    raise MigrationAborted(match_id, "provider detail unavailable")
            async with self.locks.hold(match_id):
                live = await self._live.get(match_id)
                record = self._completed_record(match_id, payload, live)

                async with self._db.write_session() as session:
                    stored = await self._completed.upsert(record, session=session)
                    deleted = await self._live.delete(match_id, session=session)
        except MigrationAborted as exc:
            MIGRATIONS.labels(outcome="aborted").inc()
            logger.info("migration_aborted", match_id=match_id, reason=exc.reason)
            self._set_state(match_id, TransitionState.LIVE)
            return False
        except RecordValidationError as exc:
            MIGRATIONS.labels(outcome="invalid").inc()
            logger.warning("migration_rejected", match_id=match_id, errors=exc.errors)
            self._set_state(match_id, TransitionState.LIVE)
            return False
        except Exception as exc:
            MIGRATIONS.labels(outcome="failed").inc()
            logger.error("migration_failed", match_id=match_id, error=str(exc), exc_info=True)
            self._set_state(match_id, TransitionState.LIVE)
            return False

        self._set_state(match_id, TransitionState.COMPLETED)
        MIGRATIONS.labels(outcome="migrated").inc()
        logger.info(
            "match_migrated",
            match_id=match_id,
            live_deleted=deleted,
            winner=stored.result.winner.value,
            result_source=stored.result.data_source.value,
        )
        await self._notifier.on_match_updated(match_id, stored)
        await self._publish_live_set()
        return True

    def _completed_record(
        self, match_id: str, payload: dict[str, Any], live: Optional[LiveMatchRecord]
    ) -> CompletedMatchRecord:
        match = self._normalizer.normalize(payload)
        if match is None:
            raise MigrationAborted(match_id, "payload could not be normalized")
        if match.match_id != match_id:
            raise MigrationAborted(match_id, f"payload belongs to match {match.match_id!r}")
        match = carry_identity(match, live)
        result = self._normalizer.result_for(payload, match)
        if result is None:
            raise MigrationAborted(match_id, "provider has not asserted a result yet")
        return build_completed_record(match, result, live)

    async def _publish_live_set(self) -> None:
        try:
            records = await self._live.list_all()
        except Exception as exc:
            logger.warning("live_set_read_failed", error=str(exc))
            return
        LIVE_MATCHES.set(len(records))
        await self._notifier.on_live_set_changed(records)

    async def process_transitions(self) -> int:
        """Detect then migrate. Returns the number of matches migrated."""
        candidates = await self.detect()
        migrated = 0
        for candidate in candidates:
            if await self.migrate(candidate.match_id, candidate.payload):
                migrated += 1
        if candidates:
            logger.info("transitions_processed", candidates=len(candidates), migrated=migrated)
        return migrated
