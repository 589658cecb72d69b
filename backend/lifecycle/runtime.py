"""
Component wiring for one process.

The API and the headless scheduler both build the same graph here so that
every component shares one provider client, one database manager and one set
of stores.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.redis_manager import RedisManager

from ingest.normalization.normalizer import ScoreNormalizer
from ingest.providers.base import BaseCricketProvider
from ingest.providers.sportmonks import SportMonksCricketProvider
from ingest.service import IngestService
from lifecycle.completed_store import CompletedMatchStore
from lifecycle.enrichment import PlayerNameEnricher
from lifecycle.live_store import LiveMatchStore
from lifecycle.notifier import MatchUpdateNotifier
from lifecycle.transition import TransitionEngine

logger = get_logger(__name__)


@dataclass
class LifecycleRuntime:
    settings: Settings
    db: DatabaseManager
    redis: Optional[RedisManager]
    provider: BaseCricketProvider
    normalizer: ScoreNormalizer
    notifier: MatchUpdateNotifier
    enricher: PlayerNameEnricher
    live_store: LiveMatchStore
    completed_store: CompletedMatchStore
    transition: TransitionEngine
    ingest: IngestService

    async def start(self) -> None:
        await self.provider.start()
        logger.info("lifecycle_runtime_started", provider=self.provider.name)

    async def close(self) -> None:
        await self.completed_store.wait_for_write_backs()
        await self.provider.close()
        logger.info("lifecycle_runtime_stopped")


def build_runtime(
    db: DatabaseManager,
    redis: Optional[RedisManager] = None,
    settings: Settings | None = None,
    provider: Optional[BaseCricketProvider] = None,
) -> LifecycleRuntime:
    """Wire provider, stores, engine and pipelines. ``provider`` overrides SportMonks (tests)."""
    settings = settings or get_settings()
    provider = provider or SportMonksCricketProvider(redis=redis, settings=settings)
    normalizer = ScoreNormalizer()
    notifier = MatchUpdateNotifier(redis)
    enricher = PlayerNameEnricher(provider, settings)
    live_store = LiveMatchStore(db, settings)
    completed_store = CompletedMatchStore(db, enricher=enricher, settings=settings)
    transition = TransitionEngine(
        provider=provider,
        live_store=live_store,
        completed_store=completed_store,
        db=db,
        notifier=notifier,
        normalizer=normalizer,
        settings=settings,
    )
    ingest = IngestService(
        provider=provider,
        live_store=live_store,
        completed_store=completed_store,
        transition=transition,
        db=db,
        normalizer=normalizer,
        enricher=enricher,
        notifier=notifier,
        settings=settings,
    )
    return LifecycleRuntime(
        settings=settings,
        db=db,
        redis=redis,
        provider=provider,
        normalizer=normalizer,
        notifier=notifier,
        enricher=enricher,
        live_store=live_store,
        completed_store=completed_store,
        transition=transition,
        ingest=ingest,
    )
