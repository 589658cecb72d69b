"""
Best-effort player-name enrichment for completed scorecards.
"""
from __future__ import annotations

import asyncio
from collections import OrderedDict
from typing import Iterable, Optional

from shared.config import Settings, get_settings
from shared.models.domain import CompletedMatchRecord
from shared.utils.logging import get_logger
from shared.utils.metrics import ENRICHMENT_LOOKUPS

from ingest.normalization.extractors import player_name_from_profile
from ingest.providers.base import BaseCricketProvider

logger = get_logger(__name__)


def apply_player_names(record: CompletedMatchRecord, names: dict[str, str]) -> CompletedMatchRecord:
    """Copy of ``record`` with unnamed batting/bowling entries filled from ``names``."""
    if not names:
        return record

    def patch(entries):
        if entries is None:
            return None
        return [
            entry.model_copy(update={"player_name": names[entry.player_id]})
            if not entry.player_name and entry.player_id in names
            else entry
            for entry in entries
        ]

    return record.model_copy(update={"batting": patch(record.batting), "bowling": patch(record.bowling)})


class PlayerNameEnricher:
    """
    Resolves player ids to names through the provider's player endpoint.

    Lookups run concurrently under a semaphore and resolved names are kept
    in an LRU of ``enrichment_cache_size`` entries. A failed lookup is logged
    and the id is left unnamed.
    """

    def __init__(self, provider: BaseCricketProvider, settings: Settings | None = None) -> None:
        self._provider = provider
        self._settings = settings or get_settings()
        self._semaphore = asyncio.Semaphore(max(1, self._settings.enrichment_concurrency))
        self._names: OrderedDict[str, str] = OrderedDict()
        self._cache_size = max(1, self._settings.enrichment_cache_size)

    async def resolve(self, player_ids: Iterable[str]) -> dict[str, str]:
        wanted = sorted({pid for pid in player_ids if pid})
        resolved = {pid: self._cached(pid) for pid in wanted if pid in self._names}
        pending = [pid for pid in wanted if pid not in resolved]
        if pending:
            found = await asyncio.gather(*(self._lookup(pid) for pid in pending))
            for pid, name in zip(pending, found):
                if name:
                    self._remember(pid, name)
                    resolved[pid] = name
        return resolved

    def _cached(self, player_id: str) -> str:
        self._names.move_to_end(player_id)
        return self._names[player_id]

    def _remember(self, player_id: str, name: str) -> None:
        self._names[player_id] = name
        self._names.move_to_end(player_id)
        while len(self._names) > self._cache_size:
            self._names.popitem(last=False)

    async def enrich(self, record: CompletedMatchRecord) -> CompletedMatchRecord:
        """Returns ``record`` itself when nothing could be resolved, else a patched copy."""
        missing = record.missing_player_ids()
        if not missing:
            return record
        names = await self.resolve(missing)
        if not names:
            return record
        logger.info(
            "player_names_enriched",
            match_id=record.match_id,
            resolved=len(names),
            missing=len(missing),
        )
        return apply_player_names(record, names)

    async def _lookup(self, player_id: str) -> Optional[str]:
        async with self._semaphore:
            try:
                profile = await self._provider.fetch_player(player_id)
            except Exception as exc:
                ENRICHMENT_LOOKUPS.labels(outcome="failed").inc()
                logger.warning("player_lookup_failed", player_id=player_id, error=str(exc))
                return None

        name = player_name_from_profile(profile) if profile else None
        ENRICHMENT_LOOKUPS.labels(outcome="resolved" if name else "unresolved").inc()
        return name
