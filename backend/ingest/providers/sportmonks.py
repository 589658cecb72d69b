"""
SportMonks cricket provider connector (REST API v2).

Every response is wrapped as ``{"data": ...}``; include-fields vary between
endpoints and between fetches, which the normalizer absorbs downstream. This
module only fetches, unwraps and caches.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from shared.config import Settings, get_settings
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.redis_manager import (
    CACHE_DETAIL_KEY,
    CACHE_FINISHED_KEY,
    CACHE_LIVE_KEY,
    CACHE_PLAYER_KEY,
    RedisManager,
)

from ingest.providers.base import BaseCricketProvider, ProviderUnavailableError

logger = get_logger(__name__)

PROVIDER_NAME = "sportmonks"

# Status strings the fixtures listing uses for matches that are over.
_TERMINAL_STATUSES = frozenset({"Finished", "Aban.", "Cancl.", "Postp."})


def _unwrap(body: Any) -> Any:
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


def _as_list(value: Any) -> list[dict[str, Any]]:
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    if isinstance(value, dict):
        return [value]
    return []


def _parse_start(payload: dict[str, Any]) -> Optional[datetime]:
    raw = payload.get("starting_at")
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class SportMonksCricketProvider(BaseCricketProvider):
    """SportMonks cricket API v2 connector with a Redis response cache."""

    def __init__(
        self,
        redis: Optional[RedisManager] = None,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        http = http_client or ProviderHTTPClient(
            provider_name=PROVIDER_NAME,
            base_url=self._settings.sportmonks_base_url,
            default_params={"api_token": self._settings.sportmonks_api_token},
        )
        super().__init__(PROVIDER_NAME, http, redis)

    # ── Listings ────────────────────────────────────────────────────────
    async def fetch_live_matches(self) -> list[dict[str, Any]]:
        async def load() -> list[dict[str, Any]]:
            try:
                body = await self._http.get_json(
                    "/livescores",
                    params={"include": self._settings.sportmonks_live_includes},
                    endpoint="livescores",
                )
            except ProviderUnavailableError:
                if not self._settings.provider_fixture_fallback_enabled:
                    raise
                logger.warning("live_listing_fixture_fallback", provider=self.name)
                return await self._live_from_fixtures()
            return _as_list(_unwrap(body))

        return await self._cached(CACHE_LIVE_KEY, self._settings.cache_live_ttl_s, "livescores", load)

    async def _live_from_fixtures(self) -> list[dict[str, Any]]:
        """In-play candidates from today's fixtures: started and not in a terminal status."""
        now = datetime.now(timezone.utc)
        window = f"{(now - timedelta(days=1)).date().isoformat()},{(now + timedelta(days=1)).date().isoformat()}"
        body = await self._http.get_json(
            "/fixtures",
            params={
                "include": self._settings.sportmonks_live_includes,
                "filter[starts_between]": window,
            },
            endpoint="fixtures_live_fallback",
        )
        candidates = []
        for payload in _as_list(_unwrap(body)):
            start = _parse_start(payload)
            if start is None or start > now:
                continue
            if payload.get("status") in _TERMINAL_STATUSES:
                continue
            candidates.append(payload)
        return candidates

    async def fetch_recently_finished(self) -> list[dict[str, Any]]:
        async def load() -> list[dict[str, Any]]:
            now = datetime.now(timezone.utc)
            since = now - timedelta(days=self._settings.completed_sync_lookback_days)
            body = await self._http.get_json(
                "/fixtures",
                params={
                    "include": "localteam,visitorteam",
                    "filter[status]": "Finished",
                    "filter[starts_between]": f"{since.date().isoformat()},{now.date().isoformat()}",
                    "sort": "-starting_at",
                    "per_page": str(self._settings.sportmonks_finished_per_page),
                },
                endpoint="fixtures_finished",
            )
            return _as_list(_unwrap(body))

        return await self._cached(
            CACHE_FINISHED_KEY, self._settings.cache_finished_ttl_s, "fixtures_finished", load
        )

    # ── Lookups ─────────────────────────────────────────────────────────
    async def fetch_match(self, match_id: str, fresh: bool = False) -> Optional[dict[str, Any]]:
        async def load() -> Optional[dict[str, Any]]:
            body = await self._http.get_json(
                f"/fixtures/{match_id}",
                params={"include": self._settings.sportmonks_detail_includes},
                endpoint="fixture_detail",
            )
            data = _unwrap(body)
            return data if isinstance(data, dict) and data else None

        return await self._cached(
            CACHE_DETAIL_KEY.format(match_id=match_id),
            self._settings.cache_detail_ttl_s,
            "fixture_detail",
            load,
            fresh=fresh,
        )

    async def fetch_player(self, player_id: str) -> Optional[dict[str, Any]]:
        async def load() -> Optional[dict[str, Any]]:
            body = await self._http.get_json(f"/players/{player_id}", endpoint="player")
            data = _unwrap(body)
            return data if isinstance(data, dict) and data else None

        return await self._cached(
            CACHE_PLAYER_KEY.format(player_id=player_id),
            self._settings.cache_player_ttl_s,
            "player",
            load,
        )
