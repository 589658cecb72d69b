"""
Abstract base class for cricket data providers.
Defines the contract every provider connector implements and the shared response cache.
"""
from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable, Optional

from shared.utils.http_client import (
    ProviderError,
    ProviderHTTPClient,
    ProviderTransientError,
    ProviderUnavailableError,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_CACHE
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)

__all__ = [
    "BaseCricketProvider",
    "ProviderError",
    "ProviderTransientError",
    "ProviderUnavailableError",
]


class BaseCricketProvider(abc.ABC):
    """
    Abstract base class for cricket score providers.

    Subclasses implement the raw fetches; the base class owns the HTTP client
    lifecycle and an optional Redis read-through cache. Cache failures are
    logged and bypassed, never raised.
    """

    def __init__(
        self,
        name: str,
        http_client: ProviderHTTPClient,
        redis: Optional[RedisManager] = None,
    ) -> None:
        self._name = name
        self._http = http_client
        self._redis = redis

    @property
    def name(self) -> str:
        return self._name

    async def start(self) -> None:
        """Initialize the provider HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the provider HTTP client."""
        await self._http.close()

    async def _cached(
        self,
        key: str,
        ttl_s: int,
        endpoint: str,
        loader: Callable[[], Awaitable[Any]],
        fresh: bool = False,
    ) -> Any:
        """Read-through cache around ``loader``. ``fresh`` skips the read but still refreshes the entry."""
        if self._redis is not None and not fresh:
            try:
                hit = await self._redis.get_cached_json(key)
            except Exception as exc:
                logger.warning("provider_cache_read_failed", key=key, error=str(exc))
                hit = None
            if hit is not None:
                PROVIDER_CACHE.labels(endpoint=endpoint, outcome="hit").inc()
                return hit
            PROVIDER_CACHE.labels(endpoint=endpoint, outcome="miss").inc()

        value = await loader()

        if self._redis is not None and value is not None and ttl_s > 0:
            try:
                await self._redis.set_cached_json(key, value, ttl_s)
            except Exception as exc:
                logger.warning("provider_cache_write_failed", key=key, error=str(exc))
        return value

    # ── Contract ────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def fetch_live_matches(self) -> list[dict[str, Any]]:
        """Payloads for matches the provider currently lists as in play."""

    @abc.abstractmethod
    async def fetch_recently_finished(self) -> list[dict[str, Any]]:
        """Payloads for fixtures the provider lists as finished, newest first."""

    @abc.abstractmethod
    async def fetch_match(self, match_id: str, fresh: bool = False) -> Optional[dict[str, Any]]:
        """Full detail payload for one match, or None if the provider returned nothing."""

    @abc.abstractmethod
    async def fetch_player(self, player_id: str) -> Optional[dict[str, Any]]:
        """Player profile payload, or None."""
