"""
Redis connection manager for Live Crease.
Provides the async connection pool, the provider response cache, and pub/sub publish helpers.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
CACHE_LIVE_KEY = "cache:sportmonks:livescores"
CACHE_FINISHED_KEY = "cache:sportmonks:finished"
CACHE_DETAIL_KEY = "cache:sportmonks:fixture:{match_id}"
CACHE_PLAYER_KEY = "cache:sportmonks:player:{player_id}"
MATCH_CHANNEL = "cricket:match:{match_id}"
LIVE_SET_CHANNEL = "cricket:live"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize the connection pool."""
        self._pool = aioredis.from_url(
            self._settings.redis_url_str,
            max_connections=self._settings.redis_max_connections,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_keepalive=True,
            retry_on_timeout=True,
        )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Response cache ──────────────────────────────────────────────────
    async def get_cached_json(self, key: str) -> Optional[Any]:
        """Return a decoded cached value, or None on miss or undecodable entry."""
        raw = await self.client.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("cache_entry_corrupt", key=key)
            await self.client.delete(key)
            return None

    async def set_cached_json(self, key: str, value: Any, ttl_s: int) -> None:
        """Store a JSON-encodable value with TTL."""
        await self.client.set(key, json.dumps(value, default=str), ex=ttl_s)

    # ── Pub/Sub ─────────────────────────────────────────────────────────
    async def publish_match_update(self, match_id: str, payload: str) -> int:
        """Publish a match update to the per-match channel. Returns receiver count."""
        channel = _fmt(MATCH_CHANNEL, match_id=match_id)
        return int(await self.client.publish(channel, payload))

    async def publish_live_set(self, payload: str) -> int:
        """Publish the current live set to the live-set channel. Returns receiver count."""
        return int(await self.client.publish(LIVE_SET_CHANNEL, payload))

