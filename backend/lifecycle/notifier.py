"""
Outbound push notifications over Redis pub/sub.

Envelope format: ``{"type", "match_id", "data", "ts"}``. Publishing is
best-effort: a Redis failure is logged and never propagates to the pipeline
that produced the update.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from pydantic import BaseModel

from shared.models.domain import CompletedMatchRecord
from shared.utils.logging import get_logger
from shared.utils.metrics import NOTIFICATIONS
from shared.utils.redis_manager import RedisManager

logger = get_logger(__name__)


def _envelope(kind: str, data: Any, match_id: Optional[str] = None) -> str:
    body: dict[str, Any] = {"type": kind, "data": data, "ts": datetime.now(timezone.utc).isoformat()}
    if match_id is not None:
        body["match_id"] = match_id
    return json.dumps(body, default=str)


def _dump(record: Optional[BaseModel]) -> Any:
    return record.model_dump(mode="json", exclude_none=True) if record is not None else None


class MatchUpdateNotifier:
    """Publishes per-match updates and live-set changes. A no-op without Redis."""

    def __init__(self, redis: Optional[RedisManager] = None) -> None:
        self._redis = redis

    async def on_match_updated(self, match_id: str, record: Optional[BaseModel]) -> None:
        kind = "match_completed" if isinstance(record, CompletedMatchRecord) else "match_updated"
        if self._redis is None:
            return
        try:
            receivers = await self._redis.publish_match_update(match_id, _envelope(kind, _dump(record), match_id))
        except Exception as exc:
            logger.warning("notify_match_failed", match_id=match_id, kind=kind, error=str(exc))
            return
        NOTIFICATIONS.labels(kind=kind).inc()
        logger.debug("notify_match", match_id=match_id, kind=kind, receivers=receivers)

    async def on_live_set_changed(self, records: Iterable[BaseModel]) -> None:
        if self._redis is None:
            return
        data = [_dump(record) for record in records]
        try:
            receivers = await self._redis.publish_live_set(_envelope("live_set", data))
        except Exception as exc:
            logger.warning("notify_live_set_failed", error=str(exc))
            return
        NOTIFICATIONS.labels(kind="live_set").inc()
        logger.debug("notify_live_set", matches=len(data), receivers=receivers)
