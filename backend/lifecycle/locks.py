"""
Per-match write locks.

The live refresh, the completed sync and the transition engine share one
event loop. Holding a match's lock across "is it already completed?" and the
write that follows keeps a match out of both stores at once.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator


class MatchLocks:
    """Lazily created ``asyncio.Lock`` per match id, dropped once no task holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, match_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(match_id, asyncio.Lock())
        self._users[match_id] = self._users.get(match_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[match_id] -= 1
            if not self._users[match_id]:
                del self._users[match_id]
                self._locks.pop(match_id, None)

    def __len__(self) -> int:
        return len(self._locks)
