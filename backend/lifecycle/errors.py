"""Exceptions raised by the lifecycle stores and the transition engine."""
from __future__ import annotations


class StorageContentionError(RuntimeError):
    """A duplicate-key race on the live store kept failing after the bounded retry."""

    def __init__(self, match_id: str, attempts: int) -> None:
        super().__init__(f"live upsert for {match_id!r} still contended after {attempts} attempts")
        self.match_id = match_id
        self.attempts = attempts


class MigrationAborted(Exception):
    """Raised inside the migration transaction to roll it back; the match stays live."""

    def __init__(self, match_id: str, reason: str) -> None:
        super().__init__(f"migration of {match_id!r} aborted: {reason}")
        self.match_id = match_id
        self.reason = reason
