"""Domain enumerations for the Live Crease platform."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class LifecycleStage(str, Enum):
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Winner(str, Enum):
    HOME = "home"
    AWAY = "away"
    DRAW = "draw"


class MarginType(str, Enum):
    RUNS = "runs"
    WICKETS = "wickets"


class ResultSource(str, Enum):
    """Where a match result came from. Only provider-sourced values exist."""
    PROVIDER = "provider"
    PARSED_FROM_PROVIDER_NOTE = "parsed-from-provider-note"


class MatchFormat(str, Enum):
    TEST = "test"
    ODI = "odi"
    T20I = "t20i"
    T20 = "t20"
    T10 = "t10"
    LIST_A = "list_a"
    FIRST_CLASS = "first_class"

    @property
    def max_overs(self) -> Optional[int]:
        """Legal maximum overs per innings, or None for timed formats."""
        return _MAX_OVERS.get(self)

    @property
    def is_limited_overs(self) -> bool:
        return self.max_overs is not None


_MAX_OVERS: dict[MatchFormat, int] = {
    MatchFormat.T20I: 20,
    MatchFormat.T20: 20,
    MatchFormat.T10: 10,
    MatchFormat.ODI: 50,
    MatchFormat.LIST_A: 50,
}


class TransitionState(str, Enum):
    """Per-match state inside the transition engine."""
    LIVE = "live"
    VERIFYING = "verifying"
    MIGRATING = "migrating"
    COMPLETED = "completed"
