"""
Pydantic v2 domain models shared across all Live Crease services.
These are the canonical wire/internal representations, NOT ORM models.

Numeric fields are Optional throughout: None means the provider did not supply
the value, which is different from a supplied zero.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from shared.models.enums import (
    Confidence,
    LifecycleStage,
    MarginType,
    MatchFormat,
    ResultSource,
    Winner,
)


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Reference entities ──────────────────────────────────────────────────
class TeamRef(DomainModel):
    id: str
    name: Optional[str] = None
    short_code: Optional[str] = None
    emblem_url: Optional[str] = None


class Teams(DomainModel):
    home: TeamRef
    away: TeamRef

    def side_of(self, team_id: Any) -> Optional[Winner]:
        """Map a provider team id onto home/away, or None if it is neither."""
        if team_id is None:
            return None
        key = str(team_id)
        if key == self.home.id and key != self.away.id:
            return Winner.HOME
        if key == self.away.id and key != self.home.id:
            return Winner.AWAY
        return None

    def team(self, side: Winner) -> Optional[TeamRef]:
        if side == Winner.HOME:
            return self.home
        if side == Winner.AWAY:
            return self.away
        return None


class Venue(DomainModel):
    name: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None


# ── Score ───────────────────────────────────────────────────────────────
class Score(DomainModel):
    runs: Optional[int] = None
    wickets: Optional[int] = None
    overs: Optional[float] = None
    balls: Optional[int] = None

    @property
    def is_all_out(self) -> bool:
        return self.wickets is not None and self.wickets >= 10


class ScoreLine(DomainModel):
    """Current score per side. A None side means that team has no innings yet."""
    home: Optional[Score] = None
    away: Optional[Score] = None


class InningsScore(DomainModel):
    number: int
    label: Optional[str] = None
    team_id: Optional[str] = None
    team_name: Optional[str] = None
    runs: Optional[int] = None
    wickets: Optional[int] = None
    overs: Optional[float] = None
    run_rate: Optional[float] = None


# ── Scorecard entries ───────────────────────────────────────────────────
class BattingEntry(DomainModel):
    player_id: str
    player_name: Optional[str] = None
    team_id: Optional[str] = None
    innings: Optional[str] = None
    runs: Optional[int] = None
    balls: Optional[int] = None
    fours: Optional[int] = None
    sixes: Optional[int] = None
    strike_rate: Optional[float] = None
    active: bool = False
    is_out: Optional[bool] = None
    bowler_id: Optional[str] = None
    fielder_id: Optional[str] = None
    runout_by_id: Optional[str] = None
    fow_score: Optional[int] = None
    fow_balls: Optional[float] = None


class BowlingEntry(DomainModel):
    player_id: str
    player_name: Optional[str] = None
    team_id: Optional[str] = None
    innings: Optional[str] = None
    overs: Optional[float] = None
    maidens: Optional[int] = None
    runs: Optional[int] = None
    wickets: Optional[int] = None
    wides: Optional[int] = None
    no_balls: Optional[int] = None
    economy: Optional[float] = None
    active: bool = False


class Partnership(DomainModel):
    runs: Optional[int] = None
    balls: Optional[int] = None
    run_rate: Optional[float] = None


class LastWicket(DomainModel):
    player_id: Optional[str] = None
    player_name: Optional[str] = None
    runs: Optional[int] = None
    balls: Optional[int] = None
    fow_score: Optional[int] = None
    fow_balls: Optional[float] = None


# ── Result ──────────────────────────────────────────────────────────────
class ProviderAssertedResult(DomainModel):
    """
    A match outcome asserted by the upstream provider.

    Build it with ``from_structured`` (a structured provider result) or
    ``from_note`` (a provider note cross-checked against the provider winner id).
    ``ResultSource`` has no member for locally computed outcomes.
    """

    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    winner: Winner
    winner_name: Optional[str] = None
    margin: Optional[int] = None
    margin_type: Optional[MarginType] = None
    result_text: str
    data_source: ResultSource

    @model_validator(mode="after")
    def check_well_formed(self) -> "ProviderAssertedResult":
        if self.winner != Winner.DRAW and not self.winner_name:
            raise ValueError("winner_name is required when a side won")
        if self.margin is not None:
            if self.margin < 0:
                raise ValueError("margin must be non-negative")
            if self.margin_type is None:
                raise ValueError("margin_type is required when margin is given")
        return self

    @classmethod
    def from_structured(
        cls,
        *,
        winner: Winner,
        result_text: str,
        winner_name: Optional[str] = None,
        margin: Optional[int] = None,
        margin_type: Optional[MarginType] = None,
    ) -> "ProviderAssertedResult":
        return cls(
            winner=winner,
            winner_name=winner_name,
            margin=margin,
            margin_type=margin_type,
            result_text=result_text,
            data_source=ResultSource.PROVIDER,
        )

    @classmethod
    def from_note(
        cls,
        *,
        winner: Winner,
        result_text: str,
        winner_name: Optional[str] = None,
        margin: Optional[int] = None,
        margin_type: Optional[MarginType] = None,
    ) -> "ProviderAssertedResult":
        return cls(
            winner=winner,
            winner_name=winner_name,
            margin=margin,
            margin_type=margin_type,
            result_text=result_text,
            data_source=ResultSource.PARSED_FROM_PROVIDER_NOTE,
        )


# ── Classification ──────────────────────────────────────────────────────
class Classification(DomainModel):
    stage: LifecycleStage
    confidence: Confidence
    reason: str
    rule: str = "default"

    @property
    def is_high(self) -> bool:
        return self.confidence == Confidence.HIGH


# ── Canonical match ─────────────────────────────────────────────────────
class MatchFacts(DomainModel):
    """Fields shared by the normalizer output and both stored records."""
    match_id: str
    series: Optional[str] = None
    teams: Optional[Teams] = None
    venue: Optional[Venue] = None
    format: Optional[MatchFormat] = None
    start_time: Optional[datetime] = None
    status_text: Optional[str] = None
    note: Optional[str] = None
    round: Optional[str] = None
    toss_won_team_id: Optional[str] = None
    elected: Optional[str] = None
    innings: Optional[list[InningsScore]] = None
    batting: Optional[list[BattingEntry]] = None
    bowling: Optional[list[BowlingEntry]] = None


class CanonicalMatch(MatchFacts):
    """
    Normalized view of one provider payload.

    List fields are None when the provider omitted the include for this fetch,
    and an empty list when it was present but empty.
    """
    end_time: Optional[datetime] = None
    current_score: ScoreLine = Field(default_factory=ScoreLine)
    current_innings: Optional[str] = None
    current_batters: Optional[list[BattingEntry]] = None
    current_bowlers: Optional[list[BowlingEntry]] = None
    partnership: Optional[Partnership] = None
    last_wicket: Optional[LastWicket] = None
    man_of_match_id: Optional[str] = None
    man_of_series_id: Optional[str] = None
    total_overs_played: Optional[float] = None
    super_over: Optional[bool] = None
    follow_on: Optional[bool] = None
    draw_no_result: Optional[bool] = None


# ── Stored records ──────────────────────────────────────────────────────
LIVE_BOOKKEEPING_FIELDS = frozenset({"update_count", "created_at", "updated_at", "expires_at"})


class LiveMatchRecord(MatchFacts):
    current_score: ScoreLine = Field(default_factory=ScoreLine)
    current_innings: Optional[str] = None
    current_batters: Optional[list[BattingEntry]] = None
    current_bowlers: Optional[list[BowlingEntry]] = None
    partnership: Optional[Partnership] = None
    last_wicket: Optional[LastWicket] = None
    update_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    @classmethod
    def from_canonical(cls, match: CanonicalMatch) -> "LiveMatchRecord":
        return cls.model_validate(match.model_dump(exclude={"end_time"}))

    def document(self) -> dict[str, Any]:
        """The mergeable part of the record: supplied fields only, bookkeeping excluded."""
        return self.model_dump(mode="json", exclude_none=True, exclude=set(LIVE_BOOKKEEPING_FIELDS))


class CompletedMatchRecord(MatchFacts):
    end_time: Optional[datetime] = None
    final_score: ScoreLine = Field(default_factory=ScoreLine)
    result: ProviderAssertedResult
    man_of_match_id: Optional[str] = None
    man_of_series_id: Optional[str] = None
    total_overs_played: Optional[float] = None
    super_over: Optional[bool] = None
    follow_on: Optional[bool] = None
    draw_no_result: Optional[bool] = None
    api_fetched_at: datetime
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True, exclude={"created_at", "updated_at"})

    def missing_player_ids(self) -> set[str]:
        """Player ids on scorecard entries that still lack a resolved name."""
        ids: set[str] = set()
        for entry in [*(self.batting or []), *(self.bowling or [])]:
            if entry.player_id and not entry.player_name:
                ids.add(entry.player_id)
        return ids


# ── Completed listing ───────────────────────────────────────────────────
class CompletedFilter(DomainModel):
    format: Optional[MatchFormat] = None
    series: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Pagination(DomainModel):
    current: int
    pages: int
    total: int
    limit: int


class CompletedPage(DomainModel):
    items: list[CompletedMatchRecord] = Field(default_factory=list)
    pagination: Pagination


# ── Scheduler ───────────────────────────────────────────────────────────
class JobRun(DomainModel):
    job: str
    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    ok: bool = False
    skipped: bool = False
    result: Any = None
    error: Optional[str] = None
