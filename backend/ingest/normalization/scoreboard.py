"""
Score-entry extraction and home/away identity resolution.

Shared by the normalizer (to build the current score and innings list) and by
the status classifier (for the scorecard cross-check), so both read the same
team-to-score assignment.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from shared.models.domain import InningsScore, Score, ScoreLine, Teams
from shared.models.enums import MatchFormat

from ingest.normalization.extractors import (
    Extractor,
    as_list,
    dig,
    first_of,
    innings_label,
    label_order,
    overs_as_decimal,
    overs_to_balls,
    to_bool,
    to_float,
    to_id,
    to_int,
)


@dataclass(frozen=True)
class ScoreEntry:
    """One innings total as the provider reported it."""
    team_id: Optional[str]
    label: Optional[str]
    runs: Optional[int]
    wickets: Optional[int]
    overs: Optional[float]
    all_out: Optional[bool] = None

    @property
    def order(self) -> int:
        return label_order(self.label)

    @property
    def has_activity(self) -> bool:
        return self.runs is not None or self.overs is not None

    def to_score(self) -> Score:
        wickets = self.wickets
        if wickets is None and self.all_out is True:
            wickets = 10
        return Score(runs=self.runs, wickets=wickets, overs=self.overs, balls=overs_to_balls(self.overs))


def _from_runs(payload: dict[str, Any]) -> list[ScoreEntry]:
    return [
        ScoreEntry(
            team_id=to_id(item.get("team_id")),
            label=innings_label(item.get("inning")),
            runs=to_int(item.get("score")),
            wickets=to_int(item.get("wickets")),
            overs=to_float(item.get("overs")),
            all_out=to_bool(item.get("all_out")),
        )
        for item in as_list(payload.get("runs"))
    ]


def _from_scoreboards(payload: dict[str, Any]) -> list[ScoreEntry]:
    return [
        ScoreEntry(
            team_id=to_id(item.get("team_id")),
            label=innings_label(item.get("scoreboard")),
            runs=to_int(item.get("total")),
            wickets=to_int(item.get("wickets")),
            overs=to_float(item.get("overs")),
            all_out=to_bool(item.get("all_out")),
        )
        for item in as_list(payload.get("scoreboards"))
        if str(item.get("type", "total")).lower() == "total"
    ]


def _v3_runs(item: dict[str, Any]) -> Optional[int]:
    score = dig(item, "score")
    if isinstance(score, dict):
        return to_int(score.get("runs"))
    return to_int(score) if score is not None else to_int(item.get("runs"))


def _from_scores(payload: dict[str, Any]) -> list[ScoreEntry]:
    return [
        ScoreEntry(
            team_id=to_id(item.get("participant_id")) or to_id(item.get("team_id")),
            label=innings_label(item.get("scoreboard")),
            runs=_v3_runs(item),
            wickets=to_int(item.get("wickets")) if item.get("wickets") is not None else to_int(dig(item, "score", "wickets")),
            overs=to_float(item.get("overs")) if item.get("overs") is not None else to_float(dig(item, "score", "overs")),
            all_out=to_bool(item.get("all_out")),
        )
        for item in as_list(payload.get("scores"))
    ]


SCORE_ENTRY_EXTRACTORS: list[Extractor] = [_from_runs, _from_scoreboards, _from_scores]


def extract_score_entries(payload: dict[str, Any]) -> list[ScoreEntry]:
    return first_of(SCORE_ENTRY_EXTRACTORS, payload) or []


# ── Identity resolution ─────────────────────────────────────────────────
@dataclass(frozen=True)
class ResolvedScores:
    home: Optional[ScoreEntry]
    away: Optional[ScoreEntry]
    home_id: Optional[str]
    away_id: Optional[str]
    corrected: bool = False

    @property
    def distinguishable(self) -> bool:
        """Both sides present, different entries, and each verified against its own team id."""
        if self.home is None or self.away is None or self.home is self.away:
            return False
        if not self.home_id or not self.away_id or self.home_id == self.away_id:
            return False
        return self.home.team_id == self.home_id and self.away.team_id == self.away_id

    def score_line(self) -> ScoreLine:
        return ScoreLine(
            home=self.home.to_score() if self.home else None,
            away=self.away.to_score() if self.away else None,
        )


def _latest_for(entries: list[ScoreEntry], team_id: Optional[str]) -> Optional[ScoreEntry]:
    if team_id is None:
        return None
    owned = [e for e in entries if e.team_id == team_id]
    return max(owned, key=lambda e: e.order) if owned else None


def _by_position(entries: list[ScoreEntry], order: int) -> Optional[ScoreEntry]:
    for entry in entries:
        if entry.order == order:
            return entry
    return None


def resolve_sides(
    entries: list[ScoreEntry],
    home_id: Optional[str],
    away_id: Optional[str],
) -> ResolvedScores:
    """
    Assign score entries to home and away.

    Each side takes its own team's latest innings, falling back to the
    provider's positional convention (first scoreboard home, second away).
    A positional pick that carries another team's reference, or that lands on
    the same entry as the other side, is replaced by a search of the full list
    for the side's own team; when no such entry exists the side is left empty.
    """
    home = _latest_for(entries, home_id) or _by_position(entries, 1)
    away = _latest_for(entries, away_id) or _by_position(entries, 2)
    corrected = False

    def _own_or_none(picked: Optional[ScoreEntry], team_id: Optional[str]) -> Optional[ScoreEntry]:
        nonlocal corrected
        if picked is None or picked.team_id is None or picked.team_id == team_id:
            return picked
        corrected = True
        return _latest_for(entries, team_id)

    home = _own_or_none(home, home_id)
    away = _own_or_none(away, away_id)

    if home is not None and away is not None:
        same_entry = home is away
        same_team = home.team_id is not None and home.team_id == away.team_id
        if same_entry or same_team:
            corrected = True
            shared = home.team_id
            if shared is not None and shared == home_id:
                away = _latest_for([e for e in entries if e is not home], away_id)
            elif shared is not None and shared == away_id:
                home = _latest_for([e for e in entries if e is not away], home_id)
            else:
                home = _latest_for(entries, home_id)
                away = _latest_for(entries, away_id)
            if home is not None and home is away:
                away = None

    return ResolvedScores(home=home, away=away, home_id=home_id, away_id=away_id, corrected=corrected)


def build_innings(entries: list[ScoreEntry], teams: Optional[Teams]) -> list[InningsScore]:
    names: dict[str, Optional[str]] = {}
    if teams is not None:
        names = {teams.home.id: teams.home.name, teams.away.id: teams.away.name}
    innings = []
    for index, entry in enumerate(sorted(entries, key=lambda e: e.order), start=1):
        decimal_overs = overs_as_decimal(entry.overs)
        run_rate = None
        if entry.runs is not None and decimal_overs:
            run_rate = round(entry.runs / decimal_overs, 2)
        innings.append(
            InningsScore(
                number=entry.order or index,
                label=entry.label,
                team_id=entry.team_id,
                team_name=names.get(entry.team_id) if entry.team_id else None,
                runs=entry.runs,
                wickets=entry.to_score().wickets,
                overs=entry.overs,
                run_rate=run_rate,
            )
        )
    return innings


# ── Innings completion (limited-overs only) ─────────────────────────────
def innings_ended(entry: ScoreEntry, fmt: MatchFormat) -> bool:
    """All out, or the format's legal maximum overs reached."""
    score = entry.to_score()
    if score.is_all_out:
        return True
    max_overs = fmt.max_overs
    return max_overs is not None and entry.overs is not None and entry.overs >= max_overs


def chase_completed(resolved: ResolvedScores) -> bool:
    """The side that batted second has passed the first side's total."""
    if not resolved.distinguishable:
        return False
    first, second = sorted([resolved.home, resolved.away], key=lambda e: e.order)
    if first.order == second.order:
        return False
    if first.runs is None or second.runs is None:
        return False
    return second.runs > first.runs
