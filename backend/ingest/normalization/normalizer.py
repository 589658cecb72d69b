"""
Normalization layer for provider cricket payloads.

Maps a raw SportMonks payload onto the canonical match representation:
teams, venue, format, innings, current score, batting/bowling entries and the
live-state fragments (current batters/bowlers, partnership, last dismissal).
Values the provider did not send stay None; nothing is zero-filled.
"""
from __future__ import annotations

from typing import Any, Optional

from shared.models.domain import (
    BattingEntry,
    BowlingEntry,
    CanonicalMatch,
    LastWicket,
    Partnership,
    ProviderAssertedResult,
    Teams,
)
from shared.utils.logging import get_logger
from shared.utils.metrics import NORMALIZATION_DROPS

from ingest.normalization.extractors import (
    END_TIME_EXTRACTORS,
    Extractor,
    MATCH_ID_EXTRACTORS,
    NOTE_EXTRACTORS,
    SERIES_EXTRACTORS,
    START_TIME_EXTRACTORS,
    STATUS_TEXT_EXTRACTORS,
    as_list,
    dig,
    extract_format,
    extract_player_name,
    extract_teams,
    extract_venue,
    first_of,
    innings_from_status,
    innings_label,
    to_bool,
    to_float,
    to_id,
    to_int,
    to_text,
)
from ingest.normalization.results import derive_result
from ingest.normalization.scoreboard import (
    ResolvedScores,
    ScoreEntry,
    build_innings,
    extract_score_entries,
    resolve_sides,
)
from ingest.validation import sanitize_match_id

logger = get_logger(__name__)

_SCORE_INCLUDES = ("runs", "scoreboards", "scores")
_DISMISSAL_FIELDS = ("batsmanout_id", "catch_stump_player_id", "runout_by_id", "bowling_player_id")

PLAYER_ID_EXTRACTORS: list[Extractor] = [
    lambda e: to_id(e.get("player_id")),
    lambda e: to_id(dig(e, "batsman", "id")),
    lambda e: to_id(dig(e, "bowler", "id")),
    lambda e: to_id(dig(e, "player", "id")),
]

CURRENT_INNINGS_EXTRACTORS: list[Extractor] = [
    lambda p: innings_label(p.get("current_innings")),
    lambda p: innings_label(dig(p, "live", "innings")),
    lambda p: innings_from_status(to_text(p.get("status"))),
]

PARTNERSHIP_EXTRACTORS: list[Extractor] = [
    lambda p: dig(p, "partnership"),
    lambda p: dig(p, "current_partnership"),
]

LAST_WICKET_EXTRACTORS: list[Extractor] = [
    lambda p: dig(p, "last_wicket"),
    lambda p: dig(p, "lastWicket"),
]


def _included(payload: dict[str, Any], *keys: str) -> bool:
    return any(key in payload and payload[key] is not None for key in keys)


class ScoreNormalizer:
    """
    Turns raw provider payloads into ``CanonicalMatch`` objects.

    Stateless; one instance is shared by the ingest pipelines and the
    transition engine.
    """

    def normalize(self, payload: Optional[dict[str, Any]]) -> Optional[CanonicalMatch]:
        """
        Normalize one payload.

        Returns:
            The canonical match, or None when the payload has no usable identity.
        """
        if not isinstance(payload, dict):
            self._drop("not_an_object", None)
            return None
        match_id = sanitize_match_id(first_of(MATCH_ID_EXTRACTORS, payload))
        if match_id is None:
            self._drop("invalid_match_id", payload.get("id"))
            return None

        teams = extract_teams(payload)
        home_id = teams.home.id if teams else None
        away_id = teams.away.id if teams else None

        entries = extract_score_entries(payload)
        resolved = resolve_sides(entries, home_id, away_id)
        if resolved.corrected:
            logger.info(
                "score_identity_corrected",
                match_id=match_id,
                home_present=resolved.home is not None,
                away_present=resolved.away is not None,
            )

        batting = self._batting(payload)
        bowling = self._bowling(payload)
        current_innings = self._current_innings(payload, entries)

        return CanonicalMatch(
            match_id=match_id,
            series=first_of(SERIES_EXTRACTORS, payload),
            teams=teams,
            venue=extract_venue(payload),
            format=extract_format(payload),
            start_time=first_of(START_TIME_EXTRACTORS, payload),
            end_time=first_of(END_TIME_EXTRACTORS, payload),
            status_text=first_of(STATUS_TEXT_EXTRACTORS, payload),
            note=first_of(NOTE_EXTRACTORS, payload),
            round=to_text(payload.get("round")),
            toss_won_team_id=to_id(payload.get("toss_won_team_id")),
            elected=to_text(payload.get("elected")),
            current_score=resolved.score_line(),
            innings=self._innings(payload, entries, teams),
            batting=batting,
            bowling=bowling,
            current_innings=current_innings,
            current_batters=self._current(batting, current_innings, batters=True),
            current_bowlers=self._current(bowling, current_innings, batters=False),
            partnership=self._partnership(payload),
            last_wicket=self._last_wicket(payload, batting, current_innings),
            man_of_match_id=to_id(payload.get("man_of_match_id")),
            man_of_series_id=to_id(payload.get("man_of_series_id")),
            total_overs_played=to_float(payload.get("total_overs_played")),
            super_over=to_bool(payload.get("super_over")),
            follow_on=to_bool(payload.get("follow_on")),
            draw_no_result=to_bool(payload.get("draw_noresult")) if payload.get("draw_noresult") is not None else None,
        )

    def result_for(self, payload: dict[str, Any], match: CanonicalMatch) -> Optional[ProviderAssertedResult]:
        """The provider-asserted result for a normalized payload, or None if not yet asserted."""
        return derive_result(payload, match.teams)

    def resolve_scores(self, payload: dict[str, Any], teams: Optional[Teams]) -> ResolvedScores:
        entries = extract_score_entries(payload)
        return resolve_sides(entries, teams.home.id if teams else None, teams.away.id if teams else None)

    # ── Helpers ─────────────────────────────────────────────────────────
    @staticmethod
    def _drop(reason: str, raw_id: Any) -> None:
        NORMALIZATION_DROPS.labels(reason=reason).inc()
        logger.warning("normalization_dropped", reason=reason, raw_id=raw_id)

    @staticmethod
    def _innings(
        payload: dict[str, Any], entries: list[ScoreEntry], teams: Optional[Teams]
    ) -> Optional[list]:
        if not entries:
            return [] if _included(payload, *_SCORE_INCLUDES) else None
        return build_innings(entries, teams)

    @staticmethod
    def _current_innings(payload: dict[str, Any], entries: list[ScoreEntry]) -> Optional[str]:
        """
        The innings currently in play: an explicit provider field, the "Nth Innings"
        status text, the latest scoreboard with activity, or (before any scoring)
        the first innings when the toss has been decided. None when undeterminable.
        """
        explicit = first_of(CURRENT_INNINGS_EXTRACTORS, payload)
        if explicit:
            return explicit
        active = [entry for entry in entries if entry.has_activity and entry.label]
        if active:
            return max(active, key=lambda entry: entry.order).label
        if to_id(payload.get("toss_won_team_id")) and to_text(payload.get("elected")):
            return "S1"
        return None

    @staticmethod
    def _is_out(item: dict[str, Any]) -> Optional[bool]:
        explicit = to_bool(item.get("is_out"))
        if explicit is not None:
            return explicit
        present = [field for field in _DISMISSAL_FIELDS if field in item]
        if not present:
            return None
        return any(to_id(item.get(field)) for field in present)

    def _batting(self, payload: dict[str, Any]) -> Optional[list[BattingEntry]]:
        if not _included(payload, "batting"):
            return None
        entries = []
        for item in as_list(payload.get("batting")):
            player_id = first_of(PLAYER_ID_EXTRACTORS, item)
            if not player_id:
                continue
            entries.append(
                BattingEntry(
                    player_id=player_id,
                    player_name=extract_player_name(item),
                    team_id=to_id(item.get("team_id")),
                    innings=innings_label(item.get("scoreboard")),
                    runs=to_int(item.get("score")),
                    balls=to_int(item.get("ball")),
                    fours=to_int(item.get("four_x")),
                    sixes=to_int(item.get("six_x")),
                    strike_rate=to_float(item.get("rate")),
                    active=to_bool(item.get("active")) is True,
                    is_out=self._is_out(item),
                    bowler_id=to_id(item.get("bowling_player_id")),
                    fielder_id=to_id(item.get("catch_stump_player_id")),
                    runout_by_id=to_id(item.get("runout_by_id")),
                    fow_score=to_int(item.get("fow_score")),
                    fow_balls=to_float(item.get("fow_balls")),
                )
            )
        return entries

    def _bowling(self, payload: dict[str, Any]) -> Optional[list[BowlingEntry]]:
        if not _included(payload, "bowling"):
            return None
        entries = []
        for item in as_list(payload.get("bowling")):
            player_id = first_of(PLAYER_ID_EXTRACTORS, item)
            if not player_id:
                continue
            entries.append(
                BowlingEntry(
                    player_id=player_id,
                    player_name=extract_player_name(item),
                    team_id=to_id(item.get("team_id")),
                    innings=innings_label(item.get("scoreboard")),
                    overs=to_float(item.get("overs")),
                    maidens=to_int(item.get("medians")),
                    runs=to_int(item.get("runs")),
                    wickets=to_int(item.get("wickets")),
                    wides=to_int(item.get("wide")),
                    no_balls=to_int(item.get("noball")),
                    economy=to_float(item.get("rate")),
                    active=to_bool(item.get("active")) is True,
                )
            )
        return entries

    @staticmethod
    def _current(entries: Optional[list], current_innings: Optional[str], batters: bool) -> Optional[list]:
        """Entries explicitly flagged active in the current innings; batters must not be out."""
        if entries is None:
            return None
        if current_innings is None:
            return []
        selected = []
        for entry in entries:
            if not entry.active or entry.innings != current_innings:
                continue
            if batters and entry.is_out:
                continue
            selected.append(entry)
        return selected

    @staticmethod
    def _partnership(payload: dict[str, Any]) -> Optional[Partnership]:
        raw = first_of(PARTNERSHIP_EXTRACTORS, payload)
        if not isinstance(raw, dict):
            return None
        partnership = Partnership(
            runs=to_int(raw.get("runs")),
            balls=to_int(raw.get("balls")),
            run_rate=to_float(raw.get("run_rate")) if raw.get("run_rate") is not None else to_float(raw.get("rate")),
        )
        if partnership.runs is None and partnership.balls is None:
            return None
        return partnership

    @staticmethod
    def _last_wicket(
        payload: dict[str, Any],
        batting: Optional[list[BattingEntry]],
        current_innings: Optional[str],
    ) -> Optional[LastWicket]:
        raw = first_of(LAST_WICKET_EXTRACTORS, payload)
        if isinstance(raw, dict):
            return LastWicket(
                player_id=to_id(raw.get("player_id")) or to_id(raw.get("batsman_id")),
                player_name=to_text(raw.get("player_name")) or extract_player_name(raw),
                runs=to_int(raw.get("runs")) if raw.get("runs") is not None else to_int(raw.get("score")),
                balls=to_int(raw.get("balls")) if raw.get("balls") is not None else to_int(raw.get("ball")),
                fow_score=to_int(raw.get("fow_score")),
                fow_balls=to_float(raw.get("fow_balls")),
            )

        if not batting or current_innings is None:
            return None
        dismissed = [
            entry
            for entry in batting
            if entry.innings == current_innings and entry.is_out is True and entry.fow_score is not None
        ]
        if not dismissed:
            return None
        latest = max(dismissed, key=lambda entry: (entry.fow_balls or 0.0, entry.fow_score or 0))
        return LastWicket(
            player_id=latest.player_id,
            player_name=latest.player_name,
            runs=latest.runs,
            balls=latest.balls,
            fow_score=latest.fow_score,
            fow_balls=latest.fow_balls,
        )
