"""
Unit tests for payload normalization: identity resolution, present-or-absent
numbers, player names and the live-state fragments.
"""
from __future__ import annotations

from typing import Any

import pytest

from shared.models.enums import MatchFormat

from conftest import AWAY_ID, HOME_ID, fixture_payload, innings
from ingest.normalization.extractors import parse_format
from ingest.normalization.normalizer import ScoreNormalizer
from ingest.normalization.scoreboard import extract_score_entries, resolve_sides


@pytest.fixture
def normalizer() -> ScoreNormalizer:
    return ScoreNormalizer()


def batter(player_id: int, name: str, scoreboard: str = "S2", active: bool = True, **extra: Any) -> dict[str, Any]:
    item: dict[str, Any] = {
        "player_id": player_id,
        "team_id": AWAY_ID,
        "scoreboard": scoreboard,
        "score": 30,
        "ball": 22,
        "four_x": 3,
        "six_x": 1,
        "rate": 136.36,
        "active": active,
        "batsman": {"id": player_id, "fullname": name},
    }
    item.update(extra)
    return item


# ── Identity and drops ──────────────────────────────────────────────────

class TestIdentity:
    def test_non_object_payload_is_dropped(self, normalizer: ScoreNormalizer) -> None:
        assert normalizer.normalize(None) is None
        assert normalizer.normalize(["not", "a", "match"]) is None  # type: ignore[arg-type]

    @pytest.mark.parametrize("raw_id", ["undefined", "null", "", "12 34", "id;drop", None])
    def test_invalid_match_id_is_dropped(self, normalizer: ScoreNormalizer, raw_id: Any) -> None:
        assert normalizer.normalize(fixture_payload(match_id=raw_id)) is None

    def test_match_facts(self, normalizer: ScoreNormalizer) -> None:
        match = normalizer.normalize(fixture_payload(match_id=1001))
        assert match is not None
        assert match.match_id == "1001"
        assert match.series == "Indian Premier League"
        assert match.format == MatchFormat.T20
        assert match.teams is not None
        assert match.teams.home.id == str(HOME_ID)
        assert match.teams.home.name == "Mumbai Indians"
        assert match.teams.away.short_code == "CSK"
        assert match.venue is not None and match.venue.city == "Mumbai"
        assert match.start_time is not None and match.start_time.tzinfo is not None
        assert match.round == "12th Match"


# ── Score resolution ────────────────────────────────────────────────────

class TestScoreResolution:
    def test_scores_follow_team_ids_not_position(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            runs=[innings(AWAY_ID, 1, 150, 6, 20.0), innings(HOME_ID, 2, 90, 2, 11.0)],
        )
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_score.home is not None and match.current_score.home.runs == 90
        assert match.current_score.away is not None and match.current_score.away.runs == 150

    def test_colliding_team_ids_never_share_an_entry(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            runs=[innings(HOME_ID, 1, 150, 6, 20.0), innings(HOME_ID, 2, 90, 2, 11.0)],
        )
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_score.home is not None
        assert match.current_score.away is None

    def test_resolution_reports_correction(self) -> None:
        payload = fixture_payload(
            runs=[innings(HOME_ID, 1, 150, 6, 20.0), innings(HOME_ID, 2, 90, 2, 11.0)],
        )
        resolved = resolve_sides(extract_score_entries(payload), str(HOME_ID), str(AWAY_ID))
        assert resolved.corrected
        assert not resolved.distinguishable

    def test_untagged_entries_fall_back_to_position(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(runs=[{"inning": 1, "score": 100, "wickets": 3, "overs": 12.4}])
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_score.home is not None
        assert match.current_score.home.runs == 100
        assert match.current_score.home.balls == 4
        assert match.current_score.away is None

    def test_innings_list_has_run_rate(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(runs=[innings(HOME_ID, 1, 120, 4, 15.0)])
        match = normalizer.normalize(payload)
        assert match is not None and match.innings is not None
        first = match.innings[0]
        assert first.number == 1
        assert first.team_name == "Mumbai Indians"
        assert first.run_rate == 8.0


# ── Present-or-absent ───────────────────────────────────────────────────

class TestPresentOrAbsent:
    def test_missing_includes_stay_none(self, normalizer: ScoreNormalizer) -> None:
        match = normalizer.normalize(fixture_payload())
        assert match is not None
        assert match.innings is None
        assert match.batting is None
        assert match.bowling is None
        assert match.current_batters is None
        assert match.current_score.home is None
        assert match.current_score.away is None

    def test_empty_includes_are_empty_lists(self, normalizer: ScoreNormalizer) -> None:
        match = normalizer.normalize(fixture_payload(runs=[], batting=[], bowling=[]))
        assert match is not None
        assert match.innings == []
        assert match.batting == []
        assert match.bowling == []

    def test_missing_numbers_are_not_zero_filled(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(runs=[innings(HOME_ID, 1, None, None, None)])
        match = normalizer.normalize(payload)
        assert match is not None
        home = match.current_score.home
        assert home is not None
        assert home.runs is None
        assert home.wickets is None
        assert home.overs is None

    def test_supplied_zero_is_kept(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(runs=[innings(HOME_ID, 1, 0, 0, 0.1)])
        match = normalizer.normalize(payload)
        assert match is not None and match.current_score.home is not None
        assert match.current_score.home.runs == 0
        assert match.current_score.home.wickets == 0


# ── Players and live state ──────────────────────────────────────────────

class TestLiveState:
    def test_player_names_come_from_the_nested_profile(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(status="2nd Innings", batting=[batter(501, "Ruturaj Gaikwad")])
        match = normalizer.normalize(payload)
        assert match is not None and match.batting is not None
        entry = match.batting[0]
        assert entry.player_id == "501"
        assert entry.player_name == "Ruturaj Gaikwad"
        assert entry.fours == 3
        assert entry.strike_rate == 136.36

    def test_entries_without_player_id_are_skipped(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(batting=[{"scoreboard": "S1", "score": 4}])
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.batting == []

    def test_current_batters_are_active_and_not_out(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            status="2nd Innings",
            batting=[
                batter(501, "Ruturaj Gaikwad"),
                batter(502, "Devon Conway", batsmanout_id=0, bowling_player_id=0),
                batter(503, "Shivam Dube", batsmanout_id=503, bowling_player_id=901, fow_score=88, fow_balls=10.2),
                batter(504, "Rohit Sharma", scoreboard="S1"),
                batter(505, "Moeen Ali", active=False),
            ],
        )
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_innings == "S2"
        assert [b.player_id for b in match.current_batters or []] == ["501", "502"]

    def test_last_wicket_derived_from_batting(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            status="2nd Innings",
            batting=[
                batter(503, "Shivam Dube", batsmanout_id=503, bowling_player_id=901, fow_score=88, fow_balls=10.2),
                batter(506, "Ravindra Jadeja", batsmanout_id=506, bowling_player_id=902, fow_score=120, fow_balls=14.1),
            ],
        )
        match = normalizer.normalize(payload)
        assert match is not None and match.last_wicket is not None
        assert match.last_wicket.player_id == "506"
        assert match.last_wicket.player_name == "Ravindra Jadeja"
        assert match.last_wicket.fow_score == 120

    def test_current_bowlers(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            status="2nd Innings",
            bowling=[
                {"player_id": 901, "scoreboard": "S2", "overs": 3.0, "runs": 24, "wickets": 1, "active": True},
                {"player_id": 902, "scoreboard": "S2", "overs": 2.0, "runs": 12, "wickets": 0, "active": False},
            ],
        )
        match = normalizer.normalize(payload)
        assert match is not None
        assert [b.player_id for b in match.current_bowlers or []] == ["901"]
        assert match.bowling is not None and match.bowling[0].player_name is None

    def test_partnership(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(partnership={"runs": 45, "balls": 30, "rate": 9.0})
        match = normalizer.normalize(payload)
        assert match is not None and match.partnership is not None
        assert match.partnership.runs == 45
        assert match.partnership.run_rate == 9.0

    def test_current_innings_from_latest_scoreboard(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(
            status=None,
            runs=[innings(HOME_ID, 1, 170, 6, 20.0), innings(AWAY_ID, 2, 40, 1, 4.3)],
        )
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_innings == "S2"

    def test_current_innings_after_toss(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(status=None, toss_won_team_id=HOME_ID, elected="batting")
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_innings == "S1"

    def test_undeterminable_innings_selects_no_current_players(self, normalizer: ScoreNormalizer) -> None:
        payload = fixture_payload(status=None, batting=[batter(501, "Ruturaj Gaikwad")])
        match = normalizer.normalize(payload)
        assert match is not None
        assert match.current_innings is None
        assert match.current_batters == []


# ── Format names ────────────────────────────────────────────────────────

@pytest.mark.parametrize(
    "raw, expected",
    [
        ("T20", MatchFormat.T20),
        ("Women's T20", MatchFormat.T20),
        ("T20I", MatchFormat.T20I),
        ("ODI Qualifier", MatchFormat.ODI),
        ("List A", MatchFormat.LIST_A),
        ("Test/5day", MatchFormat.TEST),
        ("4day", MatchFormat.FIRST_CLASS),
        ("Contest", None),
        ("", None),
        (None, None),
    ],
)
def test_parse_format(raw: Any, expected: Any) -> None:
    assert parse_format(raw) == expected
