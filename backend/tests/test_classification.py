"""
Unit tests for the lifecycle status classifier: rule priority, conflicts and
the limited-overs scorecard cross-check.
"""
from __future__ import annotations

from datetime import datetime, timezone

from shared.models.enums import Confidence, LifecycleStage

from ingest.classification.status import RULES, classify, is_completed, is_live
from conftest import AWAY_ID, HOME_ID, finished_payload, fixture_payload, innings

NOW = datetime(2026, 10, 17, 14, 0, tzinfo=timezone.utc)


# ── Rule priority ───────────────────────────────────────────────────────

def test_rules_are_ordered_by_priority() -> None:
    names = [rule.__name__ for rule in RULES]
    assert names == [
        "rule_state_code",
        "rule_status_finished",
        "rule_result_note",
        "rule_innings_markers",
        "rule_live_flag",
        "rule_time_window",
    ]


def test_finished_code_with_live_status_is_live() -> None:
    verdict = classify(fixture_payload(state_id=5, status="2nd Innings"), NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.confidence == Confidence.HIGH
    assert verdict.rule == "state_code"


def test_finished_code_with_finished_status_is_completed() -> None:
    verdict = classify(fixture_payload(state_id=5, status="Finished", live=False), NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.confidence == Confidence.HIGH


def test_finished_code_without_status_is_completed() -> None:
    verdict = classify(fixture_payload(state_id=5, status=None, live=False), NOW)
    assert verdict.stage == LifecycleStage.COMPLETED


def test_in_progress_code_is_live() -> None:
    verdict = classify(fixture_payload(state_id=3, status=None), NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.is_high


def test_not_started_code_defers_when_status_says_live() -> None:
    verdict = classify(fixture_payload(state_id=1, status="1st Innings"), NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.rule == "innings_markers"


def test_not_started_code_is_upcoming() -> None:
    verdict = classify(fixture_payload(state_id=1, status="NS", live=False), NOW)
    assert verdict.stage == LifecycleStage.UPCOMING
    assert verdict.is_high


def test_result_note_completes_match() -> None:
    payload = fixture_payload(status=None, live=False, note="Chennai Super Kings won by 6 wickets")
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.rule == "result_note"


def test_status_text_outranks_live_flag() -> None:
    verdict = classify(fixture_payload(status="Finished", live=True), NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.rule == "status_text"


def test_live_flag_alone_is_medium_confidence() -> None:
    verdict = classify(fixture_payload(status=None, live=True), NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.confidence == Confidence.MEDIUM
    assert not is_live(fixture_payload(status=None, live=True), NOW)


def test_future_start_is_upcoming() -> None:
    payload = fixture_payload(status=None, live=None, starting_at="2026-10-18T10:00:00Z")
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.UPCOMING
    assert verdict.rule == "time_window"


def test_started_with_scores_is_medium_live() -> None:
    payload = fixture_payload(status=None, live=None, runs=[innings(HOME_ID, 1, 40, 1, 5.2)])
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.confidence == Confidence.MEDIUM


def test_no_signals_defaults_to_low_upcoming() -> None:
    payload = {"id": 5, "localteam_id": HOME_ID, "visitorteam_id": AWAY_ID}
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.UPCOMING
    assert verdict.confidence == Confidence.LOW
    assert verdict.rule == "default"


# ── Scenarios ───────────────────────────────────────────────────────────

def test_abandoned_match_is_completed_high() -> None:
    payload = fixture_payload(state_id=6, status=None, note="", live=False)
    assert is_completed(payload, NOW)


def test_both_sides_all_out_escalates_live_to_completed() -> None:
    payload = fixture_payload(
        status="2nd Innings",
        runs=[innings(HOME_ID, 1, 142, 10, 18.3), innings(AWAY_ID, 2, 121, 10, 17.1)],
    )
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.confidence == Confidence.HIGH
    assert verdict.rule == "scorecard"


def test_both_sides_at_max_overs_escalates() -> None:
    payload = fixture_payload(
        status="2nd Innings",
        runs=[innings(HOME_ID, 1, 170, 6, 20.0), innings(AWAY_ID, 2, 150, 7, 20.0)],
    )
    assert is_completed(payload, NOW)


def test_descriptive_format_names_still_get_the_scorecard_check() -> None:
    payload = fixture_payload(
        status="2nd Innings",
        match_type="Women's T20",
        runs=[innings(HOME_ID, 1, 142, 10, 18.3), innings(AWAY_ID, 2, 121, 10, 17.1)],
    )
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.rule == "scorecard"


def test_finished_status_with_innings_in_progress_is_forced_live() -> None:
    payload = fixture_payload(
        status="Finished",
        runs=[innings(HOME_ID, 1, 180, 5, 20.0), innings(AWAY_ID, 2, 120, 3, 14.0)],
    )
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.LIVE
    assert verdict.is_high
    assert verdict.rule == "scorecard"


def test_completed_chase_is_not_forced_live() -> None:
    payload = fixture_payload(
        status="Finished",
        runs=[innings(HOME_ID, 1, 150, 8, 20.0), innings(AWAY_ID, 2, 151, 4, 17.2)],
    )
    assert is_completed(payload, NOW)


def test_result_note_is_not_forced_live() -> None:
    payload = fixture_payload(
        status=None,
        note="Mumbai Indians won by 30 runs (D/L method)",
        runs=[innings(HOME_ID, 1, 180, 5, 20.0), innings(AWAY_ID, 2, 90, 3, 11.0)],
    )
    assert is_completed(payload, NOW)


def test_timed_formats_skip_the_scorecard_check() -> None:
    payload = fixture_payload(
        status="Finished",
        match_type="Test",
        runs=[innings(HOME_ID, 1, 350, 7, 98.0), innings(AWAY_ID, 2, 120, 3, 40.0)],
    )
    verdict = classify(payload, NOW)
    assert verdict.stage == LifecycleStage.COMPLETED
    assert verdict.rule == "status_text"


def test_colliding_team_ids_skip_the_scorecard_check() -> None:
    payload = fixture_payload(
        status="Finished",
        runs=[innings(HOME_ID, 1, 180, 5, 20.0), innings(HOME_ID, 2, 120, 3, 14.0)],
    )
    assert is_completed(payload, NOW)


def test_finished_fixture_helper_is_completed() -> None:
    assert is_completed(finished_payload(), NOW)
