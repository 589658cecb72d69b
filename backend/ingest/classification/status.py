"""
Lifecycle status classifier.

A raw provider payload is reduced to a handful of signals, then run through an
ordered list of named rules; the first rule that returns a verdict wins. When
a lower-priority signal contradicts the verdict it is logged as a conflict
rather than silently dropped. A scorecard cross-check runs last and may move
a live verdict to completed (both innings over) or a completed verdict back to
live (an innings visibly still in progress).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from shared.models.domain import Classification
from shared.models.enums import Confidence, LifecycleStage
from shared.utils.logging import get_logger
from shared.utils.metrics import CLASSIFICATIONS, CLASSIFICATION_CONFLICTS

from ingest.normalization.extractors import (
    LIVE_FLAG_EXTRACTORS,
    MATCH_ID_EXTRACTORS,
    NOTE_EXTRACTORS,
    START_TIME_EXTRACTORS,
    STATE_CODE_EXTRACTORS,
    STATUS_TEXT_EXTRACTORS,
    WINNER_ID_EXTRACTORS,
    extract_format,
    extract_team_ids,
    first_of,
)
from ingest.normalization.results import is_abandoned
from ingest.normalization.scoreboard import (
    ScoreEntry,
    chase_completed,
    extract_score_entries,
    innings_ended,
    resolve_sides,
)

logger = get_logger(__name__)

FINISHED_STATE_CODES = frozenset({5, 6})
IN_PROGRESS_STATE_CODES = frozenset({3, 4})
NOT_STARTED_STATE_CODES = frozenset({1, 2})

_FINISHED_STATUS_MARKERS = ("finished", "completed", "result", "aban", "cancl")
_RESULT_NOTE_MARKERS = ("won by", "tied", "no result", "abandoned")
_LIVE_STATUS_MARKERS = ("innings", "live", "in progress", "stumps", "lunch", "tea break", "drinks")


@dataclass(frozen=True)
class Signals:
    """The provider fields the rules look at, read once per payload."""
    match_id: Optional[str]
    state_code: Optional[int]
    status: str
    note: str
    live_flag: Optional[bool]
    start_time: Optional[datetime]
    winner_team_id: Optional[str]
    score_entries: tuple[ScoreEntry, ...]

    @property
    def status_finished(self) -> bool:
        lowered = self.status.lower()
        return any(marker in lowered for marker in _FINISHED_STATUS_MARKERS)

    @property
    def status_live(self) -> bool:
        lowered = self.status.lower()
        return any(marker in lowered for marker in _LIVE_STATUS_MARKERS)

    @property
    def note_has_result(self) -> bool:
        lowered = self.note.lower()
        return any(marker in lowered for marker in _RESULT_NOTE_MARKERS)

    @property
    def has_score_data(self) -> bool:
        return any(entry.has_activity for entry in self.score_entries)


def read_signals(payload: dict[str, Any]) -> Signals:
    return Signals(
        match_id=first_of(MATCH_ID_EXTRACTORS, payload),
        state_code=first_of(STATE_CODE_EXTRACTORS, payload),
        status=first_of(STATUS_TEXT_EXTRACTORS, payload) or "",
        note=first_of(NOTE_EXTRACTORS, payload) or "",
        live_flag=first_of(LIVE_FLAG_EXTRACTORS, payload),
        start_time=first_of(START_TIME_EXTRACTORS, payload),
        winner_team_id=first_of(WINNER_ID_EXTRACTORS, payload),
        score_entries=tuple(extract_score_entries(payload)),
    )


def _verdict(stage: LifecycleStage, confidence: Confidence, rule: str, reason: str) -> Classification:
    return Classification(stage=stage, confidence=confidence, rule=rule, reason=reason)


def _conflict(rule: str, signals: Signals, detail: str, **context: Any) -> None:
    CLASSIFICATION_CONFLICTS.labels(rule=rule).inc()
    logger.info(
        "classification_conflict",
        rule=rule,
        match_id=signals.match_id,
        detail=detail,
        state_code=signals.state_code,
        status=signals.status,
        **context,
    )


# ── Rules, highest priority first ───────────────────────────────────────
def rule_state_code(signals: Signals, now: datetime) -> Optional[Classification]:
    code = signals.state_code
    if code is None:
        return None

    if code in FINISHED_STATE_CODES:
        if signals.status and not signals.status_finished:
            _conflict("state_code", signals, "finished code contradicted by non-finished status text")
            return _verdict(
                LifecycleStage.LIVE,
                Confidence.HIGH,
                "state_code",
                f"state_id={code} but status={signals.status!r} is not finished",
            )
        return _verdict(LifecycleStage.COMPLETED, Confidence.HIGH, "state_code", f"state_id={code} (finished/abandoned)")

    if code in IN_PROGRESS_STATE_CODES:
        if signals.status_finished:
            _conflict("state_code", signals, "in-progress code contradicted by finished status text")
            return _verdict(
                LifecycleStage.COMPLETED,
                Confidence.HIGH,
                "state_code",
                f"state_id={code} but status={signals.status!r} indicates completion",
            )
        return _verdict(LifecycleStage.LIVE, Confidence.HIGH, "state_code", f"state_id={code} (in progress/break)")

    if code in NOT_STARTED_STATE_CODES:
        if signals.status_finished or signals.status_live:
            _conflict("state_code", signals, "not-started code contradicted by status text; deferring")
            return None
        return _verdict(LifecycleStage.UPCOMING, Confidence.HIGH, "state_code", f"state_id={code} (not started)")

    return None


def rule_status_finished(signals: Signals, now: datetime) -> Optional[Classification]:
    if signals.status_finished:
        return _verdict(
            LifecycleStage.COMPLETED, Confidence.HIGH, "status_text", f"status={signals.status!r} indicates completion"
        )
    return None


def rule_result_note(signals: Signals, now: datetime) -> Optional[Classification]:
    if signals.note_has_result:
        if signals.status_live:
            _conflict("result_note", signals, "result note alongside live status text", note=signals.note[:100])
        return _verdict(
            LifecycleStage.COMPLETED, Confidence.HIGH, "result_note", f"note contains a result: {signals.note[:50]!r}"
        )
    return None


def rule_innings_markers(signals: Signals, now: datetime) -> Optional[Classification]:
    if signals.status_live:
        return _verdict(
            LifecycleStage.LIVE, Confidence.HIGH, "innings_markers", f"status={signals.status!r} indicates play in progress"
        )
    return None


def rule_live_flag(signals: Signals, now: datetime) -> Optional[Classification]:
    if signals.live_flag is not True:
        return None
    if signals.status_finished:
        _conflict("live_flag", signals, "live flag contradicted by finished status text")
        return _verdict(
            LifecycleStage.COMPLETED,
            Confidence.HIGH,
            "live_flag",
            f"live=true but status={signals.status!r} indicates completion",
        )
    return _verdict(LifecycleStage.LIVE, Confidence.MEDIUM, "live_flag", "live flag is true")


def rule_time_window(signals: Signals, now: datetime) -> Optional[Classification]:
    start = signals.start_time
    if start is None:
        return None
    if start > now:
        return _verdict(LifecycleStage.UPCOMING, Confidence.HIGH, "time_window", f"starts at {start.isoformat()}")
    if signals.has_score_data:
        return _verdict(LifecycleStage.LIVE, Confidence.MEDIUM, "time_window", "start time passed and score data present")
    return None


Rule = Callable[[Signals, datetime], Optional[Classification]]

RULES: tuple[Rule, ...] = (
    rule_state_code,
    rule_status_finished,
    rule_result_note,
    rule_innings_markers,
    rule_live_flag,
    rule_time_window,
)

DEFAULT_VERDICT = Classification(
    stage=LifecycleStage.UPCOMING,
    confidence=Confidence.LOW,
    rule="default",
    reason="no clear indicators",
)


# ── Scorecard cross-check ───────────────────────────────────────────────
def reconcile_with_scorecard(
    payload: dict[str, Any], signals: Signals, verdict: Classification
) -> Classification:
    """
    Compare a live/completed verdict with the innings totals.

    Only limited-overs formats qualify (the overs limit must be known), and only
    when both sides' entries are distinguishable after identity correction.
    """
    if verdict.stage == LifecycleStage.UPCOMING:
        return verdict
    fmt = extract_format(payload)
    if fmt is None or not fmt.is_limited_overs:
        return verdict

    home_id, away_id = extract_team_ids(payload)
    resolved = resolve_sides(list(signals.score_entries), home_id, away_id)
    if not resolved.distinguishable:
        return verdict

    home_done = innings_ended(resolved.home, fmt)
    away_done = innings_ended(resolved.away, fmt)

    if verdict.stage == LifecycleStage.LIVE and home_done and away_done:
        return _verdict(
            LifecycleStage.COMPLETED,
            Confidence.HIGH,
            "scorecard",
            f"both innings over ({fmt.value}: all out or {fmt.max_overs} overs); was {verdict.rule}",
        )

    if verdict.stage == LifecycleStage.COMPLETED and not (home_done and away_done):
        asserted = (
            verdict.rule == "result_note"
            or signals.winner_team_id is not None
            or is_abandoned(payload)
            or chase_completed(resolved)
        )
        if asserted:
            return verdict
        _conflict(
            "scorecard",
            signals,
            "completed verdict but an innings is still in progress",
            home_done=home_done,
            away_done=away_done,
        )
        return _verdict(
            LifecycleStage.LIVE,
            Confidence.HIGH,
            "scorecard",
            f"innings still in progress; overrides {verdict.rule}",
        )

    return verdict


# ── Public API ──────────────────────────────────────────────────────────
def classify(payload: dict[str, Any], now: Optional[datetime] = None) -> Classification:
    """Classify a raw provider payload into {stage, confidence, reason}."""
    now = now or datetime.now(timezone.utc)
    signals = read_signals(payload)

    verdict = DEFAULT_VERDICT
    for rule in RULES:
        result = rule(signals, now)
        if result is not None:
            verdict = result
            break

    verdict = reconcile_with_scorecard(payload, signals, verdict)
    CLASSIFICATIONS.labels(stage=verdict.stage.value, confidence=verdict.confidence.value).inc()
    logger.debug(
        "match_classified",
        match_id=signals.match_id,
        stage=verdict.stage.value,
        confidence=verdict.confidence.value,
        rule=verdict.rule,
        reason=verdict.reason,
    )
    return verdict


def is_completed(payload: dict[str, Any], now: Optional[datetime] = None) -> bool:
    verdict = classify(payload, now)
    return verdict.stage == LifecycleStage.COMPLETED and verdict.is_high


def is_live(payload: dict[str, Any], now: Optional[datetime] = None) -> bool:
    verdict = classify(payload, now)
    return verdict.stage == LifecycleStage.LIVE and verdict.is_high
