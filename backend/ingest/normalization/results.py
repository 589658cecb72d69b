"""
Match result derivation.

Only two sources are accepted: a structured result asserted by the provider,
or the provider's free-text note cross-checked against the provider's winner
id. There is no code path that infers a winner from runs, wickets or overs;
when neither source yields a result the match is simply not ready for the
completed store yet.
"""
from __future__ import annotations

import re
from typing import Any, Callable, Optional

from shared.models.domain import ProviderAssertedResult, Teams
from shared.models.enums import MarginType, Winner
from shared.utils.logging import get_logger

from ingest.normalization.extractors import (
    NOTE_EXTRACTORS,
    STATE_CODE_EXTRACTORS,
    STATUS_TEXT_EXTRACTORS,
    WINNER_ID_EXTRACTORS,
    dig,
    first_of,
    to_bool,
    to_id,
    to_int,
    to_text,
)

logger = get_logger(__name__)

NO_RESULT_TEXT = "No Result"
DRAW_TEXT = "Match Drawn"

ABANDONED_STATE_CODES = frozenset({6})
_ABANDONED_STATUSES = ("aban", "cancl", "abandoned", "cancelled")

_WON_BY_RE = re.compile(
    r"^(?P<team>.+?)\s+won\s+by\s+(?:an\s+innings\s+and\s+)?(?P<margin>\d+)\s+(?P<unit>runs?|wickets?|wkts?)\b",
    re.IGNORECASE,
)
_WON_RE = re.compile(r"^(?P<team>.+?)\s+won\b", re.IGNORECASE)
_TIED_RE = re.compile(r"\btied?\b", re.IGNORECASE)
_NO_RESULT_RE = re.compile(r"\bno\s+result\b|\babandoned\b", re.IGNORECASE)
_DRAWN_RE = re.compile(r"\bdrawn?\b", re.IGNORECASE)

ResultSourceFn = Callable[[dict[str, Any], Teams], Optional[ProviderAssertedResult]]


def _margin_type(unit: str) -> MarginType:
    return MarginType.RUNS if unit.lower().startswith("run") else MarginType.WICKETS


def _names_agree(note_team: str, team_name: Optional[str]) -> bool:
    if not team_name:
        return True
    a, b = note_team.strip().lower(), team_name.strip().lower()
    return a in b or b in a


def is_abandoned(payload: dict[str, Any]) -> bool:
    """Provider signals that the match ended without a result."""
    if first_of(STATE_CODE_EXTRACTORS, payload) in ABANDONED_STATE_CODES:
        return True
    status = (first_of(STATUS_TEXT_EXTRACTORS, payload) or "").lower()
    return any(marker in status for marker in _ABANDONED_STATUSES)


# ── Source 1: structured provider result ────────────────────────────────
def _explicit_result_object(payload: dict[str, Any], teams: Teams) -> Optional[ProviderAssertedResult]:
    raw = dig(payload, "result")
    if not isinstance(raw, dict):
        return None

    winner: Optional[Winner] = None
    declared = to_text(raw.get("winner"))
    if declared and declared.lower() in (w.value for w in Winner):
        winner = Winner(declared.lower())
    if winner is None:
        winner = teams.side_of(to_id(raw.get("winner_team_id")))
    if winner is None:
        return None

    margin = to_int(raw.get("margin"))
    unit = to_text(raw.get("margin_type")) or to_text(raw.get("type"))
    margin_type = _margin_type(unit) if unit else None
    team = teams.team(winner)
    winner_name = to_text(raw.get("winner_name")) or (team.name if team else None)
    text = to_text(raw.get("text")) or to_text(raw.get("result_text")) or first_of(NOTE_EXTRACTORS, payload)
    if not text:
        text = DRAW_TEXT if winner == Winner.DRAW else f"{winner_name} won"
    return ProviderAssertedResult.from_structured(
        winner=winner,
        winner_name=winner_name,
        margin=margin if margin_type is not None else None,
        margin_type=margin_type if margin is not None else None,
        result_text=text,
    )


def _no_result_signal(payload: dict[str, Any], teams: Teams) -> Optional[ProviderAssertedResult]:
    if first_of(WINNER_ID_EXTRACTORS, payload):
        return None
    draw_flag = payload.get("draw_noresult")
    if isinstance(draw_flag, str) and _DRAWN_RE.search(draw_flag) and not _NO_RESULT_RE.search(draw_flag):
        return ProviderAssertedResult.from_structured(winner=Winner.DRAW, result_text=DRAW_TEXT)
    if to_bool(draw_flag) or (isinstance(draw_flag, str) and draw_flag.strip()) or is_abandoned(payload):
        return ProviderAssertedResult.from_structured(winner=Winner.DRAW, result_text=NO_RESULT_TEXT)
    return None


def _winner_id_only(payload: dict[str, Any], teams: Teams) -> Optional[ProviderAssertedResult]:
    """A provider winner id with no parseable note still names the winner."""
    side = teams.side_of(first_of(WINNER_ID_EXTRACTORS, payload))
    if side is None:
        return None
    team = teams.team(side)
    if team is None or not team.name:
        return None
    return ProviderAssertedResult.from_structured(
        winner=side, winner_name=team.name, result_text=f"{team.name} won"
    )


# ── Source 2: provider note cross-checked against the winner id ─────────
def _parsed_note(payload: dict[str, Any], teams: Teams) -> Optional[ProviderAssertedResult]:
    note = first_of(NOTE_EXTRACTORS, payload)
    if not note:
        return None
    winner_id = first_of(WINNER_ID_EXTRACTORS, payload)

    if winner_id:
        side = teams.side_of(winner_id)
        if side is None:
            logger.warning("result_winner_id_unknown", winner_team_id=winner_id, note=note[:100])
            return None
        team = teams.team(side)
        winner_name = team.name if team else None
        won_by = _WON_BY_RE.search(note)
        if won_by:
            if not _names_agree(won_by.group("team"), winner_name):
                logger.warning(
                    "result_note_winner_mismatch",
                    note=note[:100],
                    winner_team_id=winner_id,
                    winner_name=winner_name,
                )
                return None
            return ProviderAssertedResult.from_note(
                winner=side,
                winner_name=winner_name,
                margin=int(won_by.group("margin")),
                margin_type=_margin_type(won_by.group("unit")),
                result_text=note,
            )
        won = _WON_RE.search(note)
        if won and _names_agree(won.group("team"), winner_name):
            return ProviderAssertedResult.from_note(winner=side, winner_name=winner_name, result_text=note)
        return None

    if _TIED_RE.search(note) or _NO_RESULT_RE.search(note) or _DRAWN_RE.search(note):
        return ProviderAssertedResult.from_note(winner=Winner.DRAW, result_text=note)
    return None


RESULT_SOURCES: list[tuple[str, ResultSourceFn]] = [
    ("result_object", _explicit_result_object),
    ("provider_note", _parsed_note),
    ("no_result_signal", _no_result_signal),
    ("winner_id", _winner_id_only),
]


def derive_result(payload: dict[str, Any], teams: Optional[Teams]) -> Optional[ProviderAssertedResult]:
    """Return the provider-asserted result for ``payload``, or None when it has not asserted one."""
    if teams is None:
        return None
    for name, source in RESULT_SOURCES:
        try:
            result = source(payload, teams)
        except ValueError as exc:
            logger.warning("result_source_rejected", source=name, error=str(exc))
            continue
        if result is not None:
            logger.debug("result_derived", source=name, winner=result.winner.value)
            return result
    return None
