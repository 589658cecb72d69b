"""
Structural guards for match identifiers and record completeness.

Validators return a list of error strings; an empty list means valid. Stores
raise RecordValidationError with that list instead of coercing bad records.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from shared.models.domain import CompletedMatchRecord, MatchFacts, Teams
from shared.models.enums import ResultSource, Winner

_MATCH_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
_PLACEHOLDER_IDS = frozenset({"undefined", "null"})


class RecordValidationError(ValueError):
    """A record failed structural validation and was not persisted."""

    def __init__(self, match_id: Any, errors: list[str]) -> None:
        super().__init__(f"invalid record {match_id!r}: {'; '.join(errors)}")
        self.match_id = match_id
        self.errors = errors


def is_valid_match_id(value: Any) -> bool:
    """True for a non-empty provider id made only of letters, digits, '_' and '-'."""
    if value is None or isinstance(value, bool):
        return False
    if not isinstance(value, (str, int)):
        return False
    text = str(value).strip()
    if not text or text in _PLACEHOLDER_IDS:
        return False
    return bool(_MATCH_ID_RE.match(text))


def sanitize_match_id(value: Any) -> Optional[str]:
    if not is_valid_match_id(value):
        return None
    return str(value).strip()


def _team_errors(teams: Optional[Teams]) -> list[str]:
    if teams is None:
        return ["teams are required"]
    errors = []
    for side, team in (("home", teams.home), ("away", teams.away)):
        if not team.id:
            errors.append(f"teams.{side}.id is required")
    if teams.home.id and teams.home.id == teams.away.id:
        errors.append("teams.home and teams.away must be different teams")
    return errors


def validate_match_data(match: Optional[MatchFacts]) -> list[str]:
    """
    Base checks shared by live and completed records.

    Team names are not required here: a live poll without the team includes
    still carries ids and merges over the names already stored.
    """
    if match is None:
        return ["match data is required"]
    errors: list[str] = []
    if not is_valid_match_id(match.match_id):
        errors.append("valid match_id is required")
    errors.extend(_team_errors(match.teams))
    if match.start_time is None:
        errors.append("start_time is required")
    return errors


def validate_completed_match(match: Optional[CompletedMatchRecord]) -> list[str]:
    """Base checks plus a well-formed provider result and an end time."""
    errors = validate_match_data(match)
    if match is None:
        return errors
    if match.teams is not None:
        for side, team in (("home", match.teams.home), ("away", match.teams.away)):
            if not team.name:
                errors.append(f"teams.{side}.name is required")

    result = match.result
    if result is None:
        errors.append("result is required for completed matches")
    else:
        if result.winner not in (Winner.HOME, Winner.AWAY, Winner.DRAW):
            errors.append("result.winner must be home, away or draw")
        if result.winner != Winner.DRAW and not result.winner_name:
            errors.append("result.winner_name is required")
        if result.margin is not None:
            if result.margin < 0:
                errors.append("result.margin must be non-negative")
            if result.margin_type is None:
                errors.append("result.margin_type is required with a margin")
        if result.data_source not in (ResultSource.PROVIDER, ResultSource.PARSED_FROM_PROVIDER_NOTE):
            errors.append("result.data_source must be provider-sourced")
        if not result.result_text:
            errors.append("result.result_text is required")

    if match.end_time is None:
        errors.append("end_time is required for completed matches")
    return errors
