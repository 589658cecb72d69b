"""
Field extractors for SportMonks cricket payloads.

The provider returns the same logical field in different places depending on
the endpoint, the API version and which includes were honoured for a fetch
(``localteam`` vs ``participants``, bare objects vs ``{"data": {...}}``).
Each field is read by an ordered list of small extractor functions; the first
one that yields a usable value wins.
"""
from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from shared.models.domain import TeamRef, Teams, Venue
from shared.models.enums import MatchFormat

Extractor = Callable[[dict[str, Any]], Any]

_EMPTY = (None, "", [], {})


# ── Generic helpers ─────────────────────────────────────────────────────
def unwrap(node: Any) -> Any:
    """Strip the ``{"data": ...}`` envelope that include-fields sometimes carry."""
    while isinstance(node, dict) and len(node) == 1 and "data" in node:
        node = node["data"]
    return node


def dig(node: Any, *path: str) -> Any:
    """Follow ``path`` through nested dicts, unwrapping include envelopes on the way."""
    current = unwrap(node)
    for key in path:
        if not isinstance(current, dict):
            return None
        current = unwrap(current.get(key))
    return current


def first_of(extractors: Iterable[Extractor], payload: dict[str, Any]) -> Any:
    """Return the first non-empty value produced by ``extractors``."""
    for extractor in extractors:
        try:
            value = extractor(payload)
        except (KeyError, IndexError, TypeError, AttributeError):
            continue
        if value not in _EMPTY:
            return value
    return None


def as_list(value: Any) -> list[dict[str, Any]]:
    value = unwrap(value)
    if isinstance(value, list):
        return [unwrap(item) for item in value if isinstance(unwrap(item), dict)]
    return []


# ── Scalar coercion (present-or-absent) ─────────────────────────────────
def to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        result = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            result = float(text)
        except ValueError:
            return None
    else:
        return None
    return result if math.isfinite(result) else None


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    if number is None:
        return None
    return int(number)


def to_id(value: Any) -> Optional[str]:
    """Provider ids arrive as ints or strings; 0 and empty mean "none"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if value else None
    if isinstance(value, str):
        text = value.strip()
        return text if text and text != "0" else None
    return None


def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "1"):
            return True
        if lowered in ("false", "no", "0"):
            return False
    return None


def to_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        text = value.strip()
        return text or None
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def overs_to_balls(overs: Optional[float]) -> Optional[int]:
    """Balls bowled in the current over, from the cricket ``overs.balls`` notation."""
    if overs is None:
        return None
    return int(round((overs - math.floor(overs)) * 10))


def overs_as_decimal(overs: Optional[float]) -> Optional[float]:
    """19.2 overs is 19 + 2/6 overs of play."""
    if overs is None:
        return None
    balls = overs_to_balls(overs)
    return math.floor(overs) + (balls or 0) / 6


# ── Match-level fields ──────────────────────────────────────────────────
MATCH_ID_EXTRACTORS: list[Extractor] = [
    lambda p: to_id(p.get("id")),
    lambda p: to_id(p.get("fixture_id")),
    lambda p: to_id(p.get("match_id")),
]

STATE_CODE_EXTRACTORS: list[Extractor] = [
    lambda p: to_int(p.get("state_id")),
    lambda p: to_int(dig(p, "state", "id")),
]

STATUS_TEXT_EXTRACTORS: list[Extractor] = [
    lambda p: to_text(p.get("status")),
    lambda p: to_text(dig(p, "state", "name")),
]

NOTE_EXTRACTORS: list[Extractor] = [
    lambda p: to_text(p.get("note")),
    lambda p: to_text(p.get("result_info")),
]

LIVE_FLAG_EXTRACTORS: list[Extractor] = [
    lambda p: to_bool(p.get("live")),
    lambda p: to_bool(p.get("is_live")),
]

START_TIME_EXTRACTORS: list[Extractor] = [
    lambda p: to_datetime(p.get("starting_at")),
    lambda p: to_datetime(p.get("start_time")),
]

END_TIME_EXTRACTORS: list[Extractor] = [
    lambda p: to_datetime(p.get("ending_at")),
    lambda p: to_datetime(p.get("ended_at")),
]

WINNER_ID_EXTRACTORS: list[Extractor] = [
    lambda p: to_id(p.get("winner_team_id")),
    lambda p: to_id(dig(p, "result", "winner_team_id")),
]

SERIES_EXTRACTORS: list[Extractor] = [
    lambda p: to_text(dig(p, "league", "name")),
    lambda p: to_text(dig(p, "season", "name")),
    lambda p: to_text(dig(p, "stage", "name")),
    lambda p: to_text(p.get("series")),
]

_FORMATS: dict[str, MatchFormat] = {
    "test": MatchFormat.TEST,
    "test/5day": MatchFormat.TEST,
    "odi": MatchFormat.ODI,
    "t20i": MatchFormat.T20I,
    "t20": MatchFormat.T20,
    "t10": MatchFormat.T10,
    "list a": MatchFormat.LIST_A,
    "list-a": MatchFormat.LIST_A,
    "4day": MatchFormat.FIRST_CLASS,
    "first-class": MatchFormat.FIRST_CLASS,
    "first class": MatchFormat.FIRST_CLASS,
}

# Checked in order against free-text type names such as "Women's T20" or "ODI Qualifier".
_FORMAT_PATTERNS: list[tuple[re.Pattern[str], MatchFormat]] = [
    (re.compile(r"\bt20i\b|\bt20 international\b"), MatchFormat.T20I),
    (re.compile(r"\bt20\b|\btwenty20\b"), MatchFormat.T20),
    (re.compile(r"\bt10\b"), MatchFormat.T10),
    (re.compile(r"\bodi\b|\bone[- ]day international\b"), MatchFormat.ODI),
    (re.compile(r"\blist[- ]a\b"), MatchFormat.LIST_A),
    (re.compile(r"\bfirst[- ]class\b|\b4 ?day\b"), MatchFormat.FIRST_CLASS),
    (re.compile(r"\btest\b"), MatchFormat.TEST),
]


def parse_format(value: Any) -> Optional[MatchFormat]:
    """Exact type names first, then the first pattern found in the text."""
    text = to_text(value)
    if text is None:
        return None
    text = text.lower()
    exact = _FORMATS.get(text)
    if exact is not None:
        return exact
    for pattern, fmt in _FORMAT_PATTERNS:
        if pattern.search(text):
            return fmt
    return None


_FORMAT_TYPE_IDS: dict[int, MatchFormat] = {1: MatchFormat.TEST, 2: MatchFormat.ODI, 3: MatchFormat.T20}

FORMAT_EXTRACTORS: list[Extractor] = [
    lambda p: parse_format(p.get("type")),
    lambda p: _FORMAT_TYPE_IDS.get(to_int(p.get("type_id")) or 0),
    lambda p: parse_format(p.get("format")),
]


def extract_format(payload: dict[str, Any]) -> Optional[MatchFormat]:
    return first_of(FORMAT_EXTRACTORS, payload)


# ── Teams ───────────────────────────────────────────────────────────────
def _participant(payload: dict[str, Any], location: str) -> Optional[dict[str, Any]]:
    for item in as_list(payload.get("participants")):
        if dig(item, "meta", "location") == location:
            return item
    return None


HOME_TEAM_EXTRACTORS: list[Extractor] = [
    lambda p: dig(p, "localteam"),
    lambda p: _participant(p, "home"),
    lambda p: dig(p, "teams", "home"),
]
AWAY_TEAM_EXTRACTORS: list[Extractor] = [
    lambda p: dig(p, "visitorteam"),
    lambda p: _participant(p, "away"),
    lambda p: dig(p, "teams", "away"),
]
HOME_TEAM_ID_EXTRACTORS: list[Extractor] = [
    lambda p: to_id(p.get("localteam_id")),
    lambda p: to_id(dig(p, "localteam", "id")),
    lambda p: to_id((_participant(p, "home") or {}).get("id")),
    lambda p: to_id(dig(p, "teams", "home", "id")),
]
AWAY_TEAM_ID_EXTRACTORS: list[Extractor] = [
    lambda p: to_id(p.get("visitorteam_id")),
    lambda p: to_id(dig(p, "visitorteam", "id")),
    lambda p: to_id((_participant(p, "away") or {}).get("id")),
    lambda p: to_id(dig(p, "teams", "away", "id")),
]

_TEAM_NAME_KEYS = ("name", "fullname", "full_name")
_TEAM_CODE_KEYS = ("code", "short_code", "shortName", "short_name")
_TEAM_EMBLEM_KEYS = ("image_path", "logo_url", "logo", "flag")


def _first_text(obj: dict[str, Any], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        text = to_text(obj.get(key))
        if text:
            return text
    return None


def _team_ref(obj: Any, fallback_id: Optional[str]) -> Optional[TeamRef]:
    obj = obj if isinstance(obj, dict) else {}
    team_id = to_id(obj.get("id")) or fallback_id
    if team_id is None:
        return None
    return TeamRef(
        id=team_id,
        name=_first_text(obj, _TEAM_NAME_KEYS),
        short_code=_first_text(obj, _TEAM_CODE_KEYS),
        emblem_url=_first_text(obj, _TEAM_EMBLEM_KEYS),
    )


def extract_team_ids(payload: dict[str, Any]) -> tuple[Optional[str], Optional[str]]:
    return first_of(HOME_TEAM_ID_EXTRACTORS, payload), first_of(AWAY_TEAM_ID_EXTRACTORS, payload)


def extract_teams(payload: dict[str, Any]) -> Optional[Teams]:
    home_id, away_id = extract_team_ids(payload)
    home = _team_ref(first_of(HOME_TEAM_EXTRACTORS, payload), home_id)
    away = _team_ref(first_of(AWAY_TEAM_EXTRACTORS, payload), away_id)
    if home is None or away is None:
        return None
    return Teams(home=home, away=away)


def extract_venue(payload: dict[str, Any]) -> Optional[Venue]:
    venue = dig(payload, "venue")
    if isinstance(venue, str):
        return Venue(name=to_text(venue))
    if not isinstance(venue, dict):
        return None
    result = Venue(
        name=to_text(venue.get("name")),
        city=to_text(venue.get("city")),
        country=to_text(venue.get("country")) or to_text(dig(venue, "country", "name")),
    )
    if result.name is None and result.city is None and result.country is None:
        return None
    return result


# ── Players ─────────────────────────────────────────────────────────────
def _name_from_person(person: Any) -> Optional[str]:
    person = unwrap(person)
    if not isinstance(person, dict):
        return None
    direct = _first_text(person, ("fullname", "full_name", "name"))
    if direct:
        return direct
    first = to_text(person.get("firstname")) or to_text(person.get("first_name"))
    last = to_text(person.get("lastname")) or to_text(person.get("last_name"))
    if first and last:
        return f"{first} {last}"
    return first or last


PLAYER_NAME_EXTRACTORS: list[Extractor] = [
    lambda e: _name_from_person(e.get("batsman")),
    lambda e: _name_from_person(e.get("bowler")),
    lambda e: _name_from_person(e.get("player")),
    lambda e: to_text(e.get("player_name")),
    lambda e: to_text(e.get("playerName")),
]


def extract_player_name(entry: dict[str, Any]) -> Optional[str]:
    return first_of(PLAYER_NAME_EXTRACTORS, entry)


def player_name_from_profile(profile: dict[str, Any]) -> Optional[str]:
    """Name from a ``/players/{id}`` profile payload."""
    return _name_from_person(profile)


# ── Innings labels ──────────────────────────────────────────────────────
_LABEL_RE = re.compile(r"(\d+)")
_STATUS_INNINGS_RE = re.compile(r"(\d+)\s*(?:st|nd|rd|th)\s+innings", re.IGNORECASE)


def innings_label(value: Any) -> Optional[str]:
    """Canonical innings label ("S1", "S2", ...) from "S1", "1", 1 or "1st Innings"."""
    if value is None or isinstance(value, bool):
        return None
    match = _LABEL_RE.search(str(value))
    if not match or int(match.group(1)) <= 0:
        return None
    return f"S{int(match.group(1))}"


def label_order(label: Optional[str]) -> int:
    if not label:
        return 0
    match = _LABEL_RE.search(label)
    return int(match.group(1)) if match else 0


def innings_from_status(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    match = _STATUS_INNINGS_RE.search(status)
    return f"S{int(match.group(1))}" if match else None
