from __future__ import annotations

from typing import Any, Literal, Optional

from livematch.core.timeutils import utcnow

UNKNOWN_TOURNAMENT = "Unknown Tournament"

FeedShape = Literal["list", "tournaments", "unknown"]

_FIRST_HALF = {"1h", "h1", "first half", "1st", "first", "1"}
_SECOND_HALF = {"2h", "h2", "second half", "2nd", "second", "2"}
_HALFTIME = {"ht", "half time", "halftime"}


def _dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _feed_body(raw: Any) -> Any:
    if isinstance(raw, dict) and "data" in raw:
        return raw.get("data")
    return raw


def feed_shape(raw: Any) -> FeedShape:
    body = _feed_body(raw)
    if isinstance(body, list):
        return "list"
    if isinstance(body, dict) and isinstance(body.get("tournaments"), list):
        return "tournaments"
    return "unknown"


def _tournaments(raw: Any) -> list:
    shape = feed_shape(raw)
    body = _feed_body(raw)
    if shape == "list":
        return body
    if shape == "tournaments":
        return body["tournaments"]
    return []


def normalize_feed(raw: Any) -> list[dict]:
    """Flatten an odds-feed response into match records.

    Accepts the bare tournament list, an object with ``tournaments``, or
    either of those wrapped in ``{"data": ...}``. Tournaments without a list
    of events contribute nothing.
    """
    matches: list[dict] = []
    for tournament in _tournaments(raw):
        if not isinstance(tournament, dict):
            continue
        events = tournament.get("events")
        if not isinstance(events, list):
            continue
        name = tournament.get("name") or UNKNOWN_TOURNAMENT
        for event in events:
            if not isinstance(event, dict):
                continue
            matches.append({**event, "tournamentName": name})
    return matches


def numeric_id(event_id: Any) -> str:
    """Strip the provider prefix: ``sr:match:123`` -> ``123``."""
    if event_id is None:
        return ""
    return str(event_id).split(":")[-1].strip()


def played_minutes(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value // 60)
    raw = str(value).strip()
    if ":" in raw:
        head = raw.split(":", 1)[0]
        try:
            return int(head)
        except ValueError:
            return 0
    try:
        return int(float(raw) // 60)
    except ValueError:
        return 0


def score_total(set_score: Optional[str]) -> int:
    if not set_score or not isinstance(set_score, str):
        return 0
    total = 0
    for part in set_score.split(":"):
        try:
            total += int(part.strip())
        except ValueError:
            continue
    return total


def status_name(match: dict) -> str:
    status = match.get("matchStatus")
    if isinstance(status, dict):
        status = status.get("name")
    return str(status or "")


def normalize_period(period: Any) -> Optional[str]:
    if period is None or period == "":
        return None
    code = str(period).lower().strip()
    if code in _FIRST_HALF:
        return "firstHalf"
    if code in _SECOND_HALF:
        return "secondHalf"
    if code in _HALFTIME:
        return "halftime"
    return code


def match_half(match: Optional[dict]) -> Optional[str]:
    if not match:
        return None
    status = status_name(match).lower().strip()
    period = str(match.get("period") or "").lower().strip()

    if status in _HALFTIME:
        return "halftime"
    code = normalize_period(period)
    if code in ("firstHalf", "secondHalf", "halftime"):
        return code
    if "1st" in period or "first" in period:
        return "firstHalf"
    if "2nd" in period or "second" in period:
        return "secondHalf"

    played = match.get("playedSeconds")
    if played not in (None, "", 0, "0"):
        minutes = played_minutes(played)
        if minutes < 45:
            return "firstHalf"
        if minutes > 45:
            return "secondHalf"
        return "halftime"

    if "1st" in status or "first" in status:
        return "firstHalf"
    if "2nd" in status or "second" in status:
        return "secondHalf"
    return None


def map_push_match(payload: Any) -> Optional[dict]:
    """Map one live-feed push payload to the canonical match shape."""
    if not isinstance(payload, dict):
        return None
    match_id = payload.get("matchId")
    if not isinstance(match_id, (str, int)) or str(match_id).strip() == "":
        return None

    match_info = _dict(payload.get("matchInfo"))
    teams = _dict(_dict(payload.get("coreData")).get("teams"))
    statistics = _dict(payload.get("statistics"))
    match_time = _dict(_dict(payload.get("timeline")).get("matchTime"))
    seconds = match_time.get("seconds")

    return {
        "eventId": match_id,
        "matchId": match_id,
        "tournamentName": _dict(match_info.get("tournament")).get("name") or UNKNOWN_TOURNAMENT,
        "homeTeamName": _dict(teams.get("home")).get("name"),
        "awayTeamName": _dict(teams.get("away")).get("name"),
        "setScore": statistics.get("score"),
        "playedSeconds": str(seconds) if seconds is not None else "0",
        "matchStatus": match_info.get("status"),
        "isSimulated": bool(payload.get("isSimulated", False)),
        "enrichedData": _dict(payload.get("enrichedData")),
        "lastUpdated": utcnow().isoformat(),
    }
