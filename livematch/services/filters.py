from __future__ import annotations

from typing import Callable, Iterable, Optional

from livematch.core.config import settings
from livematch.core.logger import get_logger
from livematch.core.timeutils import parse_start_time
from livematch.data.mappers import match_half, score_total, status_name

log = get_logger("services.filters")

SORT_FILTERS = ("asc", "desc")
OVER_LINE_PROBABILITY = 0.7


def _analysis(match: dict) -> dict:
    return (match.get("enrichedData") or {}).get("analysis") or {}


def _over(line: float) -> Callable[[dict], bool]:
    return lambda match: score_total(match.get("setScore") or "0:0") > line


def _half(status: str, half: str) -> Callable[[dict], bool]:
    def _check(match: dict) -> bool:
        current = status_name(match)
        if current:
            return current == status
        return match_half(match) == half

    return _check


def high_probability(match: dict) -> bool:
    analysis = _analysis(match)
    if not analysis:
        return False
    probability = analysis.get("goalProbability") or {}
    confidence = (analysis.get("recommendation") or {}).get("confidence") or 0
    threshold = settings.recommendation_threshold
    return (
        (probability.get("home") or 0) > threshold
        or (probability.get("away") or 0) > threshold
        or confidence > 7
    )


PREDICATES: dict[str, Callable[[dict], bool]] = {
    "firstHalf": _half("H1", "firstHalf"),
    "secondHalf": _half("H2", "secondHalf"),
    "halftime": _half("HT", "halftime"),
    "highProbability": high_probability,
    "over1.5": _over(1.5),
    "over2.5": _over(2.5),
    "over3.5": _over(3.5),
}


def _searchable(match: dict) -> list[str]:
    info = (match.get("enrichedData") or {}).get("matchInfo") or {}
    fields = [
        match.get("homeTeamName"),
        match.get("awayTeamName"),
        match.get("tournamentName"),
        (info.get("homeTeam") or {}).get("name") if isinstance(info, dict) else None,
        (info.get("awayTeam") or {}).get("name") if isinstance(info, dict) else None,
    ]
    return [str(f).lower() for f in fields if f]


def _passes(match: dict, name: str, is_in_cart: Optional[Callable[[object], bool]]) -> bool:
    if name in SORT_FILTERS:
        return True
    if name == "inCart":
        return bool(is_in_cart(match.get("eventId"))) if is_in_cart else True
    predicate = PREDICATES.get(name)
    if predicate is None:
        return True
    try:
        return bool(predicate(match))
    except Exception:
        log.exception("filter_predicate_failed filter=%s event_id=%s", name, match.get("eventId"))
        return True


def _start_ts(match: dict) -> float:
    start = parse_start_time(match.get("estimateStartTime"))
    return start.timestamp() if start else 0.0


def apply_filters(
    matches: Iterable[dict],
    active: Iterable[str] = (),
    search_term: str | None = None,
    is_in_cart: Optional[Callable[[object], bool]] = None,
) -> list[dict]:
    active = [a for a in (active or []) if a]
    out = list(matches or [])
    if search_term:
        needle = search_term.lower()
        out = [m for m in out if any(needle in field for field in _searchable(m))]
    out = [m for m in out if all(_passes(m, name, is_in_cart) for name in active)]
    if "asc" in active or "desc" in active:
        out.sort(key=_start_ts, reverse="asc" not in active)
    return out


def max_goal_probability(match: dict) -> float:
    probability = _analysis(match).get("goalProbability") or {}
    return max(probability.get("home") or 0, probability.get("away") or 0)


def sort_by_goal_probability(matches: Iterable[dict]) -> list[dict]:
    return sorted(matches, key=max_goal_probability, reverse=True)


def over_one_point_five(match: dict) -> Optional[dict]:
    for market in match.get("markets") or []:
        for outcome in market.get("outcomes") or []:
            if str(outcome.get("desc") or "").strip().lower() != "over 1.5":
                continue
            try:
                probability = float(outcome.get("probability"))
            except (TypeError, ValueError):
                continue
            if probability > OVER_LINE_PROBABILITY:
                return {
                    "eventId": match.get("eventId"),
                    "market": market.get("name"),
                    "odds": outcome.get("odds"),
                    "probability": probability,
                }
    return None
