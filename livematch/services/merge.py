from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from livematch.core.config import settings
from livematch.data.mappers import played_minutes

SLOW_FIELDS = ("h2h", "form", "tournament", "details", "phrases", "matchInfo", "odds", "squads")
FAST_FIELDS = ("timeline", "situation", "analysis")
REQUIRED_ENRICHMENT = (
    "h2h",
    "form",
    "tournament",
    "details",
    "phrases",
    "situation",
    "timeline",
    "matchInfo",
    "odds",
    "squads",
)


def _is_empty(value: Any) -> bool:
    return value is None or value == {} or value == []


def merge_enriched(previous: Optional[dict], incoming: Optional[dict]) -> dict:
    previous = previous or {}
    incoming = incoming or {}
    out = {k: previous[k] for k in SLOW_FIELDS if k in previous}
    for key, value in incoming.items():
        if key in SLOW_FIELDS and _is_empty(value) and not _is_empty(out.get(key)):
            continue
        out[key] = value
    return out


def stable_key(match: dict) -> str:
    analysis = (match.get("enrichedData") or {}).get("analysis") or {}
    momentum = analysis.get("momentum") or {}
    return json.dumps(
        {
            "id": match.get("eventId"),
            "score": match.get("setScore"),
            "time": match.get("playedSeconds"),
            "status": match.get("matchStatus"),
            "stats": analysis.get("stats"),
            "trend": momentum.get("trend"),
        },
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def with_stable_key(match: dict) -> dict:
    return {**match, "_stableKey": stable_key(match)}


def merge(previous: Iterable[dict], incoming: Iterable[dict]) -> list[dict]:
    """Merge an incoming batch into the previous set by ``eventId``.

    Slow enrichment fields carry over from ``previous`` unless the incoming
    record brings a non-empty replacement. Records only in ``previous`` are
    kept; order is previous order, new ids appended.
    """
    by_id: dict[Any, dict] = {}
    for match in previous:
        by_id[match.get("eventId")] = match
    for match in incoming:
        key = match.get("eventId")
        prior = by_id.get(key)
        if prior is None:
            by_id[key] = with_stable_key(match)
            continue
        merged = {**match, "enrichedData": merge_enriched(prior.get("enrichedData"), match.get("enrichedData"))}
        by_id[key] = with_stable_key(merged)
    return list(by_id.values())


def fingerprints(matches: Iterable[dict]) -> list[str]:
    return [m.get("_stableKey") or stable_key(m) for m in matches]


def same_fingerprints(previous: Iterable[dict], candidate: Iterable[dict]) -> bool:
    return fingerprints(previous) == fingerprints(candidate)


def is_finished(match: dict, finished_minutes: int | None = None) -> bool:
    limit = int(finished_minutes if finished_minutes is not None else settings.finished_minutes)
    return played_minutes(match.get("playedSeconds")) >= limit


class FinishedTracker:
    """Ids of matches that reached full time; cleared only on request."""

    def __init__(self, finished_minutes: int | None = None):
        self.finished_minutes = int(finished_minutes if finished_minutes is not None else settings.finished_minutes)
        self.ids: set = set()

    def observe(self, matches: Iterable[dict]) -> set:
        added = set()
        for match in matches:
            key = match.get("eventId")
            if key is not None and key not in self.ids and is_finished(match, self.finished_minutes):
                self.ids.add(key)
                added.add(key)
        return added

    def __contains__(self, event_id) -> bool:
        return event_id in self.ids

    def __len__(self) -> int:
        return len(self.ids)

    def clear(self) -> None:
        self.ids.clear()


def passes_name_filter(match: dict, marker: str | None = None) -> bool:
    # Substring heuristic: a real tournament whose name contains the marker is dropped too.
    marker = (settings.simulated_league_marker if marker is None else marker).lower()
    if match.get("isSimulated"):
        return False
    if not marker:
        return True
    for field in ("tournamentName", "homeTeamName", "awayTeamName"):
        if marker in str(match.get(field) or "").lower():
            return False
    return True


def has_match_names(match: dict) -> bool:
    return all(str(match.get(field) or "").strip() for field in ("tournamentName", "homeTeamName", "awayTeamName"))


def live_filter(matches: Iterable[dict], finished: FinishedTracker | set | None = None, marker: str | None = None) -> list[dict]:
    finished = finished if finished is not None else set()
    out = []
    for match in matches:
        if not passes_name_filter(match, marker):
            continue
        if not match.get("tournamentName"):
            continue
        enriched = match.get("enrichedData") or {}
        if any(enriched.get(key) is None for key in REQUIRED_ENRICHMENT):
            continue
        if match.get("eventId") in finished:
            continue
        out.append(match)
    return out
