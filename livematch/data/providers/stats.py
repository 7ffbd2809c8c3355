from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

from livematch.core.config import settings
from livematch.core.errors import ValidationFailure, validate_id
from livematch.core.http import NOT_MODIFIED, fetch_with_retry, stats_client
from livematch.core.logger import get_logger
from livematch.data.mappers import numeric_id
from livematch.data.providers.cache import TTLCache

log = get_logger("providers.stats")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int
    timeout_ms: int
    backoff_base_ms: int


_STANDARD = RetryPolicy(attempts=2, timeout_ms=5000, backoff_base_ms=1000)

ENDPOINT_POLICIES: dict[str, RetryPolicy] = {
    "match_info": _STANDARD,
    "match_details": _STANDARD,
    "match_squads": _STANDARD,
    "match_odds": _STANDARD,
    "team_form": _STANDARD,
    "team_versus": _STANDARD,
    "season_meta": _STANDARD,
    "season_table": _STANDARD,
    "cup_brackets": _STANDARD,
    "match_situation": RetryPolicy(attempts=2, timeout_ms=4000, backoff_base_ms=500),
    "match_phrases": RetryPolicy(attempts=2, timeout_ms=4000, backoff_base_ms=500),
    "match_timeline": RetryPolicy(attempts=2, timeout_ms=3000, backoff_base_ms=300),
    "match_timeline_delta": RetryPolicy(attempts=3, timeout_ms=2000, backoff_base_ms=200),
}

UPSTREAM_PATHS: dict[str, str] = {
    "match_info": "match_info",
    "match_details": "match_detailsextended",
    "match_squads": "match_squads",
    "match_odds": "match_bookmakerodds",
    "match_situation": "stats_match_situation",
    "match_phrases": "match_phrases",
    "match_timeline": "match_timeline",
    "match_timeline_delta": "match_timelinedelta",
    "team_form": "stats_team_lastx",
    "team_versus": "stats_team_versusrecent",
    "season_meta": "stats_season_meta",
    "season_table": "stats_season_tables",
    "cup_brackets": "stats_cup_brackets",
}

# seconds; endpoints not listed here are always fetched fresh
CACHE_TTLS: dict[str, int] = {
    "match_timeline": 10,
    "match_timeline_delta": 5,
    "match_situation": 15,
    "match_phrases": 30,
    "match_squads": 5 * 60,
    "team_form": 15 * 60,
    "team_versus": 30 * 60,
    "season_meta": 30 * 60,
    "season_table": 30 * 60,
    "cup_brackets": 30 * 60,
}

_CACHE_MAX_SIZE = {"season_meta": 500}


def doc_data(payload: Any) -> Any:
    """Return ``payload["doc"][0]["data"]`` or None."""
    if not isinstance(payload, dict):
        return None
    docs = payload.get("doc")
    if not isinstance(docs, list) or not docs or not isinstance(docs[0], dict):
        return None
    return docs[0].get("data")


def _map_doc_data(payload: Any, fn: Callable[[dict], dict]) -> Any:
    if not isinstance(payload, dict) or not isinstance(payload.get("doc"), list):
        return payload
    docs = []
    for doc in payload["doc"]:
        if isinstance(doc, dict) and isinstance(doc.get("data"), dict):
            doc = {**doc, "data": fn(doc["data"])}
        docs.append(doc)
    return {**payload, "doc": docs}


def _trim_timeline_data(data: dict) -> dict:
    events = data.get("events")
    if not isinstance(events, list):
        return data
    trimmed = []
    for event in events:
        if not isinstance(event, dict):
            continue
        player = event.get("player")
        details = event.get("details")
        trimmed.append(
            {
                "id": event.get("_id", event.get("id")),
                "type": event.get("type"),
                "time": event.get("time"),
                "team": event.get("team"),
                "player": player.get("name") if isinstance(player, dict) else player,
                "details": (
                    {
                        "score": details.get("score"),
                        "reason": details.get("reason"),
                        "card": details.get("card"),
                    }
                    if isinstance(details, dict)
                    else None
                ),
            }
        )
    return {**data, "events": trimmed}


def _trim_team(team: Any) -> dict:
    team = team if isinstance(team, dict) else {}
    return {"id": team.get("id", team.get("_id")), "name": team.get("name"), "score": team.get("score")}


def _trim_match_list(data: dict, *, keep_summary: bool = False) -> dict:
    matches = data.get("matches")
    if not isinstance(matches, list):
        return data
    trimmed = []
    for match in matches:
        if not isinstance(match, dict):
            continue
        competition = match.get("competition") if isinstance(match.get("competition"), dict) else {}
        teams = match.get("teams") if isinstance(match.get("teams"), dict) else {}
        trimmed.append(
            {
                "id": match.get("id", match.get("_id")),
                "date": match.get("date"),
                "competition": {"id": competition.get("id"), "name": competition.get("name")},
                "teams": {"home": _trim_team(teams.get("home")), "away": _trim_team(teams.get("away"))},
                "result": match.get("result"),
            }
        )
    if keep_summary:
        return {"summary": data.get("summary"), "matches": trimmed}
    return {**data, "matches": trimmed}


def resolve_season_id(season_id=None, *, match_id=None, tournament_id=None) -> str:
    """Pick the season identifier, accepting the legacy ``matchId``/``tournamentId`` names."""
    for name, value in (("season_id", season_id), ("matchId", match_id), ("tournamentId", tournament_id)):
        if value is None or str(value).strip() == "":
            continue
        resolved = numeric_id(validate_id(value, "Season"))
        if not resolved:
            raise ValidationFailure("Season ID is required")
        if name != "season_id":
            log.debug("season_id_legacy_alias alias=%s value=%s", name, resolved)
        return resolved
    raise ValidationFailure("Season ID is required")


class StatsProvider:
    """Adapter over the stats provider's per-match / per-team endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        token: str | None = None,
        clock: Callable[[], float] = time.monotonic,
        _sleep=asyncio.sleep,
    ):
        self._client = client
        self._token = settings.stats_token if token is None else token
        self._sleep = _sleep
        self._caches = {
            name: TTLCache(ttl, max_size=_CACHE_MAX_SIZE.get(name, 1000), clock=clock)
            for name, ttl in CACHE_TTLS.items()
        }

    def client(self) -> httpx.AsyncClient:
        return self._client or stats_client()

    def purge_caches(self) -> int:
        return sum(cache.purge_expired() for cache in self._caches.values())

    def clear_caches(self) -> None:
        for cache in self._caches.values():
            cache.clear()

    async def _fetch(self, endpoint: str, ids: list[str], *, trim: Callable[[Any], Any] | None = None, prefix: str = ""):
        cache_key = "/".join(ids)
        cache = self._caches.get(endpoint)
        if cache is not None:
            hit = cache.get(cache_key)
            if hit is not None:
                return hit

        policy = ENDPOINT_POLICIES[endpoint]
        url = f"/{UPSTREAM_PATHS[endpoint]}/{prefix}{cache_key}"
        params = {"T": self._token} if self._token else None
        headers = {"If-None-Match": f'"{cache_key}-{int(time.time() * 1000)}"'}
        data = await fetch_with_retry(
            self.client(),
            url,
            max_attempts=policy.attempts,
            timeout_ms=policy.timeout_ms,
            backoff_base_ms=policy.backoff_base_ms,
            params=params,
            headers=headers,
            _sleep=self._sleep,
        )
        if data is NOT_MODIFIED:
            return cache.peek(cache_key) if cache is not None else None
        if trim is not None:
            data = trim(data)
        if cache is not None:
            cache.set(cache_key, data)
        return data

    @staticmethod
    def _ids(*pairs: tuple[Any, str]) -> list[str]:
        out = []
        for value, kind in pairs:
            resolved = numeric_id(validate_id(value, kind))
            if not resolved:
                raise ValidationFailure(f"{kind} ID is required")
            out.append(resolved)
        return out

    async def match_info(self, match_id):
        return await self._fetch("match_info", self._ids((match_id, "Match")))

    async def match_details(self, match_id):
        return await self._fetch("match_details", self._ids((match_id, "Match")))

    async def match_timeline(self, match_id):
        return await self._fetch(
            "match_timeline",
            self._ids((match_id, "Match")),
            trim=lambda p: _map_doc_data(p, _trim_timeline_data),
        )

    async def match_timeline_delta(self, match_id):
        return await self._fetch("match_timeline_delta", self._ids((match_id, "Match")))

    async def match_situation(self, match_id):
        return await self._fetch("match_situation", self._ids((match_id, "Match")))

    async def match_phrases(self, match_id):
        return await self._fetch("match_phrases", self._ids((match_id, "Match")))

    async def match_squads(self, match_id):
        return await self._fetch("match_squads", self._ids((match_id, "Match")))

    async def match_odds(self, match_id):
        return await self._fetch("match_odds", self._ids((match_id, "Match")))

    async def team_form(self, team_id):
        return await self._fetch(
            "team_form",
            self._ids((team_id, "Team")),
            trim=lambda p: _map_doc_data(p, _trim_match_list),
        )

    async def team_versus(self, team1_id, team2_id):
        return await self._fetch(
            "team_versus",
            self._ids((team1_id, "Team 1"), (team2_id, "Team 2")),
            trim=lambda p: _map_doc_data(p, lambda d: _trim_match_list(d, keep_summary=True)),
        )

    async def season_meta(self, season_id=None, *, match_id=None, tournament_id=None):
        resolved = resolve_season_id(season_id, match_id=match_id, tournament_id=tournament_id)
        return await self._fetch("season_meta", [resolved])

    async def season_table(self, season_id):
        return await self._fetch("season_table", self._ids((season_id, "Season")))

    async def cup_brackets(self, cup_id):
        return await self._fetch("cup_brackets", self._ids((cup_id, "Cup")), prefix="gm-")
