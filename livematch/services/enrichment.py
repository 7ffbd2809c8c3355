from __future__ import annotations

import asyncio
import copy
from typing import Any, Optional

from redis.exceptions import RedisError

from livematch.core.errors import ValidationFailure, validate_id
from livematch.core.logger import ErrorLogLimiter, get_logger
from livematch.data.mappers import numeric_id
from livematch.data.providers.stats import StatsProvider, doc_data
from livematch.data.providers.store import SnapshotStore, prematch_key
from livematch.services.analytics import NO_PREDICTION, build_analysis
from livematch.services.request_queue import QueuedRequest, RequestQueue

log = get_logger("services.enrichment")

# Values a queued call resolves to when the upstream call fails or times out.
FALLBACKS: dict[str, Any] = {
    "matchInfo": {},
    "details": {},
    "timeline": {"events": []},
    "delta": {},
    "situation": {"data": []},
    "form": {"matches": []},
    "h2h": {"matches": []},
    "squads": {},
    "odds": {},
    "phrases": {},
    "seasonMeta": {},
    "table": {},
    "brackets": {},
}


def empty_enriched_data() -> dict:
    return {
        "matchInfo": {},
        "squads": {},
        "odds": {},
        "timeline": {"complete": {"events": []}, "delta": {}},
        "form": {"home": {"matches": []}, "away": {"matches": []}},
        "h2h": {"matches": []},
        "tournament": {"seasonMeta": {}, "table": {}, "brackets": None},
        "situation": {"data": []},
        "details": {"values": {}},
        "phrases": {},
        "prematchMarketData": None,
        "analysis": {
            "momentum": {
                "recent": {"home": 0, "away": 0},
                "trend": [],
                "timeline": None,
                "possession": {"home": 50, "away": 50},
            },
            "stats": None,
            "goalProbability": {"home": 0, "away": 0},
            "recommendation": {"type": NO_PREDICTION, "confidence": 0, "reasons": ["Data unavailable"]},
        },
    }


def _match_block(match_info: Any) -> dict:
    block = match_info.get("match") if isinstance(match_info, dict) else None
    return block if isinstance(block, dict) else {}


def team_ids(match_info: Any) -> tuple[Optional[str], Optional[str]]:
    teams = _match_block(match_info).get("teams")
    teams = teams if isinstance(teams, dict) else {}
    out = []
    for side in ("home", "away"):
        team = teams.get(side) if isinstance(teams.get(side), dict) else {}
        value = team.get("uid", team.get("_id"))
        out.append(str(value) if value not in (None, "") else None)
    return out[0], out[1]


def season_id(match_info: Any) -> Optional[str]:
    value = _match_block(match_info).get("_seasonid")
    return str(value) if value not in (None, "") else None


def cup_id(season_meta: Any) -> Optional[str]:
    cup = season_meta.get("cup") if isinstance(season_meta, dict) else None
    value = cup.get("id") if isinstance(cup, dict) else None
    return str(value) if value not in (None, "") else None


async def _unavailable(*_args):
    raise LookupError("identifier unavailable")


class EnrichmentEngine:
    """Attaches stats-provider data and derived analysis to match records.

    Owns the per-session prematch cache and the error-log limiter; one
    engine per scheduler, cleared through ``reset``.
    """

    def __init__(
        self,
        stats: StatsProvider | None = None,
        queue: RequestQueue | None = None,
        store: SnapshotStore | None = None,
        *,
        error_limiter: ErrorLogLimiter | None = None,
    ):
        self.stats = stats or StatsProvider()
        self.queue = queue or RequestQueue()
        self.store = store or SnapshotStore()
        self.errors = error_limiter or ErrorLogLimiter()
        self._prematch: dict[str, Any] = {}

    def reset(self) -> None:
        self._prematch.clear()
        self.errors.clear()

    @staticmethod
    def match_id(match: dict) -> str:
        raw = validate_id((match or {}).get("eventId"), "Match")
        resolved = numeric_id(raw)
        if not resolved:
            raise ValidationFailure("Match ID is required")
        return resolved

    def _call(self, name: str, method, *args) -> QueuedRequest:
        if any(a is None for a in args):
            return QueuedRequest(target=_unavailable, fallback=FALLBACKS[name], name=name)

        async def _target():
            data = doc_data(await method(*args))
            if data is None:
                raise LookupError(f"{name} returned no data")
            return data

        return QueuedRequest(target=_target, fallback=FALLBACKS[name], name=name)

    async def prematch(self, match_id: str) -> Any:
        if match_id in self._prematch:
            return copy.deepcopy(self._prematch[match_id])
        try:
            value = await self.store.get_json(prematch_key(match_id))
        except (RedisError, OSError):
            self.errors.error(log, "prematch", "prematch_load_failed match_id=%s", match_id, exc_info=True)
            return None
        self._prematch[match_id] = value
        return copy.deepcopy(value)

    async def enrich_initial(self, match: dict) -> dict:
        match_id = self.match_id(match)
        try:
            # Essential fields first; the next batch starts only after this one resolves.
            info, details, timeline = await self.queue.enqueue(
                [
                    self._call("matchInfo", self.stats.match_info, match_id),
                    self._call("details", self.stats.match_details, match_id),
                    self._call("timeline", self.stats.match_timeline, match_id),
                ]
            )
            home_id, away_id = team_ids(info)
            season = season_id(info)

            situation, delta, form_home, form_away, h2h = await self.queue.enqueue(
                [
                    self._call("situation", self.stats.match_situation, match_id),
                    self._call("delta", self.stats.match_timeline_delta, match_id),
                    self._call("form", self.stats.team_form, home_id),
                    self._call("form", self.stats.team_form, away_id),
                    self._call("h2h", self.stats.team_versus, home_id, away_id),
                ]
            )

            squads, odds, phrases, season_meta, table = await self.queue.enqueue(
                [
                    self._call("squads", self.stats.match_squads, match_id),
                    self._call("odds", self.stats.match_odds, match_id),
                    self._call("phrases", self.stats.match_phrases, match_id),
                    self._call("seasonMeta", self.stats.season_meta, season),
                    self._call("table", self.stats.season_table, season),
                ]
            )
            brackets = None
            cup = cup_id(season_meta)
            if cup is not None:
                (brackets,) = await self.queue.enqueue([self._call("brackets", self.stats.cup_brackets, cup)])
            prematch = await self.prematch(match_id)

            timeline_block = {"complete": timeline, "delta": delta}
            enriched = {
                "matchInfo": info,
                "squads": squads,
                "odds": odds,
                "timeline": timeline_block,
                "form": {"home": form_home, "away": form_away},
                "h2h": h2h,
                "tournament": {"seasonMeta": season_meta, "table": table, "brackets": brackets},
                "situation": situation,
                "details": details,
                "phrases": phrases,
                "prematchMarketData": prematch,
                "analysis": build_analysis(situation, details, timeline_block),
            }
            return {**match, "enrichedData": enriched}
        except Exception:
            self.errors.error(log, "enrich_initial", "enrich_initial_failed match_id=%s", match_id, exc_info=True)
            return {**match, "enrichedData": empty_enriched_data()}

    async def enrich_realtime(self, match: dict) -> dict:
        match_id = self.match_id(match)
        try:
            (timeline, delta), (situation, details), prematch = await asyncio.gather(
                self.queue.enqueue(
                    [
                        self._call("timeline", self.stats.match_timeline, match_id),
                        self._call("delta", self.stats.match_timeline_delta, match_id),
                    ]
                ),
                self.queue.enqueue(
                    [
                        self._call("situation", self.stats.match_situation, match_id),
                        self._call("details", self.stats.match_details, match_id),
                    ]
                ),
                self.prematch(match_id),
            )
            timeline_block = {"complete": timeline, "delta": delta}
            enriched = dict(match.get("enrichedData") or {})
            enriched.update(
                {
                    "timeline": timeline_block,
                    "situation": situation,
                    "details": details,
                    "prematchMarketData": prematch,
                    "analysis": build_analysis(situation, details, timeline_block),
                }
            )
            return {**match, "enrichedData": enriched}
        except Exception:
            self.errors.error(log, "enrich_realtime", "enrich_realtime_failed match_id=%s", match_id, exc_info=True)
            return match
