from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

import httpx

from livematch.core.errors import UpstreamUnavailable, ValidationFailure
from livematch.core.logger import get_logger
from livematch.core.timeutils import utcnow
from livematch.data.mappers import normalize_feed
from livematch.data.providers.odds_feed import get_live_events, get_upcoming_events
from livematch.services.enrichment import EnrichmentEngine
from livematch.services.merge import FinishedTracker, live_filter, merge, passes_name_filter, same_fingerprints

log = get_logger("services.polling")


class PollingDriver:
    """Interval-driven refresh of the live and upcoming match sets.

    ``live`` is the committed, filtered view handed to consumers. The
    unfiltered merge base is kept separately so slow enrichment fields
    survive cycles in which a match is temporarily filtered out.
    """

    name = "polling"

    def __init__(
        self,
        engine: EnrichmentEngine | None = None,
        *,
        fetch_live: Callable[[], Awaitable[dict]] = get_live_events,
        fetch_upcoming: Callable[[], Awaitable[dict]] = get_upcoming_events,
        finished: FinishedTracker | None = None,
    ):
        self.engine = engine or EnrichmentEngine()
        self.fetch_live = fetch_live
        self.fetch_upcoming = fetch_upcoming
        self.finished = finished or FinishedTracker()
        self.live: list[dict] = []
        self.upcoming: list[dict] = []
        self.error: Optional[str] = None
        self.upcoming_error: Optional[str] = None
        self.paused = False
        self.cold = True
        self.cycles = 0
        self.skipped = 0
        self.last_refresh_at = None
        self._state: list[dict] = []
        self._absent: set = set()

    def pause(self) -> None:
        self.paused = True
        log.info("polling_paused")

    def resume(self) -> None:
        self.paused = False
        log.info("polling_resumed")

    def clear_finished(self) -> int:
        count = len(self.finished)
        self.finished.clear()
        log.info("finished_cleared count=%s", count)
        return count

    def reset(self) -> None:
        self.live = []
        self.upcoming = []
        self._state = []
        self._absent = set()
        self.error = None
        self.upcoming_error = None
        self.cold = True
        self.finished.clear()
        self.engine.reset()

    async def _enrich(self, match: dict, known: set) -> Optional[dict]:
        try:
            if self.cold or match.get("eventId") not in known:
                return await self.engine.enrich_initial(match)
            return await self.engine.enrich_realtime(match)
        except ValidationFailure as exc:
            log.warning("match_skipped_invalid event_id=%s reason=%s", match.get("eventId"), exc.message)
            return None

    def _drop_absent(self, merged: list[dict], batch_ids: set) -> list[dict]:
        absent_now = {m.get("eventId") for m in merged if m.get("eventId") not in batch_ids}
        gone = absent_now & self._absent
        self._absent = absent_now - gone
        if gone:
            log.info("live_matches_dropped_absent count=%s", len(gone))
        return [m for m in merged if m.get("eventId") not in gone]

    async def refresh_live(self) -> list[dict]:
        if self.paused:
            return self.live
        try:
            raw = await self.fetch_live()
        except UpstreamUnavailable as exc:
            self.error = str(exc)
            log.warning("live_refresh_failed error=%s", exc)
            return self.live

        batch = normalize_feed(raw)
        known = {m.get("eventId") for m in self._state}
        results = await asyncio.gather(*(self._enrich(m, known) for m in batch))
        incoming = [m for m in results if m is not None]

        merged = merge(self._state, incoming)
        merged = self._drop_absent(merged, {m.get("eventId") for m in incoming})
        added = self.finished.observe(merged)
        if added:
            log.info("matches_finished count=%s", len(added))
        self._state = merged

        candidate = live_filter(merged, self.finished)
        self.cycles += 1
        self.cold = False
        self.error = None
        self.last_refresh_at = utcnow()
        if same_fingerprints(self.live, candidate):
            self.skipped += 1
            return self.live
        self.live = candidate
        log.debug("live_committed matches=%s", len(candidate))
        return self.live

    async def refresh_upcoming(self) -> list[dict]:
        if self.paused:
            return self.upcoming
        try:
            raw = await self.fetch_upcoming()
        except (UpstreamUnavailable, httpx.HTTPError) as exc:
            self.upcoming_error = str(exc) or type(exc).__name__
            log.warning("upcoming_refresh_failed error=%s", type(exc).__name__)
            return self.upcoming
        self.upcoming = [m for m in normalize_feed(raw) if passes_name_filter(m)]
        self.upcoming_error = None
        return self.upcoming

    def status(self) -> dict:
        return {
            "driver": self.name,
            "paused": self.paused,
            "coldStart": self.cold,
            "error": self.error,
            "upcomingError": self.upcoming_error,
            "live": len(self.live),
            "upcoming": len(self.upcoming),
            "finished": len(self.finished),
            "cycles": self.cycles,
            "skippedCommits": self.skipped,
            "lastRefreshAt": self.last_refresh_at.isoformat() if self.last_refresh_at else None,
        }
