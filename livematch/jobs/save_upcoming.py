from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Optional

from livematch.core.logger import get_logger
from livematch.core.timeutils import parse_start_time, upcoming_dates
from livematch.data.mappers import normalize_feed
from livematch.data.providers.odds_feed import get_upcoming_events
from livematch.data.providers.store import SnapshotStore, date_key, match_key

log = get_logger("jobs.save_upcoming")


async def _index_ids(store: SnapshotStore, match_date: str) -> list:
    current = await store.get_json(date_key(match_date))
    return list(current) if isinstance(current, list) else []


async def run(
    store: SnapshotStore,
    *,
    fetch: Callable[[], Awaitable[dict]] = get_upcoming_events,
    now: Optional[datetime] = None,
) -> dict:
    wanted = {d.isoformat() for d in upcoming_dates(now)}
    matches = normalize_feed(await fetch())

    by_date: dict[str, list[dict]] = {}
    skipped = 0
    for match in matches:
        start = parse_start_time(match.get("estimateStartTime"))
        if start is None or not match.get("eventId"):
            skipped += 1
            continue
        match_date = start.date().isoformat()
        if match_date in wanted:
            by_date.setdefault(match_date, []).append(match)

    saved = 0
    for match_date, day_matches in sorted(by_date.items()):
        ids = await _index_ids(store, match_date)
        for match in day_matches:
            await store.set_json(match_key(match_date, match["eventId"]), match)
            if match["eventId"] not in ids:
                ids.append(match["eventId"])
            saved += 1
        await store.set_json(date_key(match_date), ids)

    log.info("save_upcoming_done saved=%s skipped=%s dates=%s", saved, skipped, ",".join(sorted(by_date)))
    return {"saved": saved, "skipped": skipped, "dates": sorted(by_date)}


async def load_for_date(store: SnapshotStore, match_date: str) -> list[dict]:
    out = []
    for event_id in await _index_ids(store, match_date):
        match = await store.get_json(match_key(match_date, event_id))
        if isinstance(match, dict):
            out.append(match)
    return out
