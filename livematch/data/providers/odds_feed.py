from __future__ import annotations

import asyncio
import time

import httpx

from livematch.core.config import settings
from livematch.core.errors import UpstreamUnavailable
from livematch.core.http import odds_feed_client, request_with_retries
from livematch.core.logger import get_logger

log = get_logger("providers.odds_feed")

LIVE_EVENTS_PATH = "/factsCenter/liveOrPrematchEvents"
UPCOMING_EVENTS_PATH = "/factsCenter/pcUpcomingEvents"
UPCOMING_MARKET_IDS = "1,18,19,20,10,29,11,26,36,14,60100"
_EMPTY_PAGE = {"data": {"tournaments": []}}


def _chunks(items: list, size: int) -> list[list]:
    size = max(1, int(size))
    return [items[i:i + size] for i in range(0, len(items), size)]


async def get_live_events(client: httpx.AsyncClient | None = None, *, _sleep=asyncio.sleep) -> dict:
    client = client or odds_feed_client()
    params = {"sportId": settings.odds_feed_sport_id, "_t": int(time.time() * 1000)}
    try:
        r = await request_with_retries(client, "GET", LIVE_EVENTS_PATH, params=params, retries=2, _sleep=_sleep)
        r.raise_for_status()
        data = r.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise UpstreamUnavailable(f"odds feed unreachable: {type(exc).__name__}") from exc
    if not isinstance(data, dict) or data.get("data") is None:
        raise UpstreamUnavailable("odds feed returned no data")
    return data


async def _fetch_upcoming_page(client: httpx.AsyncClient, page_num: int, page_size: int) -> dict:
    params = {
        "sportId": settings.odds_feed_sport_id,
        "marketId": UPCOMING_MARKET_IDS,
        "pageSize": page_size,
        "pageNum": page_num,
        "option": 1,
        "timeline": 24,
        "_t": int(time.time()),
    }
    try:
        # 404/403 are not in the retry set, so they fail on the first attempt.
        r = await request_with_retries(
            client,
            "GET",
            UPCOMING_EVENTS_PATH,
            params=params,
            retries=2,
            backoff_base=1.0,
            backoff_max=10.0,
            jitter=1.0,
        )
        r.raise_for_status()
        return r.json()
    except (httpx.HTTPError, ValueError) as exc:
        log.warning("upcoming_page_failed page=%s error=%s", page_num, type(exc).__name__)
        return _EMPTY_PAGE


async def get_upcoming_events(
    client: httpx.AsyncClient | None = None,
    *,
    page_size: int | None = None,
    page_limit: int | None = None,
    concurrency: int | None = None,
) -> dict:
    client = client or odds_feed_client()
    page_size = int(page_size or settings.upcoming_page_size)
    page_limit = int(page_limit or settings.upcoming_page_limit)
    concurrency = int(concurrency or settings.upcoming_concurrency)

    tournaments: list[dict] = []
    total_num = 0
    for chunk in _chunks(list(range(1, page_limit + 1)), concurrency):
        responses = await asyncio.gather(*(_fetch_upcoming_page(client, n, page_size) for n in chunk))
        for index, response in enumerate(responses):
            body = (response or {}).get("data") if isinstance(response, dict) else None
            if isinstance(body, dict):
                if isinstance(body.get("tournaments"), list):
                    tournaments.extend(t for t in body["tournaments"] if isinstance(t, dict))
                if index == 0 and not total_num and body.get("totalNum"):
                    total_num = int(body["totalNum"])

    unique: dict = {}
    for position, tournament in enumerate(tournaments):
        key = tournament.get("id", f"_{position}")
        unique[key] = tournament
    deduped = list(unique.values())
    log.info("upcoming_events_fetched pages=%s tournaments=%s", page_limit, len(deduped))
    return {"data": {"totalNum": total_num or len(deduped), "tournaments": deduped}}
