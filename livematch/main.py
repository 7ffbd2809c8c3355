import asyncio
import re
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
import logging
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from livematch.core.config import settings
from livematch.core.errors import UpstreamUnavailable, ValidationFailure, error_payload, validate_id
from livematch.core.http import close_http_clients, init_http_clients
from livematch.core.timeutils import utcnow
from livematch.data.mappers import numeric_id
from livematch.data.providers.store import SnapshotStore, close_redis, prematch_key
from livematch.jobs import save_upcoming
from livematch.services.cart import Cart
from livematch.services.filters import apply_filters, over_one_point_five, sort_by_goal_probability
from livematch.services.live_feed import LiveFeedClient
from livematch.services.polling import PollingDriver

scheduler = AsyncIOScheduler()
logger = logging.getLogger(__name__)
APP_STARTED_AT = utcnow()
JOB_LOCKS: dict[str, asyncio.Lock] = {}
JOB_STATUS: dict[str, dict] = {}
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

STORE = SnapshotStore()
POLLER = PollingDriver()
LIVE_FEED: Optional[LiveFeedClient] = LiveFeedClient() if settings.use_push_driver else None


def _require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")):
    token = (settings.admin_token or "").strip()
    if not token:
        raise HTTPException(status_code=403, detail="Admin token is not configured")
    if x_admin_token != token:
        raise HTTPException(status_code=403, detail="Forbidden")


def _validate_runtime_config() -> None:
    env = (settings.app_env or "dev").strip().lower()
    if env in {"prod", "production"} and not (settings.admin_token or "").strip():
        raise RuntimeError("ADMIN_TOKEN is required in prod")


def _get_lock(name: str) -> asyncio.Lock:
    lock = JOB_LOCKS.get(name)
    if lock is None:
        lock = asyncio.Lock()
        JOB_LOCKS[name] = lock
    return lock


def _set_status(store: dict, key: str, **values):
    cur = store.get(key) or {}
    cur.update(values)
    store[key] = cur


def _serialize_status(store: dict) -> dict:
    out: dict = {}
    for k, v in store.items():
        row = dict(v)
        for ts_key in ("started_at", "finished_at"):
            ts = row.get(ts_key)
            if isinstance(ts, datetime):
                row[ts_key] = ts.isoformat()
        out[k] = row
    return out


async def _run_job(job_name: str, job_fn, triggered_by: str | None = None):
    lock = _get_lock(job_name)
    if lock.locked():
        logger.warning("job_skip_already_running job=%s", job_name)
        return None
    async with lock:
        _set_status(JOB_STATUS, job_name, status="running", started_at=utcnow(), finished_at=None, error=None)
        t0 = time.perf_counter()
        try:
            result = await job_fn()
        except Exception as exc:
            logger.exception("job_failed job=%s triggered_by=%s", job_name, triggered_by)
            _set_status(JOB_STATUS, job_name, status="failed", finished_at=utcnow(), error=type(exc).__name__)
            return None
        dur_ms = int((time.perf_counter() - t0) * 1000)
        _set_status(JOB_STATUS, job_name, status="ok", finished_at=utcnow(), error=None, duration_ms=dur_ms)
        return result


def _live_driver():
    return LIVE_FEED if LIVE_FEED is not None else POLLER


async def _refresh_live():
    return len(await POLLER.refresh_live())


async def _refresh_upcoming():
    return len(await POLLER.refresh_upcoming())


async def _save_upcoming():
    return await save_upcoming.run(STORE)


async def _purge_caches():
    purged = POLLER.engine.stats.purge_caches()
    logger.info("stats_cache_purged entries=%s", purged)
    return purged


async def _scheduled_purge_caches():
    await _run_job("purge_caches", _purge_caches, triggered_by="scheduler")


async def _scheduled_live_refresh():
    await _run_job("live_refresh", _refresh_live, triggered_by="scheduler")


async def _scheduled_upcoming_refresh():
    await _run_job("upcoming_refresh", _refresh_upcoming, triggered_by="scheduler")


async def _scheduled_save_upcoming():
    await _run_job("save_upcoming", _save_upcoming, triggered_by="scheduler")


def register_jobs(target: AsyncIOScheduler) -> None:
    if LIVE_FEED is None:
        target.add_job(
            _scheduled_live_refresh,
            IntervalTrigger(seconds=settings.live_refresh_seconds),
            id="live_refresh",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=5,
        )
    target.add_job(
        _scheduled_upcoming_refresh,
        IntervalTrigger(seconds=settings.upcoming_refresh_seconds),
        id="upcoming_refresh",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    target.add_job(
        _scheduled_purge_caches,
        IntervalTrigger(minutes=5),
        id="purge_caches",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    target.add_job(
        _scheduled_save_upcoming,
        CronTrigger.from_crontab(settings.snapshot_cron),
        id="save_upcoming",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=300,
    )


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_http_clients()
    _validate_runtime_config()

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if LIVE_FEED is not None:
            LIVE_FEED.start()
    try:
        yield
    finally:
        if settings.scheduler_enabled:
            scheduler.shutdown(wait=False)
        if LIVE_FEED is not None:
            await LIVE_FEED.stop()
        try:
            await close_http_clients()
        except Exception:
            logger.exception("http_client_close_failed")
        try:
            await close_redis()
        except Exception:
            logger.exception("redis_close_failed")


app = FastAPI(title="Live Match Tracker", lifespan=lifespan)

# CORS: public read API plus cart writes from the browser
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.exception_handler(ValidationFailure)
async def _validation_failure_handler(_: Request, exc: ValidationFailure):
    return JSONResponse(error_payload(exc), status_code=exc.status)


@app.exception_handler(UpstreamUnavailable)
async def _upstream_unavailable_handler(_: Request, exc: UpstreamUnavailable):
    return JSONResponse(error_payload(exc), status_code=503)


class CartAddRequest(BaseModel):
    eventId: str
    homeTeamName: Optional[str] = None
    awayTeamName: Optional[str] = None
    estimateStartTime: Optional[str] = None
    tournamentName: Optional[str] = None


def _split_filters(raw: Optional[str]) -> list[str]:
    return [part.strip() for part in (raw or "").split(",") if part.strip()]


def _find_match(event_id: str) -> Optional[dict]:
    for match in list(_live_driver().live) + list(POLLER.upcoming):
        if str(match.get("eventId")) == event_id:
            return match
    return None


async def _load_cart(client_id: str) -> Cart:
    cart = Cart(client_id, STORE)
    await cart.load()
    return cart


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/api/live")
async def live_matches(
    filters: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    client_id: Optional[str] = Query(default=None),
):
    active = _split_filters(filters)
    is_in_cart = None
    if client_id:
        cart = await _load_cart(client_id)
        is_in_cart = cart.contains
    elif "inCart" in active:
        raise ValidationFailure("Client ID is required")
    driver = _live_driver()
    data = apply_filters(sort_by_goal_probability(driver.live), active, search, is_in_cart)
    return {"data": data, "count": len(data), "error": driver.error}


@app.get("/api/upcoming")
async def upcoming_matches(
    filters: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
):
    data = apply_filters(POLLER.upcoming, _split_filters(filters), search)
    return {"data": data, "count": len(data)}


@app.get("/api/predictions/over-1.5")
async def over_one_point_five_predictions():
    predictions = []
    for match in list(_live_driver().live) + list(POLLER.upcoming):
        pick = over_one_point_five(match)
        if pick is not None:
            predictions.append(pick)
    return {"predictions": predictions}


@app.get("/api/status")
async def status():
    return {
        "started_at": APP_STARTED_AT.isoformat(),
        "live": _live_driver().status(),
        "upcoming": {"count": len(POLLER.upcoming)},
        "jobs": _serialize_status(JOB_STATUS),
    }


@app.get("/api/matches/{match_date}")
async def saved_matches(match_date: str):
    if not _DATE_RE.match(match_date):
        raise ValidationFailure("Date must be YYYY-MM-DD")
    data = await save_upcoming.load_for_date(STORE, match_date)
    return {"date": match_date, "data": data, "count": len(data)}


@app.get("/api/match/prematch")
async def prematch(matchId: Optional[str] = Query(default=None)):
    match_id = numeric_id(validate_id(matchId, "Match"))
    return {"match": await STORE.get_json(prematch_key(match_id))}


@app.post("/api/finished/clear")
async def clear_finished(_: None = Depends(_require_admin)):
    cleared = POLLER.clear_finished()
    if LIVE_FEED is not None:
        LIVE_FEED.clear()
    return {"ok": True, "cleared": cleared}


@app.post("/api/live/pause")
async def pause_live(_: None = Depends(_require_admin)):
    if LIVE_FEED is not None:
        await LIVE_FEED.pause()
    POLLER.pause()
    return {"ok": True, "live": _live_driver().status()}


@app.post("/api/live/resume")
async def resume_live(_: None = Depends(_require_admin)):
    POLLER.resume()
    if LIVE_FEED is not None:
        LIVE_FEED.resume()
    return {"ok": True, "live": _live_driver().status()}


@app.post("/api/jobs/save_upcoming/run")
async def run_save_upcoming(_: None = Depends(_require_admin)):
    result = await _run_job("save_upcoming", _save_upcoming, triggered_by="api")
    return {"ok": result is not None, "result": result, "status": JOB_STATUS.get("save_upcoming")}


@app.get("/api/cart/{client_id}")
async def get_cart(client_id: str):
    cart = await _load_cart(client_id)
    return {"items": cart.items}


@app.post("/api/cart/{client_id}")
async def add_to_cart(client_id: str, body: CartAddRequest):
    cart = await _load_cart(client_id)
    match = _find_match(body.eventId) or body.model_dump()
    added = await cart.add(match)
    return {"added": added, "items": cart.items}


@app.delete("/api/cart/{client_id}/{event_id}")
async def remove_from_cart(client_id: str, event_id: str):
    cart = await _load_cart(client_id)
    removed = await cart.remove(event_id)
    return {"removed": removed, "items": cart.items}


@app.delete("/api/cart/{client_id}")
async def clear_cart(client_id: str):
    cart = await _load_cart(client_id)
    await cart.clear()
    return {"items": []}
