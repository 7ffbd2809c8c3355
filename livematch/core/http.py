import asyncio
import random
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime

import httpx

from .config import settings
from .logger import get_logger

_DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}
_odds_feed_client: httpx.AsyncClient | None = None
_stats_client: httpx.AsyncClient | None = None
log = get_logger("http")

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36"
)


class _NotModified:
    def __repr__(self) -> str:
        return "NOT_MODIFIED"


# Returned by fetch_with_retry on a 304; distinct from any payload, including None.
NOT_MODIFIED = _NotModified()


def _http_limits() -> httpx.Limits:
    return httpx.Limits(max_connections=20, max_keepalive_connections=10)


def odds_feed_client() -> httpx.AsyncClient:
    global _odds_feed_client
    if _odds_feed_client is None or _odds_feed_client.is_closed:
        headers = {
            "Connection": "keep-alive",
            "Content-Type": "application/x-www-form-urlencoded",
            "user-agent": BROWSER_USER_AGENT,
        }
        if settings.odds_feed_cookie:
            headers["Cookie"] = settings.odds_feed_cookie
        _odds_feed_client = httpx.AsyncClient(
            base_url=settings.odds_feed_base,
            headers=headers,
            timeout=httpx.Timeout(15.0),
            limits=_http_limits(),
        )
    return _odds_feed_client


def stats_client() -> httpx.AsyncClient:
    global _stats_client
    if _stats_client is None or _stats_client.is_closed:
        origin = settings.stats_origin
        _stats_client = httpx.AsyncClient(
            base_url=settings.stats_base,
            headers={
                "accept": "*/*",
                "accept-language": "en-US,en;q=0.9",
                "origin": origin,
                "referer": origin.rstrip("/") + "/",
                "user-agent": BROWSER_USER_AGENT,
            },
            timeout=httpx.Timeout(10.0),
            limits=_http_limits(),
        )
    return _stats_client


async def init_http_clients() -> None:
    odds_feed_client()
    stats_client()


async def close_http_clients() -> None:
    global _odds_feed_client, _stats_client
    if _odds_feed_client is not None and not _odds_feed_client.is_closed:
        await _odds_feed_client.aclose()
    if _stats_client is not None and not _stats_client.is_closed:
        await _stats_client.aclose()
    _odds_feed_client = None
    _stats_client = None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        dt = parsedate_to_datetime(value)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return max(0.0, (dt - datetime.now(timezone.utc)).total_seconds())
    except Exception:
        return None


def _backoff_delay(attempt: int, base: float, cap: float, retry_after: float | None, jitter: float = 0.0) -> float:
    delay = base * (2 ** attempt)
    if jitter > 0:
        delay += random.uniform(0.0, jitter)
    delay = min(cap, delay)
    if retry_after is not None:
        delay = max(delay, retry_after)
    return delay


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    params: dict | None = None,
    retries: int = 3,
    backoff_base: float = 0.5,
    backoff_max: float = 8.0,
    jitter: float = 0.0,
    retry_statuses: set[int] | None = None,
    retry_exceptions: tuple[type[BaseException], ...] = (httpx.RequestError,),
    _sleep=asyncio.sleep,
    **kwargs,
) -> httpx.Response:
    statuses = retry_statuses or _DEFAULT_RETRY_STATUSES
    for attempt in range(retries + 1):
        try:
            response = await client.request(method, url, params=params, **kwargs)
        except retry_exceptions:
            if attempt >= retries:
                raise
            await _sleep(_backoff_delay(attempt, backoff_base, backoff_max, None, jitter))
            continue

        if response.status_code in statuses:
            if attempt >= retries:
                return response
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            await response.aclose()
            await _sleep(_backoff_delay(attempt, backoff_base, backoff_max, retry_after, jitter))
            continue
        return response

    raise RuntimeError("request_with_retries: exhausted retries")


async def fetch_with_retry(
    client: httpx.AsyncClient,
    url: str,
    *,
    max_attempts: int = 2,
    timeout_ms: int = 5000,
    backoff_base_ms: int = 1000,
    params: dict | None = None,
    headers: dict | None = None,
    _sleep=asyncio.sleep,
):
    """GET ``url`` and return its decoded JSON body.

    Each attempt is bounded by ``timeout_ms``; after a failed attempt ``n``
    (1-based) the call sleeps ``backoff_base_ms * n`` before trying again.
    A 304 ends the loop at once and yields ``NOT_MODIFIED``. The last
    attempt's error propagates.
    """
    attempts = max(1, int(max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            response = await asyncio.wait_for(
                client.get(url, params=params, headers=headers),
                timeout=max(timeout_ms, 1) / 1000,
            )
            if response.status_code == 304:
                return NOT_MODIFIED
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, asyncio.TimeoutError, ValueError) as exc:
            if attempt >= attempts:
                raise
            log.debug(
                "fetch_retry url=%s attempt=%s/%s error=%s",
                url,
                attempt,
                attempts,
                type(exc).__name__,
            )
            await _sleep(backoff_base_ms * attempt / 1000)

    raise RuntimeError("fetch_with_retry: exhausted retries")
