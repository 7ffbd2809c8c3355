import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from livematch.core.config import settings
from livematch.core.http import close_http_clients, init_http_clients
from livematch.data.providers.store import close_redis
from livematch.main import LIVE_FEED, _validate_runtime_config, register_jobs

logger = logging.getLogger(__name__)


async def main() -> None:
    await init_http_clients()
    _validate_runtime_config()

    if not settings.scheduler_enabled:
        logger.warning("SCHEDULER_ENABLED=false; scheduler runner exiting")
        return

    scheduler = AsyncIOScheduler()
    register_jobs(scheduler)
    scheduler.start()
    if LIVE_FEED is not None:
        LIVE_FEED.start()
    logger.info("scheduler_runner_started driver=%s", "push" if LIVE_FEED is not None else "polling")
    try:
        await asyncio.Event().wait()
    finally:
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


def _cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    _cli()
