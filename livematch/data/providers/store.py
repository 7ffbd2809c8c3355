from __future__ import annotations

import json
from typing import Any

from redis.asyncio import Redis

from livematch.core.config import settings
from livematch.core.logger import get_logger

_redis_client: Redis | None = None
log = get_logger("providers.store")


def redis_client() -> Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
    _redis_client = None


def match_key(match_date: str, match_id) -> str:
    return f"match:{match_date}:{match_id}"


def date_key(match_date: str) -> str:
    return f"date:{match_date}"


def prematch_key(match_id) -> str:
    return f"match:{match_id}"


def cart_key(client_id: str) -> str:
    return f"cart:{client_id}"


class SnapshotStore:
    """JSON get/set with TTL over a key-value backend."""

    def __init__(self, client=None, *, default_ttl_seconds: int | None = None):
        self._client = client
        self.default_ttl_seconds = int(default_ttl_seconds or settings.snapshot_ttl_seconds)

    def client(self):
        return self._client if self._client is not None else redis_client()

    async def get_json(self, key: str) -> Any:
        raw = await self.client().get(key)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except ValueError:
            log.warning("store_bad_payload key=%s", key)
            return None

    async def set_json(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        ttl = int(ttl_seconds or self.default_ttl_seconds)
        await self.client().set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl)
