from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from livematch.core.config import settings
from livematch.core.logger import get_logger

log = get_logger("services.request_queue")


@dataclass
class QueuedRequest:
    target: Callable[..., Awaitable[Any]]
    args: tuple = ()
    fallback: Any = None
    name: str = ""
    kwargs: dict = field(default_factory=dict)


class RequestQueue:
    """Serializes batch jobs and issues each job in fixed-size windows.

    One job runs at a time, in submission order. Requests inside a window
    race a shared timeout; a request that fails or times out resolves to a
    copy of its fallback, so ``enqueue`` never raises for upstream errors.
    """

    def __init__(
        self,
        *,
        window_size: int | None = None,
        timeout_ms: int | None = None,
        pause_ms: int | None = None,
        _sleep=asyncio.sleep,
    ):
        self.window_size = max(1, int(window_size or settings.queue_window_size))
        self.timeout_ms = int(timeout_ms if timeout_ms is not None else settings.queue_request_timeout_ms)
        self.pause_ms = int(pause_ms if pause_ms is not None else settings.queue_window_pause_ms)
        self._sleep = _sleep
        self._lock = asyncio.Lock()
        self.stats = {"jobs": 0, "windows": 0, "requests": 0, "fallbacks": 0, "timeouts": 0}

    async def _run_one(self, request: QueuedRequest) -> Any:
        try:
            return await asyncio.wait_for(
                request.target(*request.args, **request.kwargs),
                timeout=max(self.timeout_ms, 1) / 1000,
            )
        except asyncio.TimeoutError:
            self.stats["timeouts"] += 1
            self.stats["fallbacks"] += 1
            log.debug("request_queue_timeout name=%s", request.name)
        except Exception as exc:
            self.stats["fallbacks"] += 1
            log.debug("request_queue_fallback name=%s error=%s", request.name, type(exc).__name__)
        return copy.deepcopy(request.fallback)

    async def enqueue(self, requests: Iterable[QueuedRequest]) -> list[Any]:
        batch = list(requests)
        async with self._lock:
            self.stats["jobs"] += 1
            results: list[Any] = []
            for start in range(0, len(batch), self.window_size):
                if start and self.pause_ms > 0:
                    await self._sleep(self.pause_ms / 1000)
                window = batch[start:start + self.window_size]
                self.stats["windows"] += 1
                self.stats["requests"] += len(window)
                results.extend(await asyncio.gather(*(self._run_one(r) for r in window)))
            return results
