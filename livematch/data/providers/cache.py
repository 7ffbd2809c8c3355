from __future__ import annotations

import time
from typing import Any, Callable


class TTLCache:
    """In-process payload cache with a fixed TTL and an entry cap.

    Expired entries are kept until evicted so that a 304 from upstream can
    still be answered with the last good payload via ``peek``.
    """

    def __init__(self, ttl_seconds: float, max_size: int = 1000, *, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self.max_size = int(max_size)
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, payload = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return payload

    def peek(self, key: str) -> Any:
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def set(self, key: str, payload: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[oldest]
        self._entries[key] = (self._clock(), payload)

    def purge_expired(self) -> int:
        now = self._clock()
        stale = [k for k, (ts, _) in self._entries.items() if now - ts >= self.ttl_seconds]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
