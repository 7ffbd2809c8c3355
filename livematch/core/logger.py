import logging
import os
import time
from typing import Callable, Optional


def _configure():
    level_name = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # Route uvicorn + apscheduler logs through root with the same formatter.
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access", "apscheduler"):
        lg = logging.getLogger(name)
        lg.handlers.clear()
        lg.propagate = True
        lg.setLevel(level)

    # Frame-level websocket logs are very noisy; keep them quiet by default.
    ws_level_name = (os.getenv("WS_LOG_LEVEL") or "WARNING").strip().upper()
    ws_level = getattr(logging, ws_level_name, logging.WARNING)
    ws_lg = logging.getLogger("websockets")
    ws_lg.handlers.clear()
    ws_lg.propagate = True
    ws_lg.setLevel(ws_level)


_configure()


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "livematch")


class ErrorLogLimiter:
    """Caps error lines per endpoint per wall-clock minute."""

    def __init__(self, limit_per_minute: int = 5, *, clock: Callable[[], float] = time.time):
        self.limit = int(limit_per_minute)
        self.dropped = 0
        self._clock = clock
        self._counts: dict[tuple[str, int], int] = {}

    def allow(self, endpoint: str) -> bool:
        minute = int(self._clock() // 60)
        for key in [k for k in self._counts if k[1] != minute]:
            del self._counts[key]
        key = (endpoint, minute)
        count = self._counts.get(key, 0)
        if count >= self.limit:
            self.dropped += 1
            return False
        self._counts[key] = count + 1
        return True

    def error(self, log: logging.Logger, endpoint: str, msg: str, *args, exc_info=False) -> bool:
        if not self.allow(endpoint):
            return False
        log.error(msg, *args, exc_info=exc_info)
        return True

    def clear(self) -> None:
        self._counts.clear()
        self.dropped = 0


logger = get_logger()
