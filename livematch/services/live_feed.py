from __future__ import annotations

import asyncio
import json
import time
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import websockets
from websockets.exceptions import WebSocketException

from livematch.core.config import settings
from livematch.core.logger import get_logger
from livematch.data.mappers import map_push_match
from livematch.services.merge import has_match_names, passes_name_filter, with_stable_key

log = get_logger("services.live_feed")

MATCHES_MESSAGE = "ReceiveLiveMatches"
HEARTBEAT = "heartbeat"
HEARTBEAT_ACK = "heartbeat_ack"
FORCE_RECONNECT = "force_reconnect"

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


class ClientIdentity:
    """Durable client identifier kept in a small JSON file, renewed after a TTL."""

    def __init__(
        self,
        path: str | Path | None = None,
        *,
        ttl_hours: float | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path or settings.live_feed_client_id_file)
        self.ttl_seconds = float(ttl_hours if ttl_hours is not None else settings.client_id_ttl_hours) * 3600
        self._clock = clock

    def _load(self) -> Optional[dict]:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict) or not data.get("clientId"):
            return None
        return data

    def get(self) -> str:
        now = self._clock()
        data = self._load()
        if data is not None and now - float(data.get("createdAt") or 0) < self.ttl_seconds:
            return str(data["clientId"])
        client_id = uuid.uuid4().hex
        try:
            self.path.write_text(json.dumps({"clientId": client_id, "createdAt": now}), encoding="utf-8")
        except OSError:
            log.warning("client_id_persist_failed path=%s", self.path)
        return client_id


class LiveFeedClient:
    """Push driver: keeps a websocket subscription to the live-feed channel.

    State moves disconnected -> connecting -> connected; a dropped or silent
    connection goes to reconnecting and retries with capped exponential
    backoff. After ``max_attempts`` consecutive failed connects the client
    settles in disconnected until ``start``/``resume`` is called again.
    """

    name = "push"

    def __init__(
        self,
        url: str | None = None,
        *,
        identity: ClientIdentity | None = None,
        connect: Callable[..., Any] | None = None,
        heartbeat_ms: int | None = None,
        client_timeout_ms: int | None = None,
        backoff_base_ms: int | None = None,
        backoff_max_ms: int | None = None,
        max_attempts: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        _sleep=asyncio.sleep,
    ):
        self.url = url or settings.live_feed_url
        self.identity = identity or ClientIdentity()
        self._connect = connect or websockets.connect
        self.heartbeat_ms = int(heartbeat_ms or settings.live_feed_heartbeat_ms)
        self.client_timeout_ms = int(client_timeout_ms or settings.live_feed_client_timeout_ms)
        self.backoff_base_ms = int(backoff_base_ms or settings.live_feed_backoff_base_ms)
        self.backoff_max_ms = int(backoff_max_ms or settings.live_feed_backoff_max_ms)
        self.max_attempts = int(max_attempts or settings.live_feed_max_attempts)
        self._clock = clock
        self._sleep = _sleep

        self.state = ConnectionState.DISCONNECTED
        self.attempts = 0
        self.last_delay_ms: Optional[int] = None
        self.auto_reconnect = True
        self.paused = False
        self.error: Optional[str] = None
        self.client_id: Optional[str] = None
        self.matches: dict[Any, dict] = {}
        self._subscribers: list[Callable[[list[dict]], Any]] = []
        self._ws = None
        self._task: Optional[asyncio.Task] = None
        self._dropped = False
        self._last_ack = clock()

    @property
    def live(self) -> list[dict]:
        return list(self.matches.values())

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self.state:
            log.info("live_feed_state from=%s to=%s", self.state.value, state.value)
        self.state = state

    def backoff_delay(self, attempts: int | None = None) -> int:
        attempts = self.attempts if attempts is None else attempts
        return min(self.backoff_base_ms * 2 ** attempts, self.backoff_max_ms)

    def subscribe(self, callback: Callable[[list[dict]], Any]) -> Callable[[], None]:
        self._subscribers.append(callback)

        def _unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def _publish(self) -> None:
        snapshot = self.live
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                log.exception("live_feed_subscriber_failed")

    def handle_batch(self, payloads: Iterable[Any]) -> list[dict]:
        if not isinstance(payloads, list):
            return self.live
        accepted = 0
        for payload in payloads:
            try:
                match = map_push_match(payload)
                if match is None or not has_match_names(match) or not passes_name_filter(match):
                    continue
                match = with_stable_key(match)
            except (AttributeError, TypeError, ValueError) as exc:
                log.warning("live_feed_bad_payload error=%s", type(exc).__name__)
                continue
            self.matches[match["eventId"]] = match
            accepted += 1
        if accepted:
            self._publish()
        return self.live

    def handle_message(self, message: Any) -> Optional[str]:
        if not isinstance(message, dict):
            return None
        kind = message.get("type")
        if kind == HEARTBEAT_ACK:
            self._last_ack = self._clock()
        elif kind == MATCHES_MESSAGE:
            self.handle_batch(message.get("matches"))
        elif kind == FORCE_RECONNECT:
            log.info("live_feed_force_reconnect")
            return FORCE_RECONNECT
        return None

    def heartbeat_expired(self) -> bool:
        return (self._clock() - self._last_ack) * 1000 > self.client_timeout_ms

    async def _send(self, payload: dict) -> None:
        await self._ws.send(json.dumps(payload))

    async def connect_once(self) -> None:
        self._set_state(ConnectionState.RECONNECTING if self.attempts or self._dropped else ConnectionState.CONNECTING)
        self.client_id = self.identity.get()
        self._ws = await self._connect(f"{self.url}?clientId={self.client_id}")
        await self._send({"type": "subscribe", "clientId": self.client_id})
        self._last_ack = self._clock()
        self.attempts = 0
        self._dropped = False
        self.error = None
        self._set_state(ConnectionState.CONNECTED)

    async def _heartbeat(self) -> str:
        while True:
            await self._sleep(self.heartbeat_ms / 1000)
            if self.heartbeat_expired():
                log.warning("live_feed_heartbeat_timeout client_id=%s", self.client_id)
                return "heartbeat_timeout"
            await self._send({"type": HEARTBEAT, "clientId": self.client_id})

    async def _receive(self) -> str:
        async for raw in self._ws:
            try:
                message = json.loads(raw)
            except ValueError:
                log.warning("live_feed_bad_message")
                continue
            if self.handle_message(message) == FORCE_RECONNECT:
                return FORCE_RECONNECT
        return "closed"

    async def _session(self) -> str:
        tasks = [asyncio.create_task(self._heartbeat()), asyncio.create_task(self._receive())]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            return next(iter(done)).result()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._close()

    async def _close(self, *, unsubscribe: bool = False) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        if unsubscribe:
            try:
                await ws.send(json.dumps({"type": "unsubscribe", "clientId": self.client_id}))
            except _CONNECT_ERRORS as exc:
                log.debug("live_feed_unsubscribe_failed error=%s", type(exc).__name__)
        try:
            await ws.close()
        except _CONNECT_ERRORS as exc:
            log.debug("live_feed_close_failed error=%s", type(exc).__name__)

    async def run(self) -> None:
        while self.auto_reconnect:
            try:
                await self.connect_once()
            except _CONNECT_ERRORS as exc:
                self.attempts += 1
                self.error = type(exc).__name__
                self.last_delay_ms = self.backoff_delay()
                if self.attempts >= self.max_attempts:
                    log.error("live_feed_gave_up attempts=%s error=%s", self.attempts, self.error)
                    self._set_state(ConnectionState.DISCONNECTED)
                    return
                self._set_state(ConnectionState.RECONNECTING)
                log.warning("live_feed_connect_failed attempt=%s delay_ms=%s", self.attempts, self.last_delay_ms)
                await self._sleep(self.last_delay_ms / 1000)
                continue

            try:
                reason = await self._session()
            except _CONNECT_ERRORS as exc:
                reason = type(exc).__name__
            except Exception:
                log.exception("live_feed_session_failed client_id=%s", self.client_id)
                reason = "session_error"
            if not self.auto_reconnect:
                break
            self._dropped = True
            self._set_state(ConnectionState.RECONNECTING)
            self.last_delay_ms = self.backoff_delay()
            log.info("live_feed_reconnecting reason=%s delay_ms=%s", reason, self.last_delay_ms)
            await self._sleep(self.last_delay_ms / 1000)
        self._set_state(ConnectionState.DISCONNECTED)

    def start(self) -> asyncio.Task:
        self.auto_reconnect = True
        self.paused = False
        self.attempts = 0
        self._dropped = False
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def pause(self) -> None:
        self.auto_reconnect = False
        self.paused = True
        await self._close(unsubscribe=True)
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self._set_state(ConnectionState.DISCONNECTED)

    def resume(self) -> asyncio.Task:
        return self.start()

    async def stop(self) -> None:
        await self.pause()
        self.matches.clear()
        self._subscribers.clear()

    def clear(self) -> None:
        self.matches.clear()

    def status(self) -> dict:
        return {
            "driver": self.name,
            "state": self.state.value,
            "paused": self.paused,
            "attempts": self.attempts,
            "lastDelayMs": self.last_delay_ms,
            "error": self.error,
            "live": len(self.matches),
        }
