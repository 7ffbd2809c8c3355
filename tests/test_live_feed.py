import asyncio
import json

from livematch.services.live_feed import (
    FORCE_RECONNECT,
    ClientIdentity,
    ConnectionState,
    LiveFeedClient,
)


class FakeSocket:
    """Replays queued messages, then blocks until closed."""

    def __init__(self, messages=()):
        self.sent = []
        self.closed = False
        self._messages = list(messages)
        self._closed_event = asyncio.Event()

    async def send(self, raw):
        self.sent.append(json.loads(raw))

    async def close(self):
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if self._messages:
            return self._messages.pop(0)
        await self._closed_event.wait()
        raise StopAsyncIteration


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _identity(tmp_path):
    return ClientIdentity(tmp_path / "client.json", ttl_hours=24)


def _client(tmp_path, connect, **kwargs):
    kwargs.setdefault("max_attempts", 5)
    return LiveFeedClient(
        "ws://feed.test/hub",
        identity=_identity(tmp_path),
        connect=connect,
        heartbeat_ms=5000,
        client_timeout_ms=45000,
        backoff_base_ms=1000,
        backoff_max_ms=30000,
        **kwargs,
    )


def _push(match_id, **extra):
    payload = {
        "matchId": match_id,
        "matchInfo": {"tournament": {"name": "Premier League"}, "status": "H1"},
        "coreData": {"teams": {"home": {"name": "A"}, "away": {"name": "B"}}},
        "statistics": {"score": "0:0"},
        "timeline": {"matchTime": {"seconds": 600}},
    }
    payload.update(extra)
    return payload


def test_backoff_delay_is_capped_exponential(tmp_path):
    client = _client(tmp_path, connect=None)
    assert [client.backoff_delay(n) for n in range(7)] == [1000, 2000, 4000, 8000, 16000, 30000, 30000]


def test_gives_up_after_max_attempts(tmp_path):
    sleeps = []

    async def _refuse(_url):
        raise OSError("connection refused")

    async def _sleep(delay):
        sleeps.append(delay)

    client = _client(tmp_path, connect=_refuse, max_attempts=3, _sleep=_sleep)
    asyncio.run(client.run())
    assert client.attempts == 3
    assert client.state is ConnectionState.DISCONNECTED
    assert sleeps == [2.0, 4.0]
    assert client.last_delay_ms == min(1000 * 2 ** 3, 30000)


def test_successful_connect_resets_attempts(tmp_path):
    socket = FakeSocket()

    async def _connect(url):
        assert "clientId=" in url
        return socket

    client = _client(tmp_path, connect=_connect)
    client.attempts = 4
    asyncio.run(client.connect_once())
    assert client.attempts == 0
    assert client.state is ConnectionState.CONNECTED
    assert socket.sent == [{"type": "subscribe", "clientId": client.client_id}]


def test_heartbeat_timeout_forces_reconnect(tmp_path):
    clock = FakeClock()
    socket = FakeSocket()

    async def _sleep(delay):
        clock.now += delay

    async def _connect(_url):
        return socket

    client = _client(tmp_path, connect=_connect, clock=clock, _sleep=_sleep)

    async def _run():
        await client.connect_once()
        return await client._heartbeat()

    assert asyncio.run(_run()) == "heartbeat_timeout"
    heartbeats = [m for m in socket.sent if m["type"] == "heartbeat"]
    assert len(heartbeats) == 9


def test_heartbeat_ack_resets_timer(tmp_path):
    clock = FakeClock()
    client = _client(tmp_path, connect=None, clock=clock)
    clock.now = 40
    client.handle_message({"type": "heartbeat_ack"})
    clock.now = 80
    assert not client.heartbeat_expired()
    clock.now = 86
    assert client.heartbeat_expired()


def test_force_reconnect_message(tmp_path):
    client = _client(tmp_path, connect=None)
    assert client.handle_message({"type": "force_reconnect"}) == FORCE_RECONNECT


def test_handle_batch_filters_and_merges(tmp_path):
    client = _client(tmp_path, connect=None)
    published = []
    client.subscribe(published.append)

    client.handle_batch(
        [
            _push("sr:match:1"),
            _push("sr:match:2", matchInfo={"tournament": {"name": "SRL League"}}),
            _push("sr:match:3", isSimulated=True),
            {"matchInfo": {}},
        ]
    )
    assert [m["eventId"] for m in client.live] == ["sr:match:1"]

    client.handle_batch([_push("sr:match:1", statistics={"score": "1:0"})])
    assert len(client.live) == 1
    assert client.live[0]["setScore"] == "1:0"
    assert client.live[0]["_stableKey"]
    assert len(published) == 2


def test_receive_loop_dispatches_batches(tmp_path):
    socket = FakeSocket(
        [
            json.dumps({"type": "ReceiveLiveMatches", "matches": [_push("sr:match:5")]}),
            "not json",
            json.dumps({"type": "force_reconnect"}),
            json.dumps({"type": "ReceiveLiveMatches", "matches": [_push("sr:match:6")]}),
        ]
    )

    async def _connect(_url):
        return socket

    client = _client(tmp_path, connect=_connect)

    async def _run():
        await client.connect_once()
        return await client._receive()

    assert asyncio.run(_run()) == FORCE_RECONNECT
    assert [m["eventId"] for m in client.live] == ["sr:match:5"]


def test_pause_tears_down_and_resume_reconnects(tmp_path):
    sockets = []

    async def _connect(_url):
        socket = FakeSocket()
        sockets.append(socket)
        return socket

    async def _run():
        client = _client(tmp_path, connect=_connect)
        client.start()
        for _ in range(5):
            await asyncio.sleep(0)
        await client.pause()
        paused_state = client.state
        client.resume()
        for _ in range(5):
            await asyncio.sleep(0)
        resumed_state = client.state
        await client.stop()
        return client, paused_state, resumed_state

    client, paused_state, resumed_state = asyncio.run(_run())
    assert paused_state is ConnectionState.DISCONNECTED
    assert resumed_state is ConnectionState.CONNECTED
    assert len(sockets) == 2
    assert sockets[0].closed
    assert sockets[0].sent[-1]["type"] == "unsubscribe"
    assert client.auto_reconnect is False


def test_client_identity_persists_and_expires(tmp_path):
    clock = FakeClock()
    identity = ClientIdentity(tmp_path / "id.json", ttl_hours=24, clock=clock)
    first = identity.get()
    clock.now = 3600
    assert identity.get() == first
    clock.now = 25 * 3600
    assert identity.get() != first


def test_handle_batch_drops_malformed_payloads(tmp_path):
    client = _client(tmp_path, connect=None)
    client.handle_batch(
        [
            _push("sr:match:1", matchInfo={"tournament": "EPL", "status": "H1"}),
            _push("sr:match:2", coreData=["not", "an", "object"]),
            _push(["sr:match:3"]),
            _push("sr:match:4", enrichedData={"analysis": "broken"}),
            _push("sr:match:5", timeline="90:00"),
            _push("sr:match:6"),
        ]
    )
    live = {m["eventId"]: m for m in client.live}
    assert sorted(live) == ["sr:match:1", "sr:match:5", "sr:match:6"]
    assert live["sr:match:1"]["tournamentName"] == "Unknown Tournament"
    assert live["sr:match:5"]["playedSeconds"] == "0"


def test_handle_batch_requires_team_names(tmp_path):
    client = _client(tmp_path, connect=None)
    client.handle_batch(
        [
            _push("sr:match:9", coreData={}),
            _push("sr:match:10", coreData={"teams": {"home": {"name": "A"}, "away": {"name": " "}}}),
            _push("sr:match:11"),
        ]
    )
    assert [m["eventId"] for m in client.live] == ["sr:match:11"]


def test_malformed_batch_does_not_end_the_session(tmp_path):
    socket = FakeSocket(
        [
            json.dumps({"type": "ReceiveLiveMatches", "matches": [{"matchId": "1", "matchInfo": {"tournament": 7}}]}),
            json.dumps({"type": "ReceiveLiveMatches", "matches": [_push("sr:match:7")]}),
            json.dumps({"type": "force_reconnect"}),
        ]
    )

    async def _connect(_url):
        return socket

    client = _client(tmp_path, connect=_connect)

    async def _run():
        await client.connect_once()
        return await client._receive()

    assert asyncio.run(_run()) == FORCE_RECONNECT
    assert [m["eventId"] for m in client.live] == ["sr:match:7"]


def test_reconnect_after_dropped_session_stays_reconnecting(tmp_path):
    states = []
    connects = []

    async def _connect(_url):
        connects.append(_url)
        if len(connects) == 1:
            return FakeSocket([json.dumps({"type": "force_reconnect"})])
        raise OSError("connection refused")

    async def _sleep(_delay):
        await asyncio.sleep(0)

    client = _client(tmp_path, connect=_connect, max_attempts=1, _sleep=_sleep)
    original = client._set_state

    def _record(state):
        states.append(state)
        original(state)

    client._set_state = _record
    asyncio.run(client.run())

    assert len(connects) == 2
    after_drop = states[states.index(ConnectionState.CONNECTED) + 1:]
    assert ConnectionState.CONNECTING not in after_drop
    assert after_drop[0] is ConnectionState.RECONNECTING
    assert client.state is ConnectionState.DISCONNECTED
