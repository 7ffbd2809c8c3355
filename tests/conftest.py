import json
import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("ADMIN_TOKEN", "test")
os.environ.setdefault("STATS_TOKEN", "test-token")
os.environ.setdefault("LIVE_DRIVER", "polling")


class FakeRedis:
    """Async stand-in for the redis client: string values plus recorded TTLs."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def put_json(self, key, value):
        self.data[key] = json.dumps(value)


@pytest.fixture()
def fake_redis():
    return FakeRedis()


@pytest.fixture()
def store(fake_redis):
    from livematch.data.providers.store import SnapshotStore

    return SnapshotStore(fake_redis, default_ttl_seconds=172800)


def make_event(event_id="sr:match:100", **overrides):
    event = {
        "eventId": event_id,
        "tournamentName": "Premier League",
        "homeTeamName": "Arsenal",
        "awayTeamName": "Chelsea",
        "setScore": "0:0",
        "playedSeconds": "10:00",
        "matchStatus": "H1",
        "estimateStartTime": 1760900000000,
    }
    event.update(overrides)
    return event


def full_enriched(**overrides):
    enriched = {
        "matchInfo": {"match": {}},
        "squads": {},
        "odds": {},
        "timeline": {"complete": {"events": []}, "delta": {}},
        "form": {"home": {"matches": []}, "away": {"matches": []}},
        "h2h": {"matches": []},
        "tournament": {"seasonMeta": {}, "table": {}},
        "situation": {"data": []},
        "details": {"values": {}},
        "phrases": {},
        "prematchMarketData": None,
        "analysis": {"stats": None, "momentum": None, "goalProbability": None},
    }
    enriched.update(overrides)
    return enriched
