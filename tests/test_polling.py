import asyncio

from conftest import full_enriched, make_event

from livematch.core.errors import UpstreamUnavailable, ValidationFailure
from livematch.services.merge import FinishedTracker
from livematch.services.polling import PollingDriver


class FakeEngine:
    def __init__(self):
        self.initial = []
        self.realtime = []
        self.resets = 0

    async def enrich_initial(self, match):
        if not match.get("eventId"):
            raise ValidationFailure("Match ID is required")
        self.initial.append(match["eventId"])
        return {**match, "enrichedData": full_enriched(h2h={"from": "initial"})}

    async def enrich_realtime(self, match):
        self.realtime.append(match["eventId"])
        fresh = {
            "timeline": {"complete": {"events": []}, "delta": {}},
            "situation": {"data": []},
            "details": {"values": {}},
            "analysis": {"stats": None},
        }
        return {**match, "enrichedData": fresh}

    def reset(self):
        self.resets += 1


def _feed(*events):
    return {"data": {"tournaments": [{"name": "Premier League", "events": list(events)}]}}


class FeedSequence:
    def __init__(self, *responses):
        self.responses = list(responses)

    async def __call__(self):
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


def _driver(feed, upcoming=None):
    return PollingDriver(
        FakeEngine(),
        fetch_live=feed,
        fetch_upcoming=upcoming or FeedSequence(_feed()),
        finished=FinishedTracker(finished_minutes=90),
    )


def _ids(matches):
    return [m["eventId"] for m in matches]


def test_cold_start_then_realtime():
    driver = _driver(FeedSequence(_feed(make_event("a")), _feed(make_event("a"), make_event("b"))))

    asyncio.run(driver.refresh_live())
    assert driver.engine.initial == ["a"]
    assert _ids(driver.live) == ["a"]

    asyncio.run(driver.refresh_live())
    assert driver.engine.realtime == ["a"]
    assert driver.engine.initial == ["a", "b"]
    # slow fields carried over from the initial enrichment
    live = {m["eventId"]: m for m in driver.live}
    assert live["a"]["enrichedData"]["h2h"] == {"from": "initial"}


def test_identical_cycle_is_a_no_op():
    driver = _driver(FeedSequence(_feed(make_event("a"))))
    asyncio.run(driver.refresh_live())
    committed = driver.live
    asyncio.run(driver.refresh_live())
    assert driver.live is committed
    assert driver.skipped == 1


def test_upstream_failure_keeps_stale_data():
    driver = _driver(FeedSequence(_feed(make_event("a")), UpstreamUnavailable("odds feed unreachable")))
    asyncio.run(driver.refresh_live())
    asyncio.run(driver.refresh_live())
    assert _ids(driver.live) == ["a"]
    assert driver.error == "odds feed unreachable"
    assert driver.status()["error"] == "odds feed unreachable"


def test_finished_match_stays_out_after_clock_reset():
    driver = _driver(
        FeedSequence(
            _feed(make_event("a", playedSeconds="90:00")),
            _feed(make_event("a", playedSeconds="05:00")),
        )
    )
    asyncio.run(driver.refresh_live())
    assert driver.live == []
    asyncio.run(driver.refresh_live())
    assert driver.live == []
    assert driver.clear_finished() == 1
    asyncio.run(driver.refresh_live())
    assert _ids(driver.live) == ["a"]


def test_absent_match_dropped_after_full_cycle():
    driver = _driver(
        FeedSequence(
            _feed(make_event("a"), make_event("b")),
            _feed(make_event("a")),
            _feed(make_event("a")),
        )
    )
    asyncio.run(driver.refresh_live())
    asyncio.run(driver.refresh_live())
    assert set(_ids(driver.live)) == {"a", "b"}
    asyncio.run(driver.refresh_live())
    assert _ids(driver.live) == ["a"]


def test_invalid_match_is_skipped():
    driver = _driver(FeedSequence(_feed(make_event("a"), make_event(None))))
    asyncio.run(driver.refresh_live())
    assert _ids(driver.live) == ["a"]


def test_paused_driver_does_not_fetch():
    feed = FeedSequence(UpstreamUnavailable("should not be called"))
    driver = _driver(feed)
    driver.pause()
    asyncio.run(driver.refresh_live())
    assert driver.error is None
    driver.resume()
    asyncio.run(driver.refresh_live())
    assert driver.error == "should not be called"


def test_upcoming_refresh_filters_simulated_leagues():
    upcoming = FeedSequence(
        {
            "data": {
                "tournaments": [
                    {"name": "Premier League", "events": [make_event("u1")]},
                    {"name": "SRL Club Friendlies", "events": [make_event("u2")]},
                ]
            }
        }
    )
    driver = _driver(FeedSequence(_feed()), upcoming)
    asyncio.run(driver.refresh_upcoming())
    assert _ids(driver.upcoming) == ["u1"]
    assert driver.engine.initial == []


def test_reset_clears_state():
    driver = _driver(FeedSequence(_feed(make_event("a", playedSeconds="95:00"))))
    asyncio.run(driver.refresh_live())
    assert len(driver.finished) == 1
    driver.reset()
    assert driver.live == []
    assert len(driver.finished) == 0
    assert driver.cold is True
    assert driver.engine.resets == 1


def test_upcoming_failure_does_not_mark_live_error():
    upcoming = FeedSequence(UpstreamUnavailable("upcoming feed down"), _feed(make_event("u1")))
    driver = _driver(FeedSequence(_feed(make_event("a"))), upcoming)
    asyncio.run(driver.refresh_upcoming())
    assert driver.upcoming_error == "upcoming feed down"
    assert driver.error is None

    asyncio.run(driver.refresh_live())
    assert driver.status()["upcomingError"] == "upcoming feed down"

    asyncio.run(driver.refresh_upcoming())
    assert driver.upcoming_error is None
    assert _ids(driver.upcoming) == ["u1"]
