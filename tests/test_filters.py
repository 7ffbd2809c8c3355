from conftest import make_event

from livematch.services.filters import (
    apply_filters,
    high_probability,
    over_one_point_five,
    sort_by_goal_probability,
)


def _with_probability(event_id, home, away, confidence=0):
    analysis = {"goalProbability": {"home": home, "away": away}, "recommendation": {"confidence": confidence}}
    return make_event(event_id, enrichedData={"analysis": analysis})


def test_status_filters():
    matches = [make_event("a", matchStatus="H1"), make_event("b", matchStatus="H2"), make_event("c", matchStatus="HT")]
    assert [m["eventId"] for m in apply_filters(matches, ["firstHalf"])] == ["a"]
    assert [m["eventId"] for m in apply_filters(matches, ["secondHalf"])] == ["b"]
    assert [m["eventId"] for m in apply_filters(matches, ["halftime"])] == ["c"]


def test_half_filters_fall_back_to_period_and_clock():
    matches = [
        make_event("a", matchStatus=None, period="1st half"),
        make_event("b", matchStatus=None, period=None, playedSeconds="67:10"),
        make_event("c", matchStatus="", period="HT"),
    ]
    assert [m["eventId"] for m in apply_filters(matches, ["firstHalf"])] == ["a"]
    assert [m["eventId"] for m in apply_filters(matches, ["secondHalf"])] == ["b"]
    assert [m["eventId"] for m in apply_filters(matches, ["halftime"])] == ["c"]


def test_goal_line_filters():
    matches = [make_event("a", setScore="1:0"), make_event("b", setScore="1:1"), make_event("c", setScore="3:1")]
    assert [m["eventId"] for m in apply_filters(matches, ["over1.5"])] == ["b", "c"]
    assert [m["eventId"] for m in apply_filters(matches, ["over3.5"])] == ["c"]


def test_search_covers_team_and_tournament_names():
    matches = [
        make_event("a"),
        make_event("b", homeTeamName="Inter", awayTeamName="Milan", tournamentName="Serie A"),
        make_event("c", homeTeamName="X", awayTeamName="Y", enrichedData={"matchInfo": {"homeTeam": {"name": "Juventus"}}}),
    ]
    assert [m["eventId"] for m in apply_filters(matches, [], "serie")] == ["b"]
    assert [m["eventId"] for m in apply_filters(matches, [], "JUVE")] == ["c"]


def test_in_cart_and_unknown_filters():
    matches = [make_event("a"), make_event("b")]
    in_cart = {"b"}.__contains__
    assert [m["eventId"] for m in apply_filters(matches, ["inCart", "noSuchFilter"], None, in_cart)] == ["b"]


def test_sort_by_start_time():
    matches = [
        make_event("late", estimateStartTime="2026-10-20T18:00:00Z"),
        make_event("early", estimateStartTime="2026-10-20T12:00:00Z"),
    ]
    assert [m["eventId"] for m in apply_filters(matches, ["asc"])] == ["early", "late"]
    assert [m["eventId"] for m in apply_filters(matches, ["desc"])] == ["late", "early"]


def test_high_probability_and_ordering():
    low = _with_probability("low", 20, 30)
    high = _with_probability("high", 70, 10)
    confident = _with_probability("confident", 10, 10, confidence=40)
    assert high_probability(high)
    assert high_probability(confident)
    assert not high_probability(low)
    assert not high_probability(make_event("bare"))
    assert [m["eventId"] for m in sort_by_goal_probability([low, confident, high])] == ["high", "low", "confident"]


def test_over_one_point_five_pick():
    market = {"name": "Over/Under", "outcomes": [{"desc": "Over 1.5", "odds": "1.30", "probability": "0.75"}]}
    pick = over_one_point_five(make_event("a", markets=[market]))
    assert pick == {"eventId": "a", "market": "Over/Under", "odds": "1.30", "probability": 0.75}

    market["outcomes"][0]["probability"] = "0.55"
    assert over_one_point_five(make_event("a", markets=[market])) is None
    assert over_one_point_five(make_event("b")) is None
