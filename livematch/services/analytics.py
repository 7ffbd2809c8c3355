from __future__ import annotations

import math
from typing import Any, Optional

from livematch.core.config import settings

# Stat codes in the match-details ``values`` map.
STAT_CODES = {
    "possession": "110",
    "attacks": "1126",
    "dangerous": "1029",
    "shots_on": "125",
    "shots_off": "126",
    "corners": "124",
    "yellow": "40",
    "red": "50",
}

MOMENTUM_WINDOW = 5

WEIGHTS = {
    "momentum": 0.30,
    "attacks": 0.20,
    "dangerous": 0.25,
    "possession": 0.15,
    "shots": 0.10,
}

HOME_GOAL = "HOME_GOAL"
AWAY_GOAL = "AWAY_GOAL"
NO_GOAL = "NO_GOAL"
NO_PREDICTION = "NO_PREDICTION"


def _to_int(value: Any) -> int:
    if value is None or value == "" or isinstance(value, bool):
        return 0
    try:
        return int(float(str(value).strip().rstrip("%")))
    except ValueError:
        return 0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _pair(values: dict, code: str) -> dict:
    entry = values.get(code)
    raw = entry.get("value") if isinstance(entry, dict) else None
    raw = raw if isinstance(raw, dict) else {}
    return {"home": _to_int(raw.get("home")), "away": _to_int(raw.get("away"))}


def compute_stats(details: Optional[dict]) -> Optional[dict]:
    values = details.get("values") if isinstance(details, dict) else None
    if not isinstance(values, dict):
        return None

    if STAT_CODES["possession"] in values:
        possession = _pair(values, STAT_CODES["possession"])
    else:
        possession = {"home": 50, "away": 50}

    return {
        "attacks": _pair(values, STAT_CODES["attacks"]),
        "dangerous": _pair(values, STAT_CODES["dangerous"]),
        "possession": possession,
        "shots": {
            "onTarget": _pair(values, STAT_CODES["shots_on"]),
            "offTarget": _pair(values, STAT_CODES["shots_off"]),
        },
        "corners": _pair(values, STAT_CODES["corners"]),
        "cards": {
            "yellow": _pair(values, STAT_CODES["yellow"]),
            "red": _pair(values, STAT_CODES["red"]),
        },
    }


def _side(entry: dict, side: str) -> dict:
    block = entry.get(side)
    return block if isinstance(block, dict) else {}


def compute_momentum(
    situation: Optional[dict],
    timeline: Any = None,
    possession: Optional[dict] = None,
) -> Optional[dict]:
    series = situation.get("data") if isinstance(situation, dict) else None
    if not isinstance(series, list):
        return None
    window = [e for e in series if isinstance(e, dict)][-MOMENTUM_WINDOW:]

    recent = {"home": 0, "away": 0}
    trend = []
    for entry in window:
        home = _side(entry, "home")
        away = _side(entry, "away")
        recent["home"] += _to_int(home.get("dangerous")) * 2 + _to_int(home.get("attack"))
        recent["away"] += _to_int(away.get("dangerous")) * 2 + _to_int(away.get("attack"))
        trend.append(
            {
                "minute": entry.get("time"),
                "homeIntensity": _to_int(home.get("dangerous")) + _to_int(home.get("attack")),
                "awayIntensity": _to_int(away.get("dangerous")) + _to_int(away.get("attack")),
            }
        )

    possession = possession or {}
    split = {"home": _to_int(possession.get("home", 50)), "away": _to_int(possession.get("away", 50))}
    return {"recent": recent, "trend": trend, "timeline": timeline, "possession": split}


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _side_probability(momentum: dict, stats: dict, side: str) -> float:
    shots = stats["shots"]
    score = (
        momentum["recent"][side] * WEIGHTS["momentum"]
        + (stats["attacks"][side] / 2) * WEIGHTS["attacks"]
        + stats["dangerous"][side] * WEIGHTS["dangerous"]
        + stats["possession"][side] * WEIGHTS["possession"]
        + ((shots["onTarget"][side] * 2 + shots["offTarget"][side]) / 3) * WEIGHTS["shots"]
    )
    return round(_clamp(score), 2)


def goal_probability(momentum: Optional[dict], stats: Optional[dict]) -> Optional[dict]:
    if not momentum or not stats:
        return None
    return {
        "home": _side_probability(momentum, stats, "home"),
        "away": _side_probability(momentum, stats, "away"),
    }


def _side_reasons(stats: dict, side: str, other: str, label: str) -> list[str]:
    reasons = []
    if stats["dangerous"][side] > stats["dangerous"][other] * 1.5:
        reasons.append(f"{label} team creating more dangerous attacks")
    if stats["possession"][side] > 60:
        reasons.append(f"{label} team dominating possession")
    on_target = stats["shots"]["onTarget"]
    if on_target[side] > on_target[other] * 2:
        reasons.append(f"{label} team testing the keeper more often")
    return reasons


def _quiet_reasons(stats: dict) -> list[str]:
    reasons = []
    dangerous = stats["dangerous"]
    if dangerous["home"] + dangerous["away"] < 10:
        reasons.append("Few dangerous attacks from either side")
    if abs(stats["possession"]["home"] - stats["possession"]["away"]) <= 10:
        reasons.append("Possession evenly split")
    on_target = stats["shots"]["onTarget"]
    if on_target["home"] + on_target["away"] < 3:
        reasons.append("Few shots on target")
    return reasons


def recommendation(
    stats: Optional[dict],
    probability: Optional[dict],
    threshold: Optional[float] = None,
) -> dict:
    if not stats or not probability:
        return {"type": NO_PREDICTION, "confidence": 0, "reasons": ["Data unavailable"]}

    limit = float(settings.recommendation_threshold if threshold is None else threshold)
    home = float(probability.get("home") or 0)
    away = float(probability.get("away") or 0)

    if home > limit:
        return {"type": HOME_GOAL, "confidence": round_half_up(home), "reasons": _side_reasons(stats, "home", "away", "Home")}
    if away > limit:
        return {"type": AWAY_GOAL, "confidence": round_half_up(away), "reasons": _side_reasons(stats, "away", "home", "Away")}
    return {
        "type": NO_GOAL,
        "confidence": round_half_up((100 - max(home, away)) * 0.8),
        "reasons": _quiet_reasons(stats),
    }


def build_analysis(situation: Optional[dict], details: Optional[dict], timeline: Any = None) -> dict:
    stats = compute_stats(details)
    possession = stats["possession"] if stats else None
    momentum = compute_momentum(situation, timeline, possession)
    probability = goal_probability(momentum, stats)
    return {
        "momentum": momentum,
        "stats": stats,
        "goalProbability": probability,
        "recommendation": recommendation(stats, probability),
    }
