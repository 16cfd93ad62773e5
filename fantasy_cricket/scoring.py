"""
Fantasy scoring for cricket matches.
Implements the T20 fantasy points rubric (batting, bowling, fielding),
captain/vice-captain aggregation, and prediction scoring.
Pure functions: no persistence, no randomness.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from fantasy_cricket.errors import ScoringInputError
from fantasy_cricket.models import FantasyTeamPlayer


# ---------- Batting ----------
RUN_POINTS = 1
BOUNDARY_BONUS = 1
SIX_BONUS = 2
THIRTY_BONUS = 4
HALF_CENTURY_BONUS = 8
CENTURY_BONUS = 16
DUCK_PENALTY = -2
MIN_BALLS_FOR_STRIKE_RATE = 10

# (lower inclusive, upper exclusive, points); 90 <= SR < 130 scores 0
STRIKE_RATE_BANDS: list[tuple[float | None, float | None, int]] = [
    (None, 70, -6),
    (70, 80, -4),
    (80, 90, -2),
    (130, 150, 2),
    (150, 170, 4),
    (170, None, 6),
]

# ---------- Bowling ----------
WICKET_POINTS = 25
LBW_BOWLED_BONUS = 8
THREE_WICKET_BONUS = 4
FOUR_WICKET_BONUS = 8
FIVE_WICKET_BONUS = 16
MAIDEN_POINTS = 12
MIN_OVERS_FOR_ECONOMY = 2

# 7 <= economy < 10 scores 0
ECONOMY_BANDS: list[tuple[float | None, float | None, int]] = [
    (None, 5, 6),
    (5, 6, 4),
    (6, 7, 2),
    (10, 11, -2),
    (11, 12, -4),
    (12, None, -6),
]

# ---------- Fielding ----------
CATCH_POINTS = 8
STUMPING_POINTS = 12
RUN_OUT_DIRECT_POINTS = 12
RUN_OUT_INDIRECT_POINTS = 6

# ---------- Multipliers ----------
CAPTAIN_MULTIPLIER = 2
VICE_CAPTAIN_MULTIPLIER = 1.5


@dataclass
class BattingStats:
    runs: int
    balls_faced: int
    is_out: bool = False
    fours: int = 0
    sixes: int = 0


@dataclass
class BowlingStats:
    overs: float
    runs_conceded: int
    wickets: int
    maidens: int = 0
    lbw_wickets: int = 0
    bowled_wickets: int = 0


@dataclass
class FieldingStats:
    catches: int = 0
    stumpings: int = 0
    run_outs_direct: int = 0
    run_outs_indirect: int = 0


@dataclass
class PlayerPerformance:
    """One player's match. A section is None when the player did not bat / bowl."""
    batting: BattingStats | None = None
    bowling: BowlingStats | None = None
    fielding: FieldingStats | None = None


def _band_points(value: float, bands: list[tuple[float | None, float | None, int]]) -> int:
    for lower, upper, points in bands:
        if (lower is None or value >= lower) and (upper is None or value < upper):
            return points
    return 0


def batting_points(stats: BattingStats) -> int:
    """Runs, boundaries, highest milestone only, duck, strike-rate band (min 10 balls)."""
    points = stats.runs * RUN_POINTS
    points += stats.fours * BOUNDARY_BONUS + stats.sixes * SIX_BONUS
    if stats.runs >= 100:
        points += CENTURY_BONUS
    elif stats.runs >= 50:
        points += HALF_CENTURY_BONUS
    elif stats.runs >= 30:
        points += THIRTY_BONUS
    if stats.runs == 0 and stats.is_out:
        points += DUCK_PENALTY
    if stats.balls_faced >= MIN_BALLS_FOR_STRIKE_RATE:
        strike_rate = stats.runs / stats.balls_faced * 100
        points += _band_points(strike_rate, STRIKE_RATE_BANDS)
    return points


def bowling_points(stats: BowlingStats) -> int:
    """Wickets, LBW/bowled bonus, highest haul only, maidens, economy band (min 2 overs)."""
    points = stats.wickets * WICKET_POINTS
    points += (stats.lbw_wickets + stats.bowled_wickets) * LBW_BOWLED_BONUS
    if stats.wickets >= 5:
        points += FIVE_WICKET_BONUS
    elif stats.wickets >= 4:
        points += FOUR_WICKET_BONUS
    elif stats.wickets >= 3:
        points += THREE_WICKET_BONUS
    points += stats.maidens * MAIDEN_POINTS
    if stats.overs >= MIN_OVERS_FOR_ECONOMY:
        economy = stats.runs_conceded / stats.overs
        points += _band_points(economy, ECONOMY_BANDS)
    return points


def fielding_points(stats: FieldingStats) -> int:
    return (
        stats.catches * CATCH_POINTS
        + stats.stumpings * STUMPING_POINTS
        + stats.run_outs_direct * RUN_OUT_DIRECT_POINTS
        + stats.run_outs_indirect * RUN_OUT_INDIRECT_POINTS
    )


def player_points(perf: PlayerPerformance) -> int:
    """Raw (unmultiplied) fantasy points for one player."""
    return points_breakdown(perf)["total"]


def points_breakdown(perf: PlayerPerformance) -> dict[str, int]:
    bat = batting_points(perf.batting) if perf.batting is not None else 0
    bowl = bowling_points(perf.bowling) if perf.bowling is not None else 0
    field_pts = fielding_points(perf.fielding) if perf.fielding is not None else 0
    return {"batting": bat, "bowling": bowl, "fielding": field_pts, "total": bat + bowl + field_pts}


# ---------- Parsing raw stats ----------
# A missing section means the player did not take part in it; a present section
# with missing or malformed fields is an error, never a silent zero.

_BATTING_REQUIRED = ("runs", "balls_faced")
_BOWLING_REQUIRED = ("overs", "runs_conceded", "wickets")


def _count(section: str, data: Mapping[str, Any], key: str, required: bool) -> int:
    if key not in data or data[key] is None:
        if required:
            raise ScoringInputError(f"{section}.{key} is required")
        return 0
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ScoringInputError(f"{section}.{key} must be an integer, got {value!r}")
    if value < 0:
        raise ScoringInputError(f"{section}.{key} must be non-negative, got {value}")
    return value


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any] | None:
    data = raw.get(name)
    if data is None:
        return None
    if not isinstance(data, Mapping):
        raise ScoringInputError(f"{name} must be an object, got {type(data).__name__}")
    return data


def parse_batting(data: Mapping[str, Any]) -> BattingStats:
    for key in _BATTING_REQUIRED:
        _count("batting", data, key, required=True)
    is_out = data.get("is_out", False)
    if not isinstance(is_out, bool):
        raise ScoringInputError(f"batting.is_out must be a boolean, got {is_out!r}")
    stats = BattingStats(
        runs=_count("batting", data, "runs", True),
        balls_faced=_count("batting", data, "balls_faced", True),
        is_out=is_out,
        fours=_count("batting", data, "fours", False),
        sixes=_count("batting", data, "sixes", False),
    )
    if stats.fours * 4 + stats.sixes * 6 > stats.runs:
        raise ScoringInputError(
            f"batting boundaries ({stats.fours}x4, {stats.sixes}x6) exceed runs ({stats.runs})"
        )
    return stats


def parse_bowling(data: Mapping[str, Any]) -> BowlingStats:
    overs = data.get("overs")
    if overs is None:
        raise ScoringInputError("bowling.overs is required")
    if isinstance(overs, bool) or not isinstance(overs, (int, float)) or overs < 0:
        raise ScoringInputError(f"bowling.overs must be a non-negative number, got {overs!r}")
    stats = BowlingStats(
        overs=float(overs),
        runs_conceded=_count("bowling", data, "runs_conceded", True),
        wickets=_count("bowling", data, "wickets", True),
        maidens=_count("bowling", data, "maidens", False),
        lbw_wickets=_count("bowling", data, "lbw_wickets", False),
        bowled_wickets=_count("bowling", data, "bowled_wickets", False),
    )
    if stats.lbw_wickets + stats.bowled_wickets > stats.wickets:
        raise ScoringInputError(
            f"bowling lbw+bowled wickets ({stats.lbw_wickets + stats.bowled_wickets}) exceed wickets ({stats.wickets})"
        )
    return stats


def parse_fielding(data: Mapping[str, Any]) -> FieldingStats:
    return FieldingStats(
        catches=_count("fielding", data, "catches", False),
        stumpings=_count("fielding", data, "stumpings", False),
        run_outs_direct=_count("fielding", data, "run_outs_direct", False),
        run_outs_indirect=_count("fielding", data, "run_outs_indirect", False),
    )


def performance_from_dict(raw: Mapping[str, Any]) -> PlayerPerformance:
    """Build PlayerPerformance from {batting?, bowling?, fielding?}. Raises ScoringInputError."""
    if not isinstance(raw, Mapping):
        raise ScoringInputError(f"stats must be an object, got {type(raw).__name__}")
    batting = _section(raw, "batting")
    bowling = _section(raw, "bowling")
    fielding = _section(raw, "fielding")
    return PlayerPerformance(
        batting=parse_batting(batting) if batting is not None else None,
        bowling=parse_bowling(bowling) if bowling is not None else None,
        fielding=parse_fielding(fielding) if fielding is not None else None,
    )


def compute_player_points(raw: Mapping[str, Any]) -> int:
    """Parse raw stats and return raw fantasy points."""
    return player_points(performance_from_dict(raw))


# ---------- Team aggregation ----------


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def player_multiplier(player: FantasyTeamPlayer) -> float:
    if player.is_captain:
        return CAPTAIN_MULTIPLIER
    if player.is_vice_captain:
        return VICE_CAPTAIN_MULTIPLIER
    return 1


def compute_team_points(
    players: Iterable[FantasyTeamPlayer],
    points_by_player: Mapping[str, float],
) -> int:
    """
    Sum each selected player's raw points (0 if absent) times captain (x2) /
    vice-captain (x1.5) multiplier, rounded half-up to an integer.
    """
    total = 0.0
    for p in players:
        total += points_by_player.get(p.player_id, 0) * player_multiplier(p)
    return round_half_up(total)


# ---------- Predictions ----------


@dataclass(frozen=True)
class PredictionRule:
    correct: int
    wrong: int = -10
    close: int | None = None
    close_range: int | None = None  # inclusive |diff| bound for partial credit


PREDICTION_RULES: dict[str, PredictionRule] = {
    "total_score": PredictionRule(correct=50, close=25, close_range=15),
    "most_sixes": PredictionRule(correct=40),
    "most_fours": PredictionRule(correct=40),
    "most_wickets": PredictionRule(correct=40),
    "powerplay_score": PredictionRule(correct=35, close=15, close_range=10),
    "fifties_count": PredictionRule(correct=30),
}
PREDICTION_CATEGORIES: tuple[str, ...] = tuple(PREDICTION_RULES)
PLAYER_CATEGORIES = frozenset({"most_sixes", "most_fours", "most_wickets"})
NUMERIC_CATEGORIES = frozenset(PREDICTION_CATEGORIES) - PLAYER_CATEGORIES


@dataclass
class CategoryResult:
    points: int
    is_correct: bool
    is_close: bool = False
    actual_value: Any = None


@dataclass
class PredictionScore:
    total_points: int
    results: dict[str, CategoryResult] = field(default_factory=dict)


def _actual_for(category: str, actual: Mapping[str, Any]) -> Any:
    if category not in actual or actual[category] is None:
        raise ScoringInputError(f"Actual value missing for {category}")
    value = actual[category]
    if category in PLAYER_CATEGORIES:
        # Snapshot may carry {player_id, player_name, count}
        if isinstance(value, Mapping):
            value = value.get("player_id")
            if value is None:
                raise ScoringInputError(f"Actual {category} has no player_id")
        return str(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScoringInputError(f"Actual {category} must be a number, got {value!r}")
    return value


def _answer_for(category: str, answers: Mapping[str, Any]) -> Any:
    if category not in answers or answers[category] is None:
        raise ScoringInputError(f"Prediction missing for {category}")
    value = answers[category]
    if category in PLAYER_CATEGORIES:
        return str(value)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScoringInputError(f"Predicted {category} must be a number, got {value!r}")
    return value


def score_category(category: str, predicted: Any, actual: Any) -> CategoryResult:
    rule = PREDICTION_RULES[category]
    if predicted == actual:
        return CategoryResult(points=rule.correct, is_correct=True, actual_value=actual)
    if rule.close_range is not None and abs(predicted - actual) <= rule.close_range:
        return CategoryResult(points=rule.close, is_correct=False, is_close=True, actual_value=actual)
    return CategoryResult(points=rule.wrong, is_correct=False, actual_value=actual)


def score_prediction(answers: Mapping[str, Any], actual: Mapping[str, Any]) -> PredictionScore:
    """
    Score all six categories. Numeric score categories earn partial credit within
    their close range; identity and count categories are exact-only. Total may be negative.
    """
    results: dict[str, CategoryResult] = {}
    for category in PREDICTION_CATEGORIES:
        results[category] = score_category(
            category, _answer_for(category, answers), _actual_for(category, actual)
        )
    return PredictionScore(total_points=sum(r.points for r in results.values()), results=results)
