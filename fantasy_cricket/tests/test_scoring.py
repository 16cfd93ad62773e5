"""
Tests for fantasy scoring (T20 batting / bowling / fielding rubric, captain
multipliers, prediction scoring).
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from fantasy_cricket.errors import ScoringInputError
from fantasy_cricket.models import FantasyTeamPlayer
from fantasy_cricket.scoring import (
    BattingStats,
    BowlingStats,
    FieldingStats,
    PlayerPerformance,
    batting_points,
    bowling_points,
    compute_player_points,
    compute_team_points,
    fielding_points,
    points_breakdown,
    round_half_up,
    score_category,
    score_prediction,
    CENTURY_BONUS,
    DUCK_PENALTY,
    LBW_BOWLED_BONUS,
)


class TestBatting:
    def test_half_century_with_boundaries_and_strike_rate(self):
        # 55 + 6 fours + 2x2 sixes + 8 half-century + SR 137.5 -> +2
        stats = BattingStats(runs=55, balls_faced=40, fours=6, sixes=2, is_out=True)
        assert batting_points(stats) == 75

    def test_milestones_not_cumulative(self):
        # 100 runs off 90 balls: SR 111 -> 0; only the century bonus
        stats = BattingStats(runs=100, balls_faced=90)
        assert batting_points(stats) == 100 + CENTURY_BONUS

    def test_thirty_bonus(self):
        stats = BattingStats(runs=30, balls_faced=30)  # SR 100 -> 0
        assert batting_points(stats) == 34

    def test_duck_only_when_out(self):
        assert batting_points(BattingStats(runs=0, balls_faced=3, is_out=True)) == DUCK_PENALTY
        assert batting_points(BattingStats(runs=0, balls_faced=3, is_out=False)) == 0

    def test_strike_rate_ignored_below_ten_balls(self):
        assert batting_points(BattingStats(runs=2, balls_faced=9)) == 2

    @pytest.mark.parametrize(
        "runs,balls,adjustment",
        [
            (6, 10, -6),    # SR 60
            (7, 10, -4),    # SR 70
            (8, 10, -2),    # SR 80
            (9, 10, 0),     # SR 90
            (13, 10, 2),    # SR 130
            (15, 10, 4),    # SR 150
            (17, 10, 6),    # SR 170
        ],
    )
    def test_strike_rate_band_edges(self, runs, balls, adjustment):
        assert batting_points(BattingStats(runs=runs, balls_faced=balls)) == runs + adjustment


class TestBowling:
    def test_four_wicket_haul_economical_with_maiden(self):
        # 100 wickets + 8 haul + 12 maiden + economy 4.0 -> +6
        stats = BowlingStats(overs=4, runs_conceded=16, wickets=4, maidens=1)
        assert bowling_points(stats) == 126

    def test_lbw_and_bowled_bonus(self):
        stats = BowlingStats(overs=1, runs_conceded=10, wickets=2, lbw_wickets=1, bowled_wickets=1)
        assert bowling_points(stats) == 2 * 25 + 2 * LBW_BOWLED_BONUS

    def test_haul_highest_only(self):
        stats = BowlingStats(overs=1, runs_conceded=0, wickets=5)
        assert bowling_points(stats) == 125 + 16

    def test_economy_ignored_below_two_overs(self):
        assert bowling_points(BowlingStats(overs=1.5, runs_conceded=30, wickets=0)) == 0

    @pytest.mark.parametrize(
        "runs_conceded,adjustment",
        [(20, 4), (24, 2), (28, 0), (40, -2), (44, -4), (48, -6)],
    )
    def test_economy_bands_over_four_overs(self, runs_conceded, adjustment):
        stats = BowlingStats(overs=4, runs_conceded=runs_conceded, wickets=0)
        assert bowling_points(stats) == adjustment


class TestFielding:
    def test_all_dismissal_types(self):
        stats = FieldingStats(catches=2, stumpings=1, run_outs_direct=1, run_outs_indirect=1)
        assert fielding_points(stats) == 16 + 12 + 12 + 6


class TestPlayerPoints:
    def test_breakdown_sums_sections(self):
        perf = PlayerPerformance(
            batting=BattingStats(runs=55, balls_faced=40, fours=6, sixes=2),
            bowling=BowlingStats(overs=4, runs_conceded=16, wickets=4, maidens=1),
            fielding=FieldingStats(catches=1),
        )
        assert points_breakdown(perf) == {"batting": 75, "bowling": 126, "fielding": 8, "total": 209}

    def test_absent_sections_score_zero(self):
        assert compute_player_points({}) == 0
        assert compute_player_points({"batting": None, "bowling": None, "fielding": None}) == 0

    def test_from_raw_dict(self):
        raw = {"bowling": {"overs": 4, "runs_conceded": 16, "wickets": 4, "maidens": 1}}
        assert compute_player_points(raw) == 126

    def test_deterministic(self):
        raw = {"batting": {"runs": 55, "balls_faced": 40, "fours": 6, "sixes": 2, "is_out": True}}
        assert compute_player_points(raw) == compute_player_points(raw) == 75


class TestMalformedStats:
    def test_missing_required_field(self):
        with pytest.raises(ScoringInputError, match="balls_faced"):
            compute_player_points({"batting": {"runs": 10}})

    def test_wrong_type(self):
        with pytest.raises(ScoringInputError):
            compute_player_points({"batting": {"runs": "ten", "balls_faced": 5}})

    def test_negative_count(self):
        with pytest.raises(ScoringInputError):
            compute_player_points({"fielding": {"catches": -1}})

    def test_section_not_an_object(self):
        with pytest.raises(ScoringInputError):
            compute_player_points({"bowling": 3})

    def test_lbw_bowled_exceed_wickets(self):
        with pytest.raises(ScoringInputError):
            compute_player_points(
                {"bowling": {"overs": 4, "runs_conceded": 20, "wickets": 1, "lbw_wickets": 1, "bowled_wickets": 1}}
            )

    def test_boundaries_exceed_runs(self):
        with pytest.raises(ScoringInputError):
            compute_player_points({"batting": {"runs": 10, "balls_faced": 5, "fours": 3}})


class TestTeamAggregation:
    def _players(self):
        return [
            FantasyTeamPlayer("A", is_captain=True),
            FantasyTeamPlayer("B", is_vice_captain=True),
            FantasyTeamPlayer("C"),
        ]

    def test_captain_and_vice_multipliers(self):
        # 7*2 + 7*1.5 + 3 = 27.5 -> 28
        assert compute_team_points(self._players(), {"A": 7, "B": 7, "C": 3}) == 28

    def test_missing_player_counts_zero(self):
        assert compute_team_points(self._players(), {"A": 10}) == 20

    @pytest.mark.parametrize("raw", [0, 1, 3, 7, 25, 75, 126])
    def test_contribution_per_role(self, raw):
        assert compute_team_points([FantasyTeamPlayer("X", is_captain=True)], {"X": raw}) == round_half_up(2 * raw)
        assert compute_team_points([FantasyTeamPlayer("X", is_vice_captain=True)], {"X": raw}) == round_half_up(1.5 * raw)
        assert compute_team_points([FantasyTeamPlayer("X")], {"X": raw}) == raw

    def test_round_half_up(self):
        assert round_half_up(2.5) == 3
        assert round_half_up(-2.5) == -2
        assert round_half_up(10.4) == 10


ACTUAL = {
    "total_score": 310,
    "most_sixes": {"player_id": "p1", "player_name": "One", "count": 5},
    "most_fours": "p2",
    "most_wickets": {"player_id": "p3", "player_name": "Three", "count": 4},
    "powerplay_score": 55,
    "fifties_count": 2,
}


class TestPredictions:
    def test_close_total_score_partial_credit(self):
        result = score_category("total_score", 300, 310)
        assert result.points == 25
        assert result.is_close and not result.is_correct

    def test_close_band_inclusive(self):
        assert score_category("total_score", 295, 310).points == 25
        assert score_category("total_score", 294, 310).points == -10
        assert score_category("powerplay_score", 45, 55).points == 15
        assert score_category("powerplay_score", 44, 55).points == -10

    def test_exact_only_categories(self):
        assert score_category("fifties_count", 2, 2).points == 30
        assert score_category("fifties_count", 1, 2).points == -10
        assert score_category("most_sixes", "p1", "p1").points == 40
        assert score_category("most_sixes", "p9", "p1").points == -10

    def test_all_correct(self):
        answers = {
            "total_score": 310, "most_sixes": "p1", "most_fours": "p2",
            "most_wickets": "p3", "powerplay_score": 55, "fifties_count": 2,
        }
        score = score_prediction(answers, ACTUAL)
        assert score.total_points == 50 + 40 + 40 + 40 + 35 + 30
        assert all(r.is_correct for r in score.results.values())
        assert score.results["most_sixes"].actual_value == "p1"

    def test_all_wrong_is_negative(self):
        answers = {
            "total_score": 100, "most_sixes": "x", "most_fours": "x",
            "most_wickets": "x", "powerplay_score": 0, "fifties_count": 9,
        }
        assert score_prediction(answers, ACTUAL).total_points == -60

    def test_missing_actual_raises(self):
        actual = dict(ACTUAL)
        del actual["fifties_count"]
        answers = {k: 0 for k in ACTUAL}
        with pytest.raises(ScoringInputError):
            score_prediction(answers, actual)
