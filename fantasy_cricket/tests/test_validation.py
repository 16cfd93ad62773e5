"""
Tests for squad composition rules: size, credits, role bands, per-team cap.
Pure checks against an in-memory player lookup.
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from fantasy_cricket.errors import (
    CreditsExceededError,
    InvalidSizeError,
    RoleViolationError,
    TeamCapExceededError,
    ValidationError,
)
from fantasy_cricket.validation import validate_squad

from conftest import VALID_SQUAD, build_player_pool

POOL = {p.id: p for p in build_player_pool()}
lookup = POOL.get


def _swap(squad, old, new):
    return [new if pid == old else pid for pid in squad]


def test_valid_squad_returns_total_credits():
    assert validate_squad(VALID_SQUAD, lookup) == 98.0


def test_too_few_players():
    with pytest.raises(InvalidSizeError):
        validate_squad(VALID_SQUAD[:10], lookup)


def test_unknown_player_fails_size():
    with pytest.raises(InvalidSizeError):
        validate_squad(_swap(VALID_SQUAD, "AUS-bowl2", "NZ-bowl1"), lookup)


def test_duplicate_player_fails_size():
    with pytest.raises(InvalidSizeError):
        validate_squad(_swap(VALID_SQUAD, "AUS-bowl2", "AUS-bowl1"), lookup)


def test_credits_exceeded_reports_sum():
    squad = [
        "AUS-wk1", "AUS-bat1", "AUS-bat2", "AUS-ar1", "AUS-bowl1", "AUS-bowl2", "AUS-bowl3",
        "IND-bat1", "IND-bat2", "IND-ar1", "IND-bowl1",
    ]
    with pytest.raises(CreditsExceededError) as exc:
        validate_squad(squad, lookup)
    assert exc.value.total_credits == 102.0
    assert "102" in str(exc.value)


def test_missing_wicket_keeper():
    with pytest.raises(RoleViolationError) as exc:
        validate_squad(_swap(VALID_SQUAD, "IND-wk1", "IND-bat3"), lookup)
    assert exc.value.role == "Wicket-Keeper"
    assert exc.value.bound == "min"


def test_too_many_batsmen():
    squad = _swap(_swap(VALID_SQUAD, "IND-ar1", "IND-bat3"), "IND-bowl1", "IND-bat4")
    squad = _swap(squad, "AUS-bowl1", "AUS-bat3")
    # Bat 7 > 6; Batsman is checked before Bowler
    with pytest.raises(RoleViolationError) as exc:
        validate_squad(squad, lookup)
    assert exc.value.role == "Batsman"
    assert exc.value.bound == "max"


def test_team_cap_exceeded():
    squad = [
        "IND-wk1", "IND-bat1", "IND-bat2", "IND-bat3", "IND-bat4", "IND-ar1", "IND-bowl1", "IND-bowl2",
        "AUS-ar1", "AUS-bowl1", "AUS-bowl2",
    ]
    with pytest.raises(TeamCapExceededError) as exc:
        validate_squad(squad, lookup)
    assert exc.value.team == "IND"
    assert exc.value.count == 8


def test_each_violation_is_a_validation_error():
    for cls in (InvalidSizeError, CreditsExceededError, RoleViolationError, TeamCapExceededError):
        assert issubclass(cls, ValidationError)
        assert issubclass(cls, ValueError)
