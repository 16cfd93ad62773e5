"""
Shared fixtures: temporary SQLite DB, a player pool for two teams, a match open
for selection, and factories for users and saved squads.
"""
from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from fantasy_cricket.models import FantasyTeamPlayer, Player
from fantasy_cricket.persistence.db import get_connection, init_db, set_db_path, transaction
from fantasy_cricket.persistence.repositories import (
    FantasyTeamRepository,
    MatchRepository,
    PlayerRepository,
    UserRepository,
)

# IND players cost 8.0, AUS players 10.0.
TEAM_CREDITS = {"IND": 8.0, "AUS": 10.0}
ROLE_SLOTS = {"wk": ("Wicket-Keeper", 2), "bat": ("Batsman", 5), "ar": ("All-Rounder", 3), "bowl": ("Bowler", 5)}

# 1 WK, 4 Bat, 2 AR, 4 Bowl; 6 IND + 5 AUS = 98 credits.
VALID_SQUAD = [
    "IND-wk1", "IND-bat1", "IND-bat2", "IND-ar1", "IND-bowl1", "IND-bowl2",
    "AUS-bat1", "AUS-bat2", "AUS-ar1", "AUS-bowl1", "AUS-bowl2",
]


def build_player_pool() -> list[Player]:
    pool = []
    for team, credits in TEAM_CREDITS.items():
        for key, (role, n) in ROLE_SLOTS.items():
            for i in range(1, n + 1):
                pool.append(Player(id=f"{team}-{key}{i}", name=f"{team} {role} {i}", team=team, role=role, credit_value=credits))
    return pool


@pytest.fixture
def db_conn(tmp_path):
    """Temporary DB with all tables."""
    db_path = tmp_path / "fantasy_test.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def players(db_conn):
    pool = build_player_pool()
    repo = PlayerRepository()
    with transaction(db_conn):
        for p in pool:
            repo.upsert(db_conn, p)
    return {p.id: p for p in pool}


@pytest.fixture
def match(db_conn, players):
    """Upcoming IND v AUS, selection open, locks in one day."""
    now = datetime.now(timezone.utc)
    with transaction(db_conn):
        return MatchRepository().create(
            db_conn, "IND", "AUS", start_time=now + timedelta(days=1, hours=1),
            lock_time=now + timedelta(days=1), venue="Wankhede",
        )


@pytest.fixture
def make_users(db_conn):
    def _make(n: int, prefix: str = "user") -> list[str]:
        repo = UserRepository()
        with transaction(db_conn):
            return [repo.create(db_conn, f"{prefix} {i}", id=f"{prefix}-{i}").id for i in range(1, n + 1)]
    return _make


@pytest.fixture
def make_squad(db_conn):
    """Save a squad directly through the repository (captain = first, vice = second)."""
    def _make(user_id: str, match_id: str, player_ids: list[str] | None = None):
        ids = player_ids or VALID_SQUAD
        squad = [
            FantasyTeamPlayer(player_id=pid, is_captain=i == 0, is_vice_captain=i == 1)
            for i, pid in enumerate(ids)
        ]
        with transaction(db_conn):
            team, _ = FantasyTeamRepository().upsert(db_conn, user_id, match_id, squad, total_credits=98.0)
        return team
    return _make
