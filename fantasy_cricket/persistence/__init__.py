"""
Persistence layer for fantasy cricket data.
No business logic: only read/write interfaces. Writes never commit; callers
wrap them in transaction().
"""
from .db import get_connection, init_db, set_db_path, get_db_path, transaction
from .repositories import (
    UserRepository,
    PlayerRepository,
    MatchRepository,
    PlayerMatchStatsRepository,
    FantasyTeamRepository,
    PredictionRepository,
    QueueRepository,
    MatchedTeamRepository,
)

__all__ = [
    "get_connection",
    "init_db",
    "set_db_path",
    "get_db_path",
    "transaction",
    "UserRepository",
    "PlayerRepository",
    "MatchRepository",
    "PlayerMatchStatsRepository",
    "FantasyTeamRepository",
    "PredictionRepository",
    "QueueRepository",
    "MatchedTeamRepository",
]
