"""
Service layer: workflows over the repositories.
Each service takes a connection per call and owns its transactions.
"""
from .matching import EndgameResult, JoinResult, MatchingService, QueueStatusResult, random_team_name
from .team_builder import SquadCheck, TeamBuilderService
from .predictions import PredictionService
from .leaderboard import LeaderboardService, competition_ranks
from .scoring_run import ScoringFailure, ScoringRunService, ScoringRunSummary
from .match_lifecycle import MatchLifecycleService

__all__ = [
    "EndgameResult",
    "JoinResult",
    "MatchingService",
    "QueueStatusResult",
    "random_team_name",
    "SquadCheck",
    "TeamBuilderService",
    "PredictionService",
    "LeaderboardService",
    "competition_ranks",
    "ScoringFailure",
    "ScoringRunService",
    "ScoringRunSummary",
    "MatchLifecycleService",
]
