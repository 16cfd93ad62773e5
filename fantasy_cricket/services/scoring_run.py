"""
Admin-triggered scoring run for one match.

Order: player points -> fantasy teams -> matched teams (totals, ranks) -> predictions.
Each entity is written in its own transaction; a failure is recorded in the
summary and the run continues. Re-running recomputes and overwrites totals.
A finalizing run closes team selection first, so queue leftovers are swept
into a team (or expired) and scored with everyone else.
"""
from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any

from fantasy_cricket.errors import NotFoundError, ScoringInputError
from fantasy_cricket.models import (
    FantasyTeam,
    Match,
    MatchedTeam,
    MatchedTeamStatus,
    PredictionAnswer,
)
from fantasy_cricket.notifications import (
    LEADERBOARD_UPDATE_EVENT,
    NotificationPort,
    NullNotifier,
    match_room,
)
from fantasy_cricket.persistence.db import transaction
from fantasy_cricket.persistence.repositories import (
    FantasyTeamRepository,
    MatchedTeamRepository,
    MatchRepository,
    PlayerMatchStatsRepository,
    PredictionRepository,
)
from fantasy_cricket.scoring import compute_player_points, compute_team_points, score_prediction
from fantasy_cricket.services.leaderboard import competition_ranks
from fantasy_cricket.services.match_lifecycle import MatchLifecycleService
from fantasy_cricket.services.matching import MatchingService

logger = logging.getLogger(__name__)


@dataclass
class ScoringFailure:
    entity: str  # player | fantasy_team | matched_team | prediction
    entity_id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"entity": self.entity, "entity_id": self.entity_id, "error": self.error}


@dataclass
class ScoringRunSummary:
    match_id: str
    players_scored: int = 0
    fantasy_teams_scored: int = 0
    matched_teams_scored: int = 0
    predictions_scored: int = 0
    finalized: bool = False
    failures: list[ScoringFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "players_scored": self.players_scored,
            "fantasy_teams_scored": self.fantasy_teams_scored,
            "matched_teams_scored": self.matched_teams_scored,
            "predictions_scored": self.predictions_scored,
            "finalized": self.finalized,
            "ok": self.ok,
            "failures": [f.to_dict() for f in self.failures],
        }


class ScoringRunService:
    def __init__(
        self,
        notifier: NotificationPort | None = None,
        lifecycle: MatchLifecycleService | None = None,
    ) -> None:
        self.notifier = notifier or NullNotifier()
        self.lifecycle = lifecycle or MatchLifecycleService(matching=MatchingService(notifier=self.notifier))
        self._match_repo = MatchRepository()
        self._stats_repo = PlayerMatchStatsRepository()
        self._fantasy_repo = FantasyTeamRepository()
        self._matched_repo = MatchedTeamRepository()
        self._prediction_repo = PredictionRepository()

    def run_scoring(self, conn: sqlite3.Connection, match_id: str, finalize: bool = False) -> ScoringRunSummary:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")
        summary = ScoringRunSummary(match_id=match_id)
        if finalize and match.is_team_selection_open:
            # Leftover queue entries must be swept before teams are scored
            self.lifecycle.close_team_selection(conn, match_id)

        points_by_player, failed_players = self._score_players(conn, match_id, summary)
        points_by_team, failed_teams = self._score_fantasy_teams(
            conn, match_id, points_by_player, failed_players, summary
        )
        self._score_matched_teams(conn, match_id, points_by_team, failed_teams, finalize, summary)
        self._score_predictions(conn, match, summary)

        if finalize:
            self.lifecycle.complete_match(conn, match_id)
            summary.finalized = True

        log = logger.info if summary.ok else logger.warning
        log(
            f"Scoring run for match {match_id}: {summary.players_scored} players, "
            f"{summary.fantasy_teams_scored} fantasy teams, {summary.matched_teams_scored} matched teams, "
            f"{summary.predictions_scored} predictions, {len(summary.failures)} failures"
        )
        try:
            self.notifier.broadcast(match_room(match_id), LEADERBOARD_UPDATE_EVENT, summary.to_dict())
        except Exception:
            logger.warning(f"Leaderboard broadcast failed for match {match_id}", exc_info=True)
        return summary

    # ---------- Steps ----------

    def _fail(self, summary: ScoringRunSummary, entity: str, entity_id: str, error: Exception) -> None:
        logger.warning(f"Scoring failed for {entity} {entity_id}: {error}")
        summary.failures.append(ScoringFailure(entity, entity_id, str(error)))

    def _score_players(
        self, conn: sqlite3.Connection, match_id: str, summary: ScoringRunSummary
    ) -> tuple[dict[str, float], set[str]]:
        points: dict[str, float] = {}
        failed: set[str] = set()
        for stats in self._stats_repo.list_by_match(conn, match_id):
            if stats.is_manual_points:
                points[stats.player_id] = stats.fantasy_points
                summary.players_scored += 1
                continue
            try:
                value = compute_player_points(stats.raw_stats())
                with transaction(conn):
                    self._stats_repo.update_points(conn, match_id, stats.player_id, value)
            except Exception as e:
                self._fail(summary, "player", stats.player_id, e)
                failed.add(stats.player_id)
                continue
            points[stats.player_id] = value
            summary.players_scored += 1
        return points, failed

    def _score_fantasy_teams(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        points_by_player: dict[str, float],
        failed_players: set[str],
        summary: ScoringRunSummary,
    ) -> tuple[dict[str, float], set[str]]:
        teams: list[FantasyTeam] = self._fantasy_repo.list_by_match(conn, match_id)
        with transaction(conn):
            for team in teams:
                self._fantasy_repo.lock(conn, team.id)

        points: dict[str, float] = {}
        failed: set[str] = set()
        for team in teams:
            try:
                bad = sorted(p.player_id for p in team.players if p.player_id in failed_players)
                if bad:
                    raise ScoringInputError(f"Invalid stats for selected players: {', '.join(bad)}")
                total = compute_team_points(team.players, points_by_player)
                with transaction(conn):
                    self._fantasy_repo.update_points(conn, team.id, total)
            except Exception as e:
                self._fail(summary, "fantasy_team", team.id, e)
                failed.add(team.id)
                continue
            points[team.id] = total
            summary.fantasy_teams_scored += 1
        return points, failed

    def _score_matched_teams(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        points_by_team: dict[str, float],
        failed_teams: set[str],
        finalize: bool,
        summary: ScoringRunSummary,
    ) -> None:
        for mt in self._matched_repo.list_by_match(conn, match_id):
            try:
                self._score_matched_team(conn, mt, points_by_team, failed_teams)
            except Exception as e:
                self._fail(summary, "matched_team", mt.id, e)
                continue
            summary.matched_teams_scored += 1

        ranked: list[MatchedTeam] = self._matched_repo.list_by_match(conn, match_id)
        ranks = competition_ranks([t.total_points for t in ranked])
        with transaction(conn):
            for team, rank in zip(ranked, ranks):
                self._matched_repo.update_rank(conn, team.id, rank)
                if finalize:
                    self._matched_repo.update_status(conn, team.id, MatchedTeamStatus.COMPLETED.value)

    def _score_matched_team(
        self,
        conn: sqlite3.Connection,
        team: MatchedTeam,
        points_by_team: dict[str, float],
        failed_teams: set[str],
    ) -> None:
        bad = [m.user_id for m in team.members if m.fantasy_team_id in failed_teams]
        if bad:
            raise ScoringInputError(f"Member squads failed to score: {', '.join(bad)}")
        with transaction(conn):
            total = 0.0
            for member in team.members:
                contributed = points_by_team.get(member.fantasy_team_id, 0)
                self._matched_repo.update_member_points(conn, team.id, member.user_id, contributed)
                total += contributed
            self._matched_repo.update_total(conn, team.id, total)

    def _score_predictions(self, conn: sqlite3.Connection, match: Match, summary: ScoringRunSummary) -> None:
        predictions = self._prediction_repo.list_by_match(conn, match.id)
        with transaction(conn):
            for prediction in predictions:
                self._prediction_repo.lock(conn, prediction.id)
        if not predictions:
            return
        if not match.stats_snapshot:
            self._fail(summary, "prediction", match.id, ScoringInputError("Match stats snapshot is not set"))
            return

        for prediction in predictions:
            try:
                answers = {k: v.answer for k, v in prediction.predictions.items()}
                score = score_prediction(answers, match.stats_snapshot)
                scored = {
                    category: PredictionAnswer(
                        answer=answers[category],
                        points_earned=result.points,
                        is_correct=result.is_correct,
                        is_close=result.is_close,
                        actual_value=result.actual_value,
                    )
                    for category, result in score.results.items()
                }
                with transaction(conn):
                    self._prediction_repo.update_scores(conn, prediction.id, scored, score.total_points)
            except Exception as e:
                self._fail(summary, "prediction", prediction.id, e)
                continue
            summary.predictions_scored += 1
