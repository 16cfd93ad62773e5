"""
Match lifecycle: status transitions, closing team selection (which triggers the
queue endgame sweep), the actual-answers snapshot and per-player stats entry.
"""
from __future__ import annotations

import logging
import sqlite3
from typing import Any, Mapping

from fantasy_cricket.errors import NotFoundError, PreconditionError, ValidationError
from fantasy_cricket.models import Match, MatchStatus, PlayerMatchStats
from fantasy_cricket.persistence.db import transaction
from fantasy_cricket.persistence.repositories import (
    MatchRepository,
    PlayerMatchStatsRepository,
    PlayerRepository,
)
from fantasy_cricket.scoring import PREDICTION_CATEGORIES, performance_from_dict
from fantasy_cricket.services.matching import EndgameResult, MatchingService, match_lock

logger = logging.getLogger(__name__)

# ---------- Valid transitions ----------

_VALID_TRANSITIONS: dict[str, set[str]] = {
    MatchStatus.UPCOMING: {MatchStatus.LIVE, MatchStatus.COMPLETED},
    MatchStatus.LIVE: {MatchStatus.COMPLETED},
    MatchStatus.COMPLETED: set(),
}


def _check_transition(current: str, new_status: str) -> None:
    if new_status not in _VALID_TRANSITIONS.get(current, set()):
        raise PreconditionError(f"Invalid transition: {current} -> {new_status}")


class MatchLifecycleService:
    def __init__(self, matching: MatchingService | None = None) -> None:
        self.matching = matching or MatchingService()
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._stats_repo = PlayerMatchStatsRepository()

    def _get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFoundError(f"Match not found: {match_id}")
        return match

    def transition_status(self, conn: sqlite3.Connection, match_id: str, new_status: str) -> None:
        """
        upcoming -> live -> completed (upcoming -> completed allowed for abandoned fixtures).
        Leaving upcoming closes team selection first, so the queue is swept.
        """
        match = self._get_match(conn, match_id)
        _check_transition(match.status, new_status)
        if match.is_team_selection_open:
            self.close_team_selection(conn, match_id)
        with transaction(conn):
            match = self._get_match(conn, match_id)
            _check_transition(match.status, new_status)
            self._match_repo.update_status(conn, match_id, new_status)
        logger.info(f"Match {match_id} status {match.status} -> {new_status}")

    def complete_match(self, conn: sqlite3.Connection, match_id: str) -> None:
        """Close selection (sweeping the queue) and mark completed. Safe to repeat."""
        match = self._get_match(conn, match_id)
        if match.status == MatchStatus.COMPLETED.value:
            if match.is_team_selection_open:
                self.close_team_selection(conn, match_id)
            return
        self.transition_status(conn, match_id, MatchStatus.COMPLETED.value)

    def close_team_selection(self, conn: sqlite3.Connection, match_id: str) -> EndgameResult:
        """
        Close the selection window, then sweep the queue: leftovers form one
        undersized team or, when alone, expire. Safe to call again.
        """
        with match_lock(match_id):
            with transaction(conn):
                self._get_match(conn, match_id)
                self._match_repo.set_team_selection_open(conn, match_id, False)
        logger.info(f"Team selection closed for match {match_id}")
        return self.matching.endgame_sweep(conn, match_id)

    def set_stats_snapshot(self, conn: sqlite3.Connection, match_id: str, snapshot: Mapping[str, Any]) -> None:
        """Store the actual answers used to score predictions."""
        missing = [c for c in PREDICTION_CATEGORIES if snapshot.get(c) is None]
        if missing:
            raise ValidationError(f"Stats snapshot missing: {', '.join(missing)}")
        with transaction(conn):
            self._get_match(conn, match_id)
            self._match_repo.set_stats_snapshot(conn, match_id, dict(snapshot))

    def record_player_stats(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        player_id: str,
        stats: Mapping[str, Any],
        manual_points: float | None = None,
    ) -> PlayerMatchStats:
        """
        Upsert raw stats for a player. Stats are checked here so bad input is
        rejected at entry. manual_points pins fantasy points for the scoring run.
        """
        performance_from_dict(stats)
        raw = {k: stats.get(k) for k in ("batting", "bowling", "fielding")}
        with transaction(conn):
            self._get_match(conn, match_id)
            if self._player_repo.get(conn, player_id) is None:
                raise NotFoundError(f"Player not found: {player_id}")
            return self._stats_repo.upsert(conn, match_id, player_id, raw, manual_points)
